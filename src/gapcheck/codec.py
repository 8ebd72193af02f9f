"""JSON record codec for clients and sessions.

Records on disk keep camelCase keys. Keys this module does not know about are
carried in ``extra`` and written back untouched, so fields added by other tools
(statistics, homework, signatures) survive a load/save cycle.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any

from gapcheck.errors import CorruptRecordError, ValidationError
from gapcheck.models import (
    Address,
    Answer,
    Client,
    CompanySize,
    ContactInfo,
    Contacts,
    Contracts,
    DomainProgress,
    Progress,
    Session,
)

_CLIENT_KEYS = {
    "id", "companyName", "dba", "industry", "logo", "size", "contact", "address",
    "contracts", "createdAt", "updatedAt",
}
_SESSION_KEYS = {
    "id", "clientId", "frameworkId", "mode", "status", "createdAt", "updatedAt",
    "startedAt", "completedAt", "currentDomain", "currentQuestion", "responses", "progress",
}

# Intake form company-size buckets -> (employees, revenue)
_SIZE_BUCKETS = {
    "small": (50, "Under $10M"),
    "medium": (500, "$10M - $100M"),
    "large": (5000, "Over $100M"),
}


def new_id(prefix: str) -> str:
    """Opaque, sortable-ish id: ``<prefix>_<epoch ms>_<9 hex chars>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# ── Bytes ─────────────────────────────────────────────────────


def encode(record: dict[str, Any]) -> bytes:
    """Pretty-printed UTF-8 JSON."""
    return (json.dumps(record, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def decode(data: bytes, path: Path) -> dict[str, Any]:
    try:
        record = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptRecordError(path, str(e)) from e
    if not isinstance(record, dict):
        raise CorruptRecordError(path, f"expected a JSON object, got {type(record).__name__}")
    return record


# ── Answers ───────────────────────────────────────────────────


def answer_to_dict(answer: Answer) -> dict[str, Any]:
    data: dict[str, Any] = {"answer": answer.kind.value}
    if answer.notes is not None:
        data["notes"] = answer.notes
    if answer.confidence is not None:
        data["confidence"] = answer.confidence.value
    if answer.evidence_organized is not None:
        data["evidenceOrganized"] = answer.evidence_organized
    data["timestamp"] = answer.timestamp
    data["controlId"] = answer.control_id
    data["questionId"] = answer.question_id
    if answer.auto_failed:
        data["autoFailed"] = True
    if answer.auto_skipped:
        data["autoSkipped"] = True
    if answer.skip_reason is not None:
        data["skipReason"] = answer.skip_reason
    return data


def answer_from_dict(data: dict[str, Any], question_id: str | None = None) -> Answer:
    """Build an Answer; raises ValidationError for malformed payloads."""
    if not isinstance(data, dict):
        raise ValidationError(f"Answer must be an object, got {type(data).__name__}")
    if "answer" not in data:
        raise ValidationError("Answer is missing the 'answer' field")
    qid = data.get("questionId") or question_id or ""
    evidence = data.get("evidenceOrganized")
    return Answer(
        kind=data["answer"],
        timestamp=data.get("timestamp") or "",
        control_id=data.get("controlId") or qid,
        question_id=qid,
        notes=data.get("notes"),
        confidence=data.get("confidence"),
        evidence_organized=bool(evidence) if evidence is not None else None,
        auto_failed=bool(data.get("autoFailed", False)),
        auto_skipped=bool(data.get("autoSkipped", False)),
        skip_reason=data.get("skipReason"),
    )


# ── Clients ───────────────────────────────────────────────────


def _contact_to_dict(contact: ContactInfo | None) -> dict[str, Any] | None:
    return asdict(contact) if contact is not None else None


def _contact_from_dict(data: dict[str, Any] | None) -> ContactInfo | None:
    if data is None:
        return None
    return ContactInfo(
        name=data.get("name") or "",
        title=data.get("title") or "",
        email=data.get("email") or "",
        phone=data.get("phone") or "",
    )


def client_to_dict(client: Client) -> dict[str, Any]:
    contact: dict[str, Any] = {"primary": _contact_to_dict(client.contact.primary)}
    if client.contact.technical is not None:
        contact["technical"] = _contact_to_dict(client.contact.technical)
    if client.contact.executive is not None:
        contact["executive"] = _contact_to_dict(client.contact.executive)

    record: dict[str, Any] = {
        "id": client.id,
        "companyName": client.company_name,
        "dba": client.dba,
        "industry": client.industry,
        "logo": client.logo,
        "size": asdict(client.size),
        "contact": contact,
        "address": asdict(client.address),
        "contracts": {
            "hasFederalContracts": client.contracts.has_federal_contracts,
            "contractTypes": list(client.contracts.contract_types),
            "primeOrSub": client.contracts.prime_or_sub,
            "agencies": list(client.contracts.agencies),
            "handlesCUI": client.contracts.handles_cui,
            "handlesFCI": client.contracts.handles_fci,
        },
        "createdAt": client.created_at,
        "updatedAt": client.updated_at,
    }
    record.update(client.extra)
    return record


def client_from_dict(data: dict[str, Any]) -> Client:
    size = data.get("size") or {}
    contact = data.get("contact") or {}
    address = data.get("address") or {}
    contracts = data.get("contracts") or {}
    return Client(
        id=data["id"],
        company_name=data.get("companyName") or "",
        dba=data.get("dba") or "",
        industry=data.get("industry"),
        logo=data.get("logo"),
        size=CompanySize(
            employees=int(size.get("employees", 0)),
            revenue=size.get("revenue", "Not specified"),
            locations=int(size.get("locations", 1)),
        ),
        contact=Contacts(
            primary=_contact_from_dict(contact.get("primary") or {}),
            technical=_contact_from_dict(contact.get("technical")),
            executive=_contact_from_dict(contact.get("executive")),
        ),
        address=Address(
            street1=address.get("street1") or "",
            street2=address.get("street2") or "",
            city=address.get("city") or "",
            state=address.get("state") or "",
            zip=address.get("zip") or "",
            country=address.get("country") or "USA",
        ),
        contracts=Contracts(
            has_federal_contracts=bool(contracts.get("hasFederalContracts", False)),
            contract_types=list(contracts.get("contractTypes") or []),
            prime_or_sub=contracts.get("primeOrSub") or "",
            agencies=list(contracts.get("agencies") or []),
            handles_cui=bool(contracts.get("handlesCUI", False)),
            handles_fci=bool(contracts.get("handlesFCI", False)),
        ),
        created_at=data.get("createdAt"),
        updated_at=data.get("updatedAt"),
        extra={k: v for k, v in data.items() if k not in _CLIENT_KEYS},
    )


def client_from_form(form: dict[str, Any], client_id: str | None = None) -> Client:
    """Build a Client from the flat intake form fields."""
    company_name = (form.get("companyName") or "").strip()
    if not company_name:
        raise ValidationError("companyName is required")
    employees, revenue = _SIZE_BUCKETS.get(form.get("companySize"), (100, "Not specified"))

    def contact(prefix: str, default_title: str = "") -> ContactInfo:
        return ContactInfo(
            name=form.get(f"{prefix}Name") or "",
            title=form.get(f"{prefix}Title") or default_title,
            email=form.get(f"{prefix}Email") or "",
            phone=form.get(f"{prefix}Phone") or "",
        )

    return Client(
        id=client_id or form.get("id") or new_id("client"),
        company_name=company_name,
        dba=form.get("dba") or "",
        industry=form.get("industry"),
        logo=form.get("logo"),
        size=CompanySize(
            employees=employees,
            revenue=revenue,
            locations=int(form.get("locations") or 1),
        ),
        contact=Contacts(
            primary=contact("contact", "Primary Contact"),
            technical=contact("technicalContact"),
            executive=contact("executiveContact"),
        ),
        address=Address(
            street1=form.get("street1") or "",
            street2=form.get("street2") or "",
            city=form.get("city") or "",
            state=form.get("state") or "",
            zip=form.get("zip") or "",
            country=form.get("country") or "USA",
        ),
        contracts=Contracts(
            has_federal_contracts=bool(form.get("hasGovernmentContracts", False)),
            contract_types=list(form.get("contractTypes") or []),
            prime_or_sub=form.get("primeOrSub") or "",
            agencies=list(form.get("agencies") or []),
            handles_cui=bool(form.get("handlesCUI", False)),
            handles_fci=bool(form.get("handlesFCI", False)),
        ),
    )


# ── Sessions ──────────────────────────────────────────────────


def progress_to_dict(progress: Progress) -> dict[str, Any]:
    return {
        "totalQuestions": progress.total_questions,
        "answeredQuestions": progress.answered_questions,
        "skippedQuestions": progress.skipped_questions,
        "completionPercentage": progress.completion_percentage,
        "currentDomain": progress.current_domain,
        "currentQuestion": progress.current_question,
        "domains": {k: asdict(v) for k, v in progress.domains.items()},
    }


def progress_from_dict(data: dict[str, Any]) -> Progress:
    domains = {}
    for key, value in (data.get("domains") or {}).items():
        if isinstance(value, dict):
            domains[key] = DomainProgress(
                total=int(value.get("total", 0)),
                answered=int(value.get("answered", 0)),
                skipped=int(value.get("skipped", 0)),
            )
    return Progress(
        total_questions=int(data.get("totalQuestions", 0)),
        answered_questions=int(data.get("answeredQuestions", 0)),
        skipped_questions=int(data.get("skippedQuestions", 0)),
        completion_percentage=int(
            data.get("completionPercentage", data.get("percentage", 0))
        ),
        current_domain=int(data.get("currentDomain", 0)),
        current_question=int(data.get("currentQuestion", 0)),
        domains=domains,
    )


def session_to_dict(session: Session) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": session.id,
        "clientId": session.client_id,
        "frameworkId": session.framework_id,
        "mode": session.mode.value,
        "status": session.status.value,
        "createdAt": session.created_at,
        "updatedAt": session.updated_at,
        "startedAt": session.started_at,
        "completedAt": session.completed_at,
        "currentDomain": session.current_domain,
        "currentQuestion": session.current_question,
        "responses": {qid: answer_to_dict(a) for qid, a in session.responses.items()},
        "progress": progress_to_dict(session.progress),
    }
    record.update(session.extra)
    return record


def session_from_dict(data: dict[str, Any]) -> Session:
    responses = {
        qid: answer_from_dict(raw, question_id=qid)
        for qid, raw in (data.get("responses") or {}).items()
    }
    return Session(
        id=data["id"],
        client_id=data["clientId"],
        framework_id=data["frameworkId"],
        mode=data.get("mode", "detailed"),
        status=data.get("status", "in-progress"),
        current_domain=int(data.get("currentDomain", 0)),
        current_question=int(data.get("currentQuestion", 0)),
        responses=responses,
        progress=progress_from_dict(data.get("progress") or {}),
        created_at=data.get("createdAt"),
        updated_at=data.get("updatedAt"),
        started_at=data.get("startedAt"),
        completed_at=data.get("completedAt"),
        extra={k: v for k, v in data.items() if k not in _SESSION_KEYS},
    )
