"""Domain types: clients, assessment sessions, answers and framework content."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from gapcheck.errors import ValidationError

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def utc_now() -> str:
    """ISO-8601 UTC timestamp with a trailing Z, as stored on disk."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime:
    """Parse a stored timestamp; missing or unparseable values sort as oldest."""
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AnswerKind(str, Enum):
    YES = "yes"
    PARTIAL = "partial"
    NO = "no"
    UNSURE = "unsure"
    NA = "na"
    SKIPPED = "skipped"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionMode(str, Enum):
    QUICK = "quick"
    DETAILED = "detailed"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    PAUSED = "paused"


def _enum_value(enum_cls, value, label: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r} (expected one of: {allowed})") from None


# ── Answers ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Answer:
    """A single response to a question.

    ``auto_failed`` / ``auto_skipped`` mark answers synthesized by the
    dependency resolver; those always carry a ``skip_reason``.
    """

    kind: AnswerKind
    timestamp: str
    control_id: str
    question_id: str
    notes: str | None = None
    confidence: Confidence | None = None
    evidence_organized: bool | None = None
    auto_failed: bool = False
    auto_skipped: bool = False
    skip_reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", _enum_value(AnswerKind, self.kind, "answer"))
        object.__setattr__(
            self, "confidence", _enum_value(Confidence, self.confidence, "confidence")
        )
        if not self.question_id:
            raise ValidationError("Answer is missing questionId")
        if self.auto_failed and self.auto_skipped:
            raise ValidationError(f"{self.question_id}: answer cannot be both auto-failed and auto-skipped")
        if self.auto_failed and self.kind is not AnswerKind.NO:
            raise ValidationError(f"{self.question_id}: auto-failed answers must be 'no'")
        if self.auto_skipped and self.kind is not AnswerKind.SKIPPED:
            raise ValidationError(f"{self.question_id}: auto-skipped answers must be 'skipped'")
        if self.synthesized and not (self.skip_reason or "").strip():
            raise ValidationError(f"{self.question_id}: synthesized answers need a skipReason")
        if self.kind is AnswerKind.SKIPPED and (
            self.confidence is not None or self.evidence_organized is not None
        ):
            raise ValidationError(
                f"{self.question_id}: confidence/evidenceOrganized do not apply to skipped answers"
            )

    @property
    def synthesized(self) -> bool:
        return self.auto_failed or self.auto_skipped

    def same_outcome(self, other: Answer | None) -> bool:
        """True when ``other`` records the same result, ignoring timestamp and notes."""
        return (
            other is not None
            and other.kind is self.kind
            and other.auto_failed == self.auto_failed
            and other.auto_skipped == self.auto_skipped
            and other.skip_reason == self.skip_reason
        )


# ── Framework content (read-only) ─────────────────────────────


@dataclass(frozen=True)
class Dependencies:
    requires: tuple[str, ...] = ()
    auto_fail: tuple[str, ...] = ()
    skip_if_no: tuple[str, ...] = ()
    skip_if_na: tuple[str, ...] = ()
    enables: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(
            self.requires or self.auto_fail or self.skip_if_no or self.skip_if_na or self.enables
        )


@dataclass(frozen=True)
class Question:
    id: str
    control: str
    question: str = ""
    context: str = ""
    examples: str = ""
    follow_up: str = ""
    level: int = 1
    nist_source: str | None = None
    assessment_objectives: tuple[str, ...] = ()
    dependencies: Dependencies = field(default_factory=Dependencies)


@dataclass(frozen=True)
class Domain:
    id: str
    title: str
    level: int = 1
    description: str = ""
    questions: tuple[Question, ...] = ()


@dataclass(frozen=True)
class Framework:
    id: str
    name: str
    description: str = ""
    enabled: bool = True
    estimated_time: int = 60
    domains: tuple[Domain, ...] = ()

    @property
    def questions(self) -> list[Question]:
        return [q for d in self.domains for q in d.questions]

    @property
    def total_questions(self) -> int:
        return sum(len(d.questions) for d in self.domains)

    def locate(self, question_id: str) -> tuple[Question, int, int] | None:
        """Return (question, domain_index, question_index) or None."""
        for domain_index, domain in enumerate(self.domains):
            for question_index, question in enumerate(domain.questions):
                if question.id == question_id:
                    return question, domain_index, question_index
        return None


# ── Clients ───────────────────────────────────────────────────


@dataclass
class ContactInfo:
    name: str = ""
    title: str = ""
    email: str = ""
    phone: str = ""


@dataclass
class Address:
    street1: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = "USA"


@dataclass
class CompanySize:
    employees: int = 0
    revenue: str = "Not specified"
    locations: int = 1


@dataclass
class Contacts:
    primary: ContactInfo = field(default_factory=ContactInfo)
    technical: ContactInfo | None = None
    executive: ContactInfo | None = None


@dataclass
class Contracts:
    has_federal_contracts: bool = False
    contract_types: list[str] = field(default_factory=list)
    prime_or_sub: str = ""
    agencies: list[str] = field(default_factory=list)
    handles_cui: bool = False
    handles_fci: bool = False


@dataclass
class Client:
    id: str
    company_name: str
    dba: str = ""
    industry: str | None = None
    logo: str | None = None
    size: CompanySize = field(default_factory=CompanySize)
    contact: Contacts = field(default_factory=Contacts)
    address: Address = field(default_factory=Address)
    contracts: Contracts = field(default_factory=Contracts)
    created_at: str | None = None
    updated_at: str | None = None
    extra: dict = field(default_factory=dict)


# ── Sessions ──────────────────────────────────────────────────


@dataclass
class DomainProgress:
    total: int = 0
    answered: int = 0
    skipped: int = 0


@dataclass
class Progress:
    total_questions: int = 0
    answered_questions: int = 0
    skipped_questions: int = 0
    completion_percentage: int = 0
    current_domain: int = 0
    current_question: int = 0
    domains: dict[str, DomainProgress] = field(default_factory=dict)


@dataclass
class Session:
    id: str
    client_id: str
    framework_id: str
    mode: SessionMode = SessionMode.DETAILED
    status: SessionStatus = SessionStatus.IN_PROGRESS
    current_domain: int = 0
    current_question: int = 0
    responses: dict[str, Answer] = field(default_factory=dict)
    progress: Progress = field(default_factory=Progress)
    created_at: str | None = None
    updated_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.mode = _enum_value(SessionMode, self.mode, "mode")
        self.status = _enum_value(SessionStatus, self.status, "status")
