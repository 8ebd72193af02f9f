"""Assessment service - the operations the HTTP/UI layer calls.

Responsibilities:
1. Client lifecycle (create, read, merge-update, delete with session cascade)
2. Session lifecycle and navigation through the framework's question order
3. Answer submission - validate, resolve dependency cascades, recompute
   progress and persist, all under the session's lock
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from gapcheck import codec
from gapcheck.config import AssessmentConfig, GapcheckConfig
from gapcheck.errors import NotFoundError, ValidationError
from gapcheck.frameworks import FrameworkCatalog
from gapcheck.models import (
    Answer,
    AnswerKind,
    Client,
    Framework,
    Session,
    SessionMode,
    SessionStatus,
    utc_now,
)
from gapcheck.resolver import DependencyIndex, resolve, validate_dependencies
from gapcheck.scoring import ScoreBreakdown, calculate_progress, calculate_score, domain_scores
from gapcheck.store import EntityStore

logger = logging.getLogger(__name__)

_MERGE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)
_FIXED_SESSION_KEYS = ("id", "clientId", "frameworkId", "createdAt", "startedAt")


class AssessmentService:
    """Orchestrates the entity store, framework catalog and dependency resolver."""

    def __init__(
        self,
        store: EntityStore,
        catalog: FrameworkCatalog,
        config: AssessmentConfig | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.config = config or AssessmentConfig()

    # ── Clients ──────────────────────────────────────────────

    async def create_client(self, client: Client) -> Client:
        if await self.store.load_client(client.id) is not None:
            raise ValidationError(f"Client {client.id} already exists")
        saved = await self.store.save_client(client)
        logger.info("Created client %s (%s)", saved.id, saved.company_name)
        return saved

    async def create_client_from_form(self, form: dict[str, Any]) -> Client:
        return await self.create_client(codec.client_from_form(form))

    async def get_client(self, client_id: str) -> Client:
        client = await self.store.load_client(client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    async def list_clients(self) -> list[Client]:
        return await self.store.list_clients()

    async def update_client(self, client_id: str, updates: dict[str, Any]) -> Client:
        """Merge ``updates`` (camelCase record keys) into the stored client."""

        def merge(current: Client) -> Client:
            record = codec.client_to_dict(current)
            record.update(updates)
            record["id"] = client_id
            record["createdAt"] = current.created_at
            try:
                return codec.client_from_dict(record)
            except _MERGE_ERRORS as e:
                raise ValidationError(f"Invalid client update: {e}") from e

        updated = await self.store.update_client(client_id, merge)
        if updated is None:
            raise NotFoundError("Client", client_id)
        return updated

    async def delete_client(self, client_id: str) -> None:
        """Delete a client and every session recorded for it. Idempotent."""
        for session in await self.store.list_client_sessions(client_id):
            await self.store.delete_session(session.id)
        await self.store.delete_client(client_id)

    # ── Sessions ─────────────────────────────────────────────

    def _framework_for(self, framework_id: str) -> tuple[Framework, DependencyIndex]:
        framework = self.catalog.get(framework_id)
        index = self.catalog.index(framework_id)
        if framework is None or index is None:
            raise ValidationError(f"Framework {framework_id} not found")
        return framework, index

    def _with_responses(
        self, session: Session, framework: Framework, responses: dict[str, Answer]
    ) -> Session:
        return replace(
            session,
            responses=responses,
            progress=calculate_progress(
                framework, responses, session.current_domain, session.current_question
            ),
        )

    async def create_session(
        self, client_id: str, framework_id: str, mode: SessionMode | str | None = None
    ) -> Session:
        if await self.store.load_client(client_id) is None:
            raise NotFoundError("Client", client_id)
        framework, _ = self._framework_for(framework_id)

        now = utc_now()
        session = Session(
            id=codec.new_id("session"),
            client_id=client_id,
            framework_id=framework_id,
            mode=mode or self.config.default_mode,
            created_at=now,
            started_at=now,
        )
        session = self._with_responses(session, framework, {})
        saved = await self.store.save_session(session)
        logger.info(
            "Created session %s for client %s (%s, %d questions)",
            saved.id,
            client_id,
            framework_id,
            framework.total_questions,
        )
        return saved

    async def get_session(self, session_id: str) -> Session:
        session = await self.store.load_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def list_client_sessions(self, client_id: str) -> list[Session]:
        if await self.store.load_client(client_id) is None:
            raise NotFoundError("Client", client_id)
        return await self.store.list_client_sessions(client_id)

    async def delete_session(self, session_id: str) -> None:
        await self.store.delete_session(session_id)

    async def _mutate_session(self, session_id: str, mutate) -> Session:
        updated = await self.store.update_session(session_id, mutate)
        if updated is None:
            raise NotFoundError("Session", session_id)
        return updated

    async def update_session(self, session_id: str, updates: dict[str, Any]) -> Session:
        """Merge record-level fields (status, mode, cursor, extras) into a session.

        Responses only change through ``set_session_answer``.
        """
        if "responses" in updates:
            raise ValidationError("Responses must be submitted through set_session_answer")

        def merge(current: Session) -> Session:
            framework, _ = self._framework_for(current.framework_id)
            original = codec.session_to_dict(current)
            record = {**original, **updates}
            for key in _FIXED_SESSION_KEYS:
                record[key] = original[key]
            try:
                merged = codec.session_from_dict(record)
            except _MERGE_ERRORS as e:
                raise ValidationError(f"Invalid session update: {e}") from e
            if merged.status is SessionStatus.COMPLETED and not merged.completed_at:
                merged = replace(merged, completed_at=utc_now())
            return self._with_responses(merged, framework, merged.responses)

        return await self._mutate_session(session_id, merge)

    # ── Answers ──────────────────────────────────────────────

    async def set_session_answer(
        self, session_id: str, question_id: str, answer: Answer | dict[str, Any]
    ) -> Session:
        """Record an answer and apply its dependency cascade in one serialized step."""
        if isinstance(answer, dict):
            answer = codec.answer_from_dict(answer, question_id=question_id)
        elif not isinstance(answer, Answer):
            raise ValidationError(
                f"{question_id}: answer must be an object, got {type(answer).__name__}"
            )
        if answer.synthesized:
            raise ValidationError(
                f"{question_id}: auto-failed/auto-skipped answers cannot be submitted directly"
            )

        def apply(session: Session) -> Session:
            framework, index = self._framework_for(session.framework_id)
            question = index.get(question_id)
            if question is None:
                raise ValidationError(
                    f"Question {question_id} is not part of framework {framework.id}"
                )

            check = validate_dependencies(question, answer.kind, session.responses)
            for warning in check.warnings:
                logger.info("%s: %s", question_id, warning)
            if check.errors:
                logger.warning("%s: %s", question_id, "; ".join(check.errors))
                if self.config.block_on_dependency_errors:
                    raise ValidationError(
                        f"Answer for {question_id} contradicts its dependencies",
                        errors=check.errors,
                    )

            now = utc_now()
            stamped = replace(
                answer, timestamp=now, control_id=question.control, question_id=question.id
            )
            responses = {**session.responses, question.id: stamped}
            resolution = resolve(question, stamped.kind, index, responses, now=now)
            return self._with_responses(session, framework, resolution.responses)

        return await self._mutate_session(session_id, apply)

    async def skip_question(self, session_id: str, question_id: str, reason: str) -> Session:
        """Manually mark a question as skipped."""
        answer = Answer(
            kind=AnswerKind.SKIPPED,
            timestamp=utc_now(),
            control_id=question_id,
            question_id=question_id,
            skip_reason=reason,
        )
        return await self.set_session_answer(session_id, question_id, answer)

    # ── Navigation ───────────────────────────────────────────

    async def next_question(self, session_id: str) -> Session:
        """Advance the cursor; moving past the last question completes the session."""

        def advance(session: Session) -> Session:
            framework, _ = self._framework_for(session.framework_id)
            domains = framework.domains
            d = min(session.current_domain, max(len(domains) - 1, 0))
            q = session.current_question
            if domains and q < len(domains[d].questions) - 1:
                q += 1
            elif d < len(domains) - 1:
                d += 1
                q = 0
            else:
                logger.info("Session %s completed", session.id)
                return self._with_responses(
                    replace(
                        session,
                        status=SessionStatus.COMPLETED,
                        completed_at=session.completed_at or utc_now(),
                        current_domain=d,
                        current_question=q,
                    ),
                    framework,
                    session.responses,
                )
            return self._move(session, framework, d, q)

        return await self._mutate_session(session_id, advance)

    async def previous_question(self, session_id: str) -> Session:
        def back(session: Session) -> Session:
            framework, _ = self._framework_for(session.framework_id)
            d, q = session.current_domain, session.current_question
            if q > 0:
                q -= 1
            elif d > 0:
                d -= 1
                q = max(len(framework.domains[d].questions) - 1, 0)
            return self._move(session, framework, d, q)

        return await self._mutate_session(session_id, back)

    async def go_to_question(self, session_id: str, domain_index: int, question_index: int) -> Session:
        def jump(session: Session) -> Session:
            framework, _ = self._framework_for(session.framework_id)
            if not 0 <= domain_index < len(framework.domains):
                raise ValidationError(f"Domain index {domain_index} out of range")
            if not 0 <= question_index < len(framework.domains[domain_index].questions):
                raise ValidationError(f"Question index {question_index} out of range")
            return self._move(session, framework, domain_index, question_index)

        return await self._mutate_session(session_id, jump)

    def _move(self, session: Session, framework: Framework, d: int, q: int) -> Session:
        moved = replace(session, current_domain=d, current_question=q)
        return self._with_responses(moved, framework, session.responses)

    async def pause_session(self, session_id: str) -> Session:
        def pause(session: Session) -> Session:
            if session.status is SessionStatus.COMPLETED:
                raise ValidationError(f"Session {session_id} is already completed")
            return replace(session, status=SessionStatus.PAUSED)

        return await self._mutate_session(session_id, pause)

    async def resume_session(self, session_id: str) -> Session:
        def resume(session: Session) -> Session:
            if session.status is SessionStatus.COMPLETED:
                raise ValidationError(f"Session {session_id} is already completed")
            return replace(session, status=SessionStatus.IN_PROGRESS)

        return await self._mutate_session(session_id, resume)

    # ── Derived values ───────────────────────────────────────

    async def session_score(self, session_id: str) -> ScoreBreakdown:
        """Overall readiness score with a per-domain breakdown."""
        session = await self.get_session(session_id)
        framework, _ = self._framework_for(session.framework_id)
        score = calculate_score(session.responses, framework.questions)
        score.domains = domain_scores(framework, session.responses)
        return score


def build_service(config: GapcheckConfig) -> AssessmentService:
    """Construct the service once at process start."""
    store = EntityStore(config.storage.data_path)
    catalog = FrameworkCatalog(config.frameworks.root, config.frameworks.config_file)
    return AssessmentService(store, catalog, config.assessment)
