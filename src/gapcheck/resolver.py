"""Adaptive dependency resolution between controls.

When a question is answered, its declared dependencies may force answers onto
other questions:

- ``auto_fail``  targets become "no" when the trigger is "no"
- ``skip_if_no`` targets become "skipped" when the trigger is "no"
- ``skip_if_na`` targets become "skipped" when the trigger is "na"
- ``enables``    targets become "skipped" when the trigger is "no", unless the
  target was answered by hand or another enabler still holds "yes"

Resolution looks one hop out from the trigger and never recurses, so cyclic
declarations cannot loop. Answers synthesized earlier are left in place when
the trigger later changes away from "no"/"na".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from gapcheck.models import Answer, AnswerKind, Confidence, Question, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    responses: dict[str, Answer]
    skipped: list[str] = field(default_factory=list)
    auto_failed: list[str] = field(default_factory=list)


@dataclass
class DependencyCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class DependencyStatus:
    can_answer: bool = True
    should_auto_fail: bool = False
    should_skip: bool = False
    reason: str | None = None


@dataclass
class AffectedQuestions:
    would_skip: list[Question] = field(default_factory=list)
    would_auto_fail: list[Question] = field(default_factory=list)
    would_enable: list[Question] = field(default_factory=list)


class DependencyIndex:
    """Question lookup plus the reverse ``enables`` graph for one framework."""

    def __init__(self, questions: Iterable[Question]) -> None:
        self.by_id: dict[str, Question] = {}
        self.enablers: dict[str, list[str]] = {}
        for question in questions:
            self.by_id[question.id] = question
        for question in self.by_id.values():
            for target in question.dependencies.enables:
                self.enablers.setdefault(target, []).append(question.id)

    def __contains__(self, question_id: str) -> bool:
        return question_id in self.by_id

    def get(self, question_id: str) -> Question | None:
        return self.by_id.get(question_id)

    def enablers_of(self, question_id: str) -> list[str]:
        return self.enablers.get(question_id, [])

    def cycles(self) -> list[list[str]]:
        """Cycles in the cascade graph (any dependency kind that forces an answer)."""
        edges = {
            qid: [
                t
                for t in (
                    *q.dependencies.auto_fail,
                    *q.dependencies.skip_if_no,
                    *q.dependencies.skip_if_na,
                    *q.dependencies.enables,
                )
                if t in self.by_id
            ]
            for qid, q in self.by_id.items()
        }
        found: list[list[str]] = []
        seen: set[frozenset[str]] = set()
        state: dict[str, int] = {}  # 1 = on stack, 2 = done
        stack: list[str] = []

        def visit(node: str) -> None:
            state[node] = 1
            stack.append(node)
            for nxt in edges[node]:
                if state.get(nxt) == 1:
                    cycle = stack[stack.index(nxt):]
                    key = frozenset(cycle)
                    if key not in seen:
                        seen.add(key)
                        found.append(cycle + [nxt])
                elif nxt not in state:
                    visit(nxt)
            stack.pop()
            state[node] = 2

        for qid in edges:
            if qid not in state:
                visit(qid)
        return found


def _synthesize(
    target: Question,
    kind: AnswerKind,
    reason: str,
    notes: str,
    timestamp: str,
    previous: Answer | None,
    confidence: Confidence | None = None,
) -> Answer:
    answer = Answer(
        kind=kind,
        timestamp=timestamp,
        control_id=target.control,
        question_id=target.id,
        notes=notes,
        confidence=confidence,
        auto_failed=kind is AnswerKind.NO,
        auto_skipped=kind is AnswerKind.SKIPPED,
        skip_reason=reason,
    )
    # Re-running on resolved state keeps the earlier answer and its timestamp.
    if answer.same_outcome(previous):
        return previous
    return answer


def _targets(question: Question, ids: Iterable[str], index: DependencyIndex) -> list[Question]:
    targets = []
    for target_id in ids:
        if target_id == question.id:
            logger.debug("Ignoring self-dependency on %s", question.id)
            continue
        target = index.get(target_id)
        if target is None:
            logger.debug("Dependency target %s of %s not in framework", target_id, question.id)
            continue
        targets.append(target)
    return targets


def resolve(
    question: Question,
    kind: AnswerKind | str,
    index: DependencyIndex,
    responses: Mapping[str, Answer],
    now: str | None = None,
) -> Resolution:
    """Apply ``question``'s dependency rules for a new answer of ``kind``.

    ``responses`` should already contain the new answer. Returns a new map;
    the input is not modified.
    """
    kind = AnswerKind(kind)
    updated = dict(responses)
    result = Resolution(responses=updated)
    deps = question.dependencies
    if not deps:
        return result

    timestamp = now or utc_now()
    source = f"{question.control} ({question.id})"

    # 1. auto-fail
    if kind is AnswerKind.NO:
        for target in _targets(question, deps.auto_fail, index):
            updated[target.id] = _synthesize(
                target,
                AnswerKind.NO,
                f"Auto-failed because {source} is No",
                f"Automatically marked as 'No' based on dependency from {question.control}",
                timestamp,
                responses.get(target.id),
                confidence=Confidence.HIGH,
            )
            result.auto_failed.append(target.id)

    # 2. skip-if-no
    if kind is AnswerKind.NO:
        for target in _targets(question, deps.skip_if_no, index):
            updated[target.id] = _synthesize(
                target,
                AnswerKind.SKIPPED,
                f"Skipped because {source} is No",
                f"Automatically skipped based on dependency from {question.control}",
                timestamp,
                responses.get(target.id),
            )
            result.skipped.append(target.id)

    # 3. skip-if-na
    if kind is AnswerKind.NA:
        for target in _targets(question, deps.skip_if_na, index):
            updated[target.id] = _synthesize(
                target,
                AnswerKind.SKIPPED,
                f"Skipped because {source} is Not Applicable",
                f"Automatically skipped - not applicable based on {question.control}",
                timestamp,
                responses.get(target.id),
            )
            result.skipped.append(target.id)

    # 4. enables: withdraw applicability unless answered by hand or still enabled
    if kind is AnswerKind.NO:
        for target in _targets(question, deps.enables, index):
            existing = updated.get(target.id)
            if existing is not None and not existing.synthesized:
                continue
            still_enabled = any(
                responses.get(other) is not None and responses[other].kind is AnswerKind.YES
                for other in index.enablers_of(target.id)
                if other != question.id
            )
            if still_enabled:
                continue
            updated[target.id] = _synthesize(
                target,
                AnswerKind.SKIPPED,
                f"Skipped because enabling control {question.control} is No",
                f"No longer applicable - enabling control {question.control} is not implemented",
                timestamp,
                responses.get(target.id),
            )
            result.skipped.append(target.id)

    if result.skipped or result.auto_failed:
        logger.info(
            "%s=%s cascaded: %d auto-failed, %d skipped",
            question.id,
            kind.value,
            len(result.auto_failed),
            len(result.skipped),
        )
    return result


def validate_dependencies(
    question: Question, kind: AnswerKind | str, responses: Mapping[str, Answer]
) -> DependencyCheck:
    """Advisory check of ``requires`` before accepting an answer."""
    kind = AnswerKind(kind)
    errors: list[str] = []
    warnings: list[str] = []
    for required_id in question.dependencies.requires:
        required = responses.get(required_id)
        if required is None:
            warnings.append(f"Question {required_id} should be answered first")
        elif required.kind is AnswerKind.NO and kind is AnswerKind.YES:
            errors.append(
                f"Cannot answer 'Yes' - required control {required_id} is not implemented"
            )
    return DependencyCheck(valid=not errors, errors=errors, warnings=warnings)


def dependency_status(question: Question, responses: Mapping[str, Answer]) -> DependencyStatus:
    """Whether ``question`` can be answered given its ``requires`` list."""
    for required_id in question.dependencies.requires:
        required = responses.get(required_id)
        if required is None:
            return DependencyStatus(
                can_answer=False, reason=f"Please answer question {required_id} first"
            )
        if required.kind is AnswerKind.NO:
            return DependencyStatus(
                can_answer=False,
                should_auto_fail=True,
                reason=f"Auto-failed because required control {required_id} is not implemented",
            )
    return DependencyStatus()


def affected_questions(
    question: Question, kind: AnswerKind | str, index: DependencyIndex
) -> AffectedQuestions:
    """Preview which questions an answer of ``kind`` would touch."""
    kind = AnswerKind(kind)
    deps = question.dependencies
    affected = AffectedQuestions()
    if kind is AnswerKind.NO:
        affected.would_auto_fail = _targets(question, deps.auto_fail, index)
        affected.would_skip = _targets(question, deps.skip_if_no, index)
    elif kind is AnswerKind.NA:
        affected.would_skip = _targets(question, deps.skip_if_na, index)
    elif kind is AnswerKind.YES:
        affected.would_enable = _targets(question, deps.enables, index)
    return affected
