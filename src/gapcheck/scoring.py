"""Derived values over a session's responses: progress and readiness scores."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from gapcheck.models import Answer, AnswerKind, DomainProgress, Framework, Progress, Question


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def completion_percentage(answered: int, skipped: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(100 * (answered + skipped) / total)


def calculate_progress(
    framework: Framework,
    responses: Mapping[str, Answer],
    current_domain: int = 0,
    current_question: int = 0,
) -> Progress:
    """Recompute progress from the full responses map.

    ``answered`` counts every response that is not "skipped".
    """
    answered = sum(1 for a in responses.values() if a.kind is not AnswerKind.SKIPPED)
    skipped = len(responses) - answered
    total = framework.total_questions

    domains: dict[str, DomainProgress] = {}
    for domain in framework.domains:
        entry = DomainProgress(total=len(domain.questions))
        for question in domain.questions:
            answer = responses.get(question.id)
            if answer is None:
                continue
            if answer.kind is AnswerKind.SKIPPED:
                entry.skipped += 1
            else:
                entry.answered += 1
        domains[domain.id] = entry

    return Progress(
        total_questions=total,
        answered_questions=answered,
        skipped_questions=skipped,
        completion_percentage=completion_percentage(answered, skipped, total),
        current_domain=current_domain,
        current_question=current_question,
        domains=domains,
    )


@dataclass
class ScoreBreakdown:
    total_questions: int = 0
    answered_questions: int = 0
    yes: int = 0
    partial: int = 0
    no: int = 0
    unsure: int = 0
    skipped: int = 0
    na: int = 0
    raw_score: float = 0.0
    max_possible_score: int = 0
    percentage: float = 0.0
    domains: dict[str, ScoreBreakdown] = field(default_factory=dict)


def calculate_score(responses: Mapping[str, Answer], questions: Iterable[Question]) -> ScoreBreakdown:
    """Readiness score: yes = 1, partial = 0.5, over applicable questions."""
    score = ScoreBreakdown()
    for question in questions:
        score.total_questions += 1
        answer = responses.get(question.id)
        if answer is None:
            continue
        name = answer.kind.value
        setattr(score, name, getattr(score, name) + 1)

    score.answered_questions = score.yes + score.partial + score.no + score.unsure
    score.raw_score = score.yes + score.partial * 0.5
    score.max_possible_score = score.total_questions - score.na - score.skipped
    if score.max_possible_score > 0:
        score.percentage = round(score.raw_score / score.max_possible_score * 100, 1)
    return score


def domain_scores(framework: Framework, responses: Mapping[str, Answer]) -> dict[str, ScoreBreakdown]:
    """One breakdown per domain, keyed by domain id."""
    return {d.id: calculate_score(responses, d.questions) for d in framework.domains}
