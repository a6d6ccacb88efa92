"""
session_aggregator.py — Session Scoring
=======================================
Folds every per-question result of a session into an overall score and
per-category competency scores.

  Contributions:
    mcq        → is_correct as 0 / 1
    free-form  → score in [0, 1]
    (results without a known question or without any score are skipped)

  Scoring:
    score                  = round_half_up(100 × Σ / n)      (0 when n = 0)
    competency_scores[cat] = round_half_up(100 × Σcat / ncat)
    Categories with no scored result are absent ("not assessed"), which is
    distinct from present-with-0 ("assessed, nothing right").
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Sequence

from case_quiz.models import QuestionType, QuizQuestion, QuizResult, QuizSession, utcnow
from case_quiz.scoring import clamp_unit, percent


@dataclass
class SessionSummary:
    """Scored outcome of one practice session."""
    session_id:        str
    score:             int
    competency_scores: dict[str, int] = field(default_factory=dict)
    scored_count:      int = 0
    finished_at:       Optional[datetime] = None
    duration_seconds:  int = 0


def _contribution(question: QuizQuestion, result: QuizResult) -> Optional[float]:
    if question.type is QuestionType.MCQ and result.is_correct is not None:
        return 1.0 if result.is_correct else 0.0
    return None if result.score is None else clamp_unit(result.score)


def finish(
    session: QuizSession,
    results: Sequence[QuizResult],
    questions_by_id: Mapping[str, QuizQuestion],
    finished_at: Optional[datetime] = None,
) -> SessionSummary:
    """Compute the session summary. Pure: persisting it is the caller's job."""
    finished_at = finished_at or utcnow()

    total, count = 0.0, 0
    per_category: dict[str, list[float]] = {}
    for result in results:
        if result.session_id != session.id:
            continue
        question = questions_by_id.get(result.question_id)
        if question is None:
            continue
        value = _contribution(question, result)
        if value is None:
            continue
        total += value
        count += 1
        bucket = per_category.setdefault(question.category, [0.0, 0])
        bucket[0] += value
        bucket[1] += 1

    duration = (finished_at - session.started_at).total_seconds()
    return SessionSummary(
        session_id=session.id,
        score=percent(total, count),
        competency_scores={
            cat: percent(cat_total, int(cat_count))
            for cat, (cat_total, cat_count) in per_category.items()
        },
        scored_count=count,
        finished_at=finished_at,
        duration_seconds=max(0, math.floor(duration)),
    )
