"""
session_builder.py — Practice Session Assembly
==============================================
Picks an ordered, duplicate-free set of questions for one practice session.

  Question allocation — stratified sampling with graceful degradation:
    • Partition the bank by category; shuffle each partition (Fisher–Yates).
    • total_weight = Σ blueprint category counts (minimum 1).
    • target(category) = max(1, round_half_up(desired × count / total_weight)).
    • Greedy fill per category in blueprint order, stopping at `desired`.
    • Shortfall (a category ran dry) → uniform backfill without replacement
      from every question not yet selected, ignoring categories.
    • A bank smaller than `desired` yields the whole bank.

  The selection order is the session order; it is already randomised by the
  per-category shuffles and is not reordered afterwards.

  Redaction:
    Session consumers only ever receive RedactedQuestion payloads
    (id, type, category, difficulty, prompt, choices for mcq).
"""

from __future__ import annotations

import logging
import random
from typing import Optional, Sequence

from case_quiz.models import QuestionType, QuizBlueprint, QuizQuestion, RedactedQuestion
from case_quiz.scoring import round_half_up

logger = logging.getLogger(__name__)

MIN_SESSION_SIZE = 1
MAX_SESSION_SIZE = 20


def clamp_session_size(desired_count: int) -> int:
    return max(MIN_SESSION_SIZE, min(MAX_SESSION_SIZE, int(desired_count)))


def category_targets(blueprint: QuizBlueprint, desired_count: int) -> dict[str, int]:
    """Per-category target counts, in blueprint order."""
    total_weight = max(1, blueprint.total_weight)
    targets: dict[str, int] = {}
    for c in blueprint.categories:
        targets[c.key] = targets.get(c.key, 0) + max(
            1, round_half_up(desired_count * c.count / total_weight)
        )
    return targets


def build_session(
    blueprint: QuizBlueprint,
    question_bank: Sequence[QuizQuestion],
    desired_count: int,
    rng: Optional[random.Random] = None,
) -> list[str]:
    """Return the ordered question ids for one session."""
    rng = rng or random.Random()
    desired = clamp_session_size(desired_count)

    pools: dict[str, list[QuizQuestion]] = {}
    for q in question_bank:
        pools.setdefault(q.category, []).append(q)
    for pool in pools.values():
        rng.shuffle(pool)

    selection: list[str] = []
    chosen: set[str] = set()

    # First pass: per-category quota
    for key, target in category_targets(blueprint, desired).items():
        pool = pools.get(key, [])
        taken = 0
        while taken < target and pool and len(selection) < desired:
            q = pool.pop()
            if q.id in chosen:
                continue
            selection.append(q.id)
            chosen.add(q.id)
            taken += 1
        if len(selection) >= desired:
            break

    # Second pass: backfill from the whole bank
    if len(selection) < desired:
        remainder = list({q.id: q for q in question_bank if q.id not in chosen})
        fill = rng.sample(remainder, min(desired - len(selection), len(remainder)))
        logger.debug("Backfilled %d question(s) across categories", len(fill))
        selection.extend(fill)

    return selection[:desired]


def redact_question(question: QuizQuestion) -> RedactedQuestion:
    """Strip correct answer, rationales and rubric before hand-off."""
    return RedactedQuestion(
        id=question.id,
        type=question.type,
        category=question.category,
        difficulty=question.difficulty,
        prompt=question.prompt,
        choices=question.choices if question.type is QuestionType.MCQ else None,
    )
