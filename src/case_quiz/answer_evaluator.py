"""
answer_evaluator.py — Answer Scoring
====================================
Scores one submitted answer against one question.

  Dispatch on question.type (no class hierarchy):

    mcq              → exact set match, score 0 or 1.  Pure and total.
    short / scenario → external LLM judge against the question rubric and
                       the case facts; judge score snapped to 0.25 steps
                       (ties round up) and clamped to [0, 1].

  Judge fallback (judge missing, timeout, provider error, unparsable or
  non-finite output) — length staircase on the stripped answer:

      > 120 chars → 0.75      > 40 chars → 0.5
      > 10 chars  → 0.25      otherwise  → 0

  Feedback redaction:
    mcq        → correct answer + per-choice rationales (post-submission only)
    free-form  → the judge's natural-language feedback, never the rubric
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from case_quiz.llm import CompletionFn, parse_json_object
from case_quiz.models import (
    EngineErrorCode,
    JudgedBy,
    JudgeVerdict,
    QuestionType,
    QuizQuestion,
)
from case_quiz.prompts import JUDGE_INSTRUCTIONS, JUDGE_SYSTEM_PROMPT
from case_quiz.scoring import quantize_score

logger = logging.getLogger(__name__)

FACTS_MAX_CHARS = 1800
ANSWER_MAX_CHARS = 1800

HEURISTIC_FEEDBACK = (
    "Heuristic rating (no AI judge available). Please add more detail: "
    "concrete examples, the measures you have taken and your relapse strategies."
)


# ─── Result model ─────────────────────────────────────────────────────────────

@dataclass
class Evaluation:
    """Outcome of scoring one answer."""
    score:          float                       # always in [0, 1]
    judged_by:      JudgedBy
    is_correct:     Optional[bool] = None       # mcq only
    feedback:       Optional[str] = None        # free-form only
    correct_answer: Optional[Union[str, list[str]]] = None   # mcq only
    rationales:     dict[str, str] = field(default_factory=dict)

    def to_feedback(self) -> dict[str, Any]:
        """Post-submission feedback payload for the session consumer."""
        if self.is_correct is not None:
            return {
                "is_correct":     self.is_correct,
                "score":          self.score,
                "correct_answer": self.correct_answer,
                "rationales":     dict(self.rationales),
            }
        return {"score": self.score, "feedback": self.feedback or ""}


# ─── Closed-form scoring ──────────────────────────────────────────────────────

def answer_set(value: Any) -> set[str]:
    """Normalise an answer (None, scalar or sequence) to a set of keys."""
    if value is None:
        return set()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = [value]
    return {str(v).strip() for v in items if v is not None and str(v).strip()}


def score_mcq(question: QuizQuestion, submitted: Any) -> Evaluation:
    is_correct = answer_set(submitted) == answer_set(question.correct_answer)
    return Evaluation(
        score=1.0 if is_correct else 0.0,
        judged_by=JudgedBy.EXACT_MATCH,
        is_correct=is_correct,
        correct_answer=question.correct_answer,
        rationales=dict(question.rationales or {}),
    )


# ─── Free-form scoring ────────────────────────────────────────────────────────

def answer_text(submitted: Any) -> str:
    if submitted is None:
        return ""
    if isinstance(submitted, (list, tuple)):
        return "\n".join(str(s) for s in submitted)
    return str(submitted)


def heuristic_score(answer: str) -> float:
    length = len((answer or "").strip())
    if length > 120:
        return 0.75
    if length > 40:
        return 0.5
    if length > 10:
        return 0.25
    return 0.0


def _judge_instruction(question: QuizQuestion, answer: str, facts: dict[str, Any]) -> str:
    rubric = {"points": [p.model_dump() for p in (question.rubric or [])]}
    return JUDGE_INSTRUCTIONS.format(
        rubric=json.dumps(rubric, ensure_ascii=False, indent=2),
        prompt=question.prompt,
        facts=json.dumps(facts or {}, ensure_ascii=False, indent=2, default=str)[:FACTS_MAX_CHARS],
        answer=answer[:ANSWER_MAX_CHARS],
    )


class AnswerEvaluator:
    """
    Scores answers; the LLM judge is optional.

    Usage::

        evaluator  = AnswerEvaluator(complete)          # complete may be None
        evaluation = evaluator.evaluate(question, answer, facts)
        payload    = evaluation.to_feedback()
    """

    def __init__(self, complete: Optional[CompletionFn] = None) -> None:
        self._complete = complete
        self._dispatch: dict[QuestionType, Callable[[QuizQuestion, Any, dict], Evaluation]] = {
            QuestionType.MCQ:      lambda q, a, _facts: score_mcq(q, a),
            QuestionType.SHORT:    self._score_free_form,
            QuestionType.SCENARIO: self._score_free_form,
        }

    def evaluate(
        self,
        question: QuizQuestion,
        submitted: Any,
        facts: Optional[dict[str, Any]] = None,
    ) -> Evaluation:
        scorer = self._dispatch.get(question.type)
        if scorer is None:
            raise ValueError(f"Unsupported question type: {question.type!r}")
        return scorer(question, submitted, facts or {})

    def _score_free_form(self, question: QuizQuestion, submitted: Any, facts: dict) -> Evaluation:
        answer = answer_text(submitted)
        if self._complete is None:
            return self._heuristic(answer, "no LLM configured")

        try:
            raw = self._complete(JUDGE_SYSTEM_PROMPT, _judge_instruction(question, answer, facts))
        except Exception as exc:
            return self._heuristic(answer, f"judge call failed: {exc}")
        try:
            verdict = JudgeVerdict.model_validate(parse_json_object(raw))
        except (json.JSONDecodeError, ValidationError, ValueError) as exc:
            return self._heuristic(answer, f"judge output unusable: {str(exc)[:200]}")

        return Evaluation(
            score=quantize_score(verdict.score),
            judged_by=JudgedBy.LLM_JUDGE,
            feedback=verdict.feedback,
        )

    def _heuristic(self, answer: str, reason: str) -> Evaluation:
        logger.warning("%s: %s; length heuristic applied",
                       EngineErrorCode.JUDGE_UNAVAILABLE.value, reason)
        return Evaluation(
            score=heuristic_score(answer),
            judged_by=JudgedBy.HEURISTIC,
            feedback=HEURISTIC_FEEDBACK,
        )
