"""
guardrails.py – Content guardrails for the assessment engine
=============================================================
Checks that wrap every hand-off where content could be malformed or leak:
LLM-written blueprints before they are stored, built sessions before they
are persisted, and consumer payloads before they leave the engine.

Guardrail levels
----------------
BLOCK   – Hard-stop: the artefact is rejected (generator retries / falls back).
WARN    – Soft-stop: the artefact is used, the issue is logged.
INFO    – Advisory: informational note only.

Guards implemented
------------------
Blueprint guards (after the question writer):
  G-01  At least one category with a positive target count
  G-02  Minimum question count met (≥ MIN_GENERATED_QUESTIONS)
  G-03  MCQ integrity: ≥2 choices, unique keys, correct key(s) among choices
  G-04  Free-form questions carry a non-empty rubric
  G-05  Question category not planned in the blueprint (backfill only)
  G-06  Planned category without any question
  G-07  Question-type mix (at least one closed and one free-form item)

Session guards (after the session builder):
  G-08  No duplicate question IDs
  G-09  Session size equals min(desired, bank size)

Redaction guards (before a payload reaches the session consumer):
  G-10  No answer-revealing field (correct answer, rationales, rubric)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from case_quiz.models import GeneratedBlueprint, QuestionType

MIN_GENERATED_QUESTIONS = 10

REDACTED_FIELDS = ("correct_answer", "correct", "rationales", "rubric")


# ─── Enums & data models ─────────────────────────────────────────────────────

class GuardrailLevel(str, Enum):
    BLOCK = "BLOCK"
    WARN  = "WARN"
    INFO  = "INFO"


@dataclass
class GuardrailViolation:
    code:    str
    level:   GuardrailLevel
    message: str
    field:   str = ""   # which field triggered the violation


@dataclass
class GuardrailResult:
    passed:     bool
    violations: list[GuardrailViolation] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return any(v.level == GuardrailLevel.BLOCK for v in self.violations)

    @property
    def warnings(self) -> list[GuardrailViolation]:
        return [v for v in self.violations if v.level == GuardrailLevel.WARN]

    @property
    def infos(self) -> list[GuardrailViolation]:
        return [v for v in self.violations if v.level == GuardrailLevel.INFO]

    def summary(self) -> str:
        if not self.violations:
            return "All guardrails passed."
        return "\n".join(f"[{v.level.value}] [{v.code}] {v.message}" for v in self.violations)


def _result(violations: list[GuardrailViolation]) -> GuardrailResult:
    return GuardrailResult(
        passed=not any(v.level == GuardrailLevel.BLOCK for v in violations),
        violations=violations,
    )


def _as_keys(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value]
    return [str(value).strip()]


# ─── Guardrail checks ─────────────────────────────────────────────────────────

class BlueprintGuardrails:
    """G-01 – G-07: Validates an LLM-written blueprint before it is stored."""

    def __init__(self, min_questions: int = MIN_GENERATED_QUESTIONS):
        self.min_questions = min_questions

    def check(self, blueprint: GeneratedBlueprint) -> GuardrailResult:
        violations: list[GuardrailViolation] = []

        # G-01 Category plan
        if not blueprint.categories or sum(c.count for c in blueprint.categories) < 1:
            violations.append(GuardrailViolation(
                code="G-01", level=GuardrailLevel.BLOCK, field="categories",
                message="Blueprint has no category with a positive target count.",
            ))

        # G-02 Minimum question count
        if len(blueprint.questions) < self.min_questions:
            violations.append(GuardrailViolation(
                code="G-02", level=GuardrailLevel.BLOCK, field="questions",
                message=(
                    f"Blueprint has only {len(blueprint.questions)} questions "
                    f"(<{self.min_questions})."
                ),
            ))

        planned = {c.key for c in blueprint.categories}
        for idx, q in enumerate(blueprint.questions):
            where = f"questions[{idx}]"
            if q.type is QuestionType.MCQ:
                # G-03 MCQ integrity
                keys = [c.key.strip() for c in (q.choices or [])]
                correct = [k for k in _as_keys(q.correct) if k]
                if len(keys) < 2:
                    problem = "fewer than 2 choices"
                elif len(set(keys)) != len(keys):
                    problem = "duplicate choice keys"
                elif not correct:
                    problem = "no correct answer"
                elif not set(correct) <= set(keys):
                    problem = f"correct answer {correct} not among choices {keys}"
                else:
                    problem = ""
                if problem:
                    violations.append(GuardrailViolation(
                        code="G-03", level=GuardrailLevel.BLOCK, field=where,
                        message=f"MCQ '{q.prompt[:40]}': {problem}.",
                    ))
            elif not q.rubric:
                # G-04 Free-form rubric
                violations.append(GuardrailViolation(
                    code="G-04", level=GuardrailLevel.BLOCK, field=where,
                    message=f"{q.type.value} question '{q.prompt[:40]}' has no rubric.",
                ))

            # G-05 Unplanned category
            if q.category not in planned:
                violations.append(GuardrailViolation(
                    code="G-05", level=GuardrailLevel.WARN, field=where,
                    message=(
                        f"Category '{q.category}' is not planned in the blueprint; "
                        "question is only reachable through backfill."
                    ),
                ))

        # G-06 Planned category without questions
        present = {q.category for q in blueprint.questions}
        for c in blueprint.categories:
            if c.count > 0 and c.key not in present:
                violations.append(GuardrailViolation(
                    code="G-06", level=GuardrailLevel.WARN, field="categories",
                    message=f"Category '{c.key}' is planned but has no questions.",
                ))

        # G-07 Type mix (info only)
        types = {q.type for q in blueprint.questions}
        if types and (QuestionType.MCQ not in types or types == {QuestionType.MCQ}):
            violations.append(GuardrailViolation(
                code="G-07", level=GuardrailLevel.INFO, field="questions",
                message="Bank lacks either closed (mcq) or free-form questions.",
            ))

        return _result(violations)


class SessionGuardrails:
    """G-08 – G-09: Validates a built session before it is persisted."""

    def check(self, question_ids: list[str], desired_count: int, bank_size: int) -> GuardrailResult:
        violations: list[GuardrailViolation] = []

        # G-08 No duplicate IDs
        dups = {i for i in question_ids if question_ids.count(i) > 1}
        if dups:
            violations.append(GuardrailViolation(
                code="G-08", level=GuardrailLevel.BLOCK, field="question_ids",
                message=f"Duplicate question IDs detected: {sorted(dups)}.",
            ))

        # G-09 Size contract
        expected = min(desired_count, bank_size)
        if len(question_ids) != expected:
            violations.append(GuardrailViolation(
                code="G-09", level=GuardrailLevel.BLOCK, field="question_ids",
                message=f"Session has {len(question_ids)} questions, expected {expected}.",
            ))

        return _result(violations)


class RedactionGuardrails:
    """G-10: No answer-revealing content in pre-submission payloads."""

    def check(self, payloads: Iterable[dict]) -> GuardrailResult:
        violations: list[GuardrailViolation] = []
        for idx, payload in enumerate(payloads):
            leaked = [k for k in REDACTED_FIELDS if payload.get(k) is not None]
            if leaked:
                violations.append(GuardrailViolation(
                    code="G-10", level=GuardrailLevel.BLOCK, field=f"questions[{idx}]",
                    message=f"Payload exposes {', '.join(leaked)} before submission.",
                ))
        return _result(violations)


# ─── Convenience façade ───────────────────────────────────────────────────────

class GuardrailsPipeline:
    """
    Single entry-point that runs all applicable guardrails for a given stage.

    Usage::

        gp = GuardrailsPipeline()
        result = gp.check_blueprint(generated)                 # after generation
        result = gp.check_session(ids, desired, len(bank))     # after sampling
        result = gp.check_redaction(payloads)                  # before hand-off
    """

    def __init__(self, min_questions: int = MIN_GENERATED_QUESTIONS):
        self.blueprint_guard = BlueprintGuardrails(min_questions)
        self.session_guard   = SessionGuardrails()
        self.redaction_guard = RedactionGuardrails()

    def check_blueprint(self, blueprint: GeneratedBlueprint) -> GuardrailResult:
        return self.blueprint_guard.check(blueprint)

    def check_session(self, question_ids: list[str], desired_count: int, bank_size: int) -> GuardrailResult:
        return self.session_guard.check(question_ids, desired_count, bank_size)

    def check_redaction(self, payloads: Iterable[dict]) -> GuardrailResult:
        return self.redaction_guard.check(payloads)

    def merge(self, *results: GuardrailResult) -> GuardrailResult:
        """Merge multiple GuardrailResult objects into one."""
        all_v = []
        for r in results:
            all_v.extend(r.violations)
        return _result(all_v)
