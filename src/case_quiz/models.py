"""
Data models for the Case Quiz assessment engine.

Persisted entities (CaseProfile, UserIntake, QuizBlueprint, QuizQuestion,
QuizSession, QuizResult) and LLM output shapes (GeneratedBlueprint, JudgeVerdict) are
Pydantic models; caller-facing result envelopes are plain dataclasses.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, Field, field_validator


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Enumerations ────────────────────────────────────────────────────────────

class QuestionType(str, Enum):
    """Closed-form questions are scored by exact match, the rest by the judge."""
    MCQ      = "mcq"       # choices + correct key(s)
    SHORT    = "short"     # bullet-point answer + rubric
    SCENARIO = "scenario"  # short case vignette + rubric

    @property
    def is_free_form(self) -> bool:
        return self is not QuestionType.MCQ


class JudgedBy(str, Enum):
    EXACT_MATCH = "exact_match"
    LLM_JUDGE   = "llm_judge"
    HEURISTIC   = "heuristic"


class EngineErrorCode(str, Enum):
    """Stable identifiers for caller-facing and internal conditions."""
    NO_CASE_DATA           = "no_case_data"
    NO_INTAKE_FOUND        = "no_intake_found"
    NO_BLUEPRINT_FOUND     = "no_blueprint_found"
    NO_QUESTIONS_AVAILABLE = "no_questions_available"
    SESSION_NOT_FOUND      = "session_not_found"
    QUESTION_NOT_FOUND     = "question_not_found"
    SESSION_CLOSED         = "session_closed"
    # internal only: logged, never surfaced as a failure
    GENERATION_DEGRADED    = "generation_degraded"
    JUDGE_UNAVAILABLE      = "judge_unavailable"


# ─── Competency category registry ────────────────────────────────────────────

COMPETENCY_CATEGORIES: list[dict] = [
    {
        "key": "knowledge",
        "name": "Law & traffic knowledge",
        "description": "BAC limits, cannabis separation rule, penalty points, licence consequences.",
    },
    {
        "key": "insight",
        "name": "Insight & responsibility",
        "description": "What went wrong, why it was dangerous, what was learned.",
    },
    {
        "key": "behavior",
        "name": "Behaviour change",
        "description": "Concrete measures (counselling, abstinence, controls), duration and stability.",
    },
    {
        "key": "consistency",
        "name": "Consistency with case facts",
        "description": "Statements match the documented case and current behaviour.",
    },
    {
        "key": "planning",
        "name": "Relapse prevention",
        "description": "Risk situations, early warning signs, strategies, support network.",
    },
]


# ─── Question building blocks ────────────────────────────────────────────────

class Choice(BaseModel):
    key:  str
    text: str


class RubricPoint(BaseModel):
    id:   str
    desc: str


class CategoryWeight(BaseModel):
    key:   str = Field(min_length=1)
    count: int = Field(ge=0, description="Target question count for this category")


# ─── Persisted entities ──────────────────────────────────────────────────────

class CaseProfile(BaseModel):
    """Normalised case facts for one (user, document version)."""
    id:          str = Field(default_factory=new_id)
    user_id:     str
    source_hash: str
    facts:       dict[str, Any]
    risk_flags:  list[str] = Field(default_factory=list)
    created_at:  datetime = Field(default_factory=utcnow)
    synced_at:   datetime = Field(default_factory=utcnow)   # last time this text was synced

    def generation_facts(self) -> dict[str, Any]:
        """Facts as handed to the question writer and the answer judge."""
        return {**self.facts, "risk_flags": list(self.risk_flags)}


class QuizBlueprint(BaseModel):
    """Category plan for one (user, document version, intake); doubles as a cache entry."""
    id:              str = Field(default_factory=new_id)
    user_id:         str
    source_hash:     str             # cache key: case text hash, plus intake hash when present
    case_hash:       Optional[str] = None    # hash of the case text the plan was written for
    categories:      list[CategoryWeight]
    generation_meta: dict[str, Any] = Field(default_factory=dict)
    created_at:      datetime = Field(default_factory=utcnow)

    @property
    def total_weight(self) -> int:
        return sum(c.count for c in self.categories)


class QuizQuestion(BaseModel):
    id:             str = Field(default_factory=new_id)
    user_id:        str
    blueprint_id:   str
    type:           QuestionType
    category:       str
    difficulty:     int = Field(default=1, ge=1, le=3)
    prompt:         str
    choices:        Optional[list[Choice]] = None
    correct_answer: Optional[Union[str, list[str]]] = None
    rationales:     Optional[dict[str, str]] = None
    rubric:         Optional[list[RubricPoint]] = None


class RedactedQuestion(BaseModel):
    """What a session consumer sees before answering."""
    id:         str
    type:       QuestionType
    category:   str
    difficulty: int
    prompt:     str
    choices:    Optional[list[Choice]] = None


class QuizSession(BaseModel):
    id:                str = Field(default_factory=new_id)
    user_id:           str
    blueprint_id:      str
    question_ids:      list[str]
    started_at:        datetime = Field(default_factory=utcnow)
    finished_at:       Optional[datetime] = None
    duration_seconds:  Optional[int] = None
    score:             Optional[int] = Field(default=None, ge=0, le=100)
    competency_scores: Optional[dict[str, int]] = None

    @property
    def is_open(self) -> bool:
        return self.finished_at is None


class QuizResult(BaseModel):
    id:               str = Field(default_factory=new_id)
    session_id:       str
    question_id:      str
    submitted_answer: Any = None
    is_correct:       Optional[bool] = None
    score:            Optional[float] = Field(default=None, ge=0.0, le=1.0)
    feedback:         Optional[str] = None
    judged_by:        Optional[JudgedBy] = None
    time_spent_sec:   Optional[float] = None
    created_at:       datetime = Field(default_factory=utcnow)
    updated_at:       datetime = Field(default_factory=utcnow)


class UserIntake(BaseModel):
    """
    The client's own baseline answers, one record per user.

    ``responses`` is a nested dict whose leaves are ``{"value": v, "ts": iso}``
    so that every answer carries the time it was last changed.
    """
    user_id:      str
    responses:    dict[str, Any] = Field(default_factory=dict)
    completed_at: Optional[datetime] = None
    created_at:   datetime = Field(default_factory=utcnow)
    updated_at:   datetime = Field(default_factory=utcnow)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def answers(self) -> dict[str, Any]:
        """Responses with the timestamps stripped, as shown to the question writer."""
        return _unwrap(self.responses)


def _is_leaf(node: Any) -> bool:
    return isinstance(node, dict) and set(node) == {"value", "ts"}


def _unwrap(node: Any) -> Any:
    if _is_leaf(node):
        return node["value"]
    if isinstance(node, dict):
        return {k: _unwrap(v) for k, v in node.items()}
    return node


def merge_intake_responses(old: Any, new: Any, ts: str) -> Any:
    """
    Deep-merge incoming answers into stored ones.

    Scalars and lists become ``{"value", "ts"}`` leaves; a leaf whose value
    did not change keeps its old timestamp. Keys missing from ``new`` are kept.
    """
    if new is None:
        return {"value": None, "ts": ts}
    if not isinstance(new, dict):
        if _is_leaf(old) and old["value"] == new:
            return old
        return {"value": new, "ts": ts}
    merged = dict(old) if isinstance(old, dict) and not _is_leaf(old) else {}
    for key, value in new.items():
        merged[key] = merge_intake_responses(merged.get(key), value, ts)
    return merged


# ─── LLM output shapes ───────────────────────────────────────────────────────

class GeneratedQuestion(BaseModel):
    """One question as written by the LLM (loose wire format)."""
    type:       QuestionType
    category:   str = Field(min_length=1)
    difficulty: int = Field(default=1, ge=1, le=3)
    prompt:     str = Field(min_length=1)
    choices:    Optional[list[Choice]] = None
    correct:    Optional[Union[str, list[str]]] = None
    rationales: Optional[dict[str, str]] = None
    rubric:     Optional[list[RubricPoint]] = None

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("category", mode="before")
    @classmethod
    def _lower_category(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("rationales", mode="before")
    @classmethod
    def _stringify_rationales(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(t) for k, t in v.items()}
        return v

    @field_validator("rubric", mode="before")
    @classmethod
    def _unwrap_rubric(cls, v: Any) -> Any:
        # The prompt asks for {"points": [...]}; accept a bare list too
        if isinstance(v, dict):
            return v.get("points") or []
        return v


class GeneratedCategory(CategoryWeight):
    """Plan entry as written by the LLM; keys are matched against question categories."""

    @field_validator("key", mode="before")
    @classmethod
    def _lower_key(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class GeneratedBlueprint(BaseModel):
    categories: list[GeneratedCategory]
    questions:  list[GeneratedQuestion]
    llm_meta:   dict[str, Any] = Field(default_factory=dict)


class JudgeVerdict(BaseModel):
    score:    float
    feedback: str = ""

    @field_validator("score")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("score must be a finite number")
        return v

    @field_validator("feedback", mode="before")
    @classmethod
    def _feedback_text(cls, v: Any) -> Any:
        return "" if v is None else str(v)


# ─── Caller-facing result envelopes ──────────────────────────────────────────

T = TypeVar("T")


@dataclass(frozen=True)
class EngineError:
    code:    EngineErrorCode
    message: str


@dataclass(frozen=True)
class EngineResponse(Generic[T]):
    """Either a value or a typed error; engine operations never raise for these."""
    value: Optional[T] = None
    error: Optional[EngineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "EngineResponse[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, code: EngineErrorCode, message: str) -> "EngineResponse[T]":
        return cls(error=EngineError(code=code, message=message))
