"""
engine.py — Assessment engine façade
====================================
The caller layer: wires the normaliser, question writer, session builder,
answer evaluator and aggregator to the SQLite store.

Every public method returns an ``EngineResponse``; expected conditions
(missing case data, unknown session, closed session …) come back as typed
``EngineError`` values, never as exceptions.

  Learner flow
  ------------
    sync_case_profile(user, text)  → CaseProfile        (idempotent per text)
    save_intake(user, answers)     → UserIntake         (merged, optional)
    ensure_blueprint(user)         → BlueprintStatus    (generate once, cache)
    start_session(user, count)     → SessionStart       (redacted questions)
    submit_answer(user, s, q, a)   → AnswerFeedback     (upsert per question)
    finish_session(user, s)        → SessionSummary     (idempotent close)

  Admin
  -----
    list_sessions(user)            → [SessionOverview]  (items total / scored)
    session_detail(user, s)        → SessionDetail      (unredacted)
    reset_user(user, intake?)      → deleted row counts
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Optional

from case_quiz.answer_evaluator import AnswerEvaluator
from case_quiz.blueprint_generator import BlueprintGenerator
from case_quiz.case_normalizer import normalize, source_hash
from case_quiz.config import Settings, get_settings
from case_quiz.database import QuizStore
from case_quiz.guardrails import GuardrailsPipeline
from case_quiz.llm import CompletionFn, build_completion
from case_quiz.models import (
    CaseProfile,
    CategoryWeight,
    EngineErrorCode,
    EngineResponse,
    QuestionType,
    QuizBlueprint,
    QuizQuestion,
    QuizResult,
    QuizSession,
    RedactedQuestion,
    UserIntake,
    merge_intake_responses,
    utcnow,
)
from case_quiz.session_aggregator import SessionSummary, finish
from case_quiz.session_builder import build_session, clamp_session_size, redact_question

logger = logging.getLogger(__name__)


# ─── Result payloads ──────────────────────────────────────────────────────────

@dataclass
class BlueprintStatus:
    blueprint:      QuizBlueprint
    question_count: int
    generated:      bool    # False when served from the (user, source_hash) cache

    @property
    def degraded(self) -> bool:
        return bool(self.blueprint.generation_meta.get("degraded"))


@dataclass
class SessionStart:
    session:   QuizSession
    questions: list[RedactedQuestion] = field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        """Consumer-facing JSON: session id plus redacted questions."""
        return {
            "session_id": self.session.id,
            "questions":  [q.model_dump(mode="json") for q in self.questions],
        }


@dataclass
class AnswerFeedback:
    result:   QuizResult
    feedback: dict[str, Any]


@dataclass
class SessionOverview:
    session:      QuizSession
    items_total:  int
    items_scored: int


@dataclass
class SessionDetail:
    session:   QuizSession
    questions: list[QuizQuestion]
    results:   list[QuizResult]


# ─── Engine ───────────────────────────────────────────────────────────────────

class AssessmentEngine:
    """
    Stateless orchestration over a QuizStore.

    Usage::

        engine = AssessmentEngine.from_settings()
        engine.sync_case_profile("u1", extracted_text)
        engine.ensure_blueprint("u1")
        start = engine.start_session("u1", count=10)
    """

    def __init__(
        self,
        store: QuizStore,
        complete: Optional[CompletionFn] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        guardrails: Optional[GuardrailsPipeline] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.guardrails = guardrails or GuardrailsPipeline()
        self.generator = BlueprintGenerator(complete, self.guardrails)
        self.evaluator = AnswerEvaluator(complete)
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AssessmentEngine":
        """Build an engine with the configured store and LLM (None in mock mode)."""
        settings = settings or get_settings()
        store = QuizStore(settings.engine.db_path)
        store.init_db()
        return cls(store, complete=build_completion(settings), settings=settings)

    # ── Case profile ─────────────────────────────────────────────────────────

    def sync_case_profile(self, user_id: str, raw_text: str) -> EngineResponse[CaseProfile]:
        """Normalise extracted case text; one profile per (user, text hash)."""
        if not raw_text or not raw_text.strip():
            return EngineResponse.failure(
                EngineErrorCode.NO_CASE_DATA,
                "No case text found. Upload and extract your case file first.",
            )
        normalized = normalize(raw_text)
        candidate = CaseProfile(
            user_id=user_id,
            source_hash=source_hash(raw_text),
            facts=normalized.facts,
            risk_flags=normalized.risk_flags,
        )
        profile = self.store.upsert_case_profile(candidate)
        if profile.id == candidate.id:
            logger.info("Case profile created for user %s (flags=%s)", user_id, profile.risk_flags)
        else:
            logger.debug("Case profile for user %s re-synced (unchanged text)", user_id)
        return EngineResponse.success(profile)

    def get_case_profile(self, user_id: str) -> EngineResponse[CaseProfile]:
        profile = self.store.get_case_profile(user_id)
        if profile is None:
            return EngineResponse.failure(
                EngineErrorCode.NO_CASE_DATA,
                "No case profile yet. Upload your case file first.",
            )
        return EngineResponse.success(profile)

    # ── Baseline intake ──────────────────────────────────────────────────────

    def save_intake(
        self,
        user_id: str,
        responses: dict[str, Any],
        complete: bool = False,
    ) -> EngineResponse[UserIntake]:
        """
        Merge the client's baseline answers into the stored intake.

        Answers not present in ``responses`` are kept. ``complete`` marks the
        intake finished; from then on it feeds question generation.
        """
        now = utcnow()
        intake = self.store.get_intake(user_id) or UserIntake(user_id=user_id, created_at=now)
        intake.responses = merge_intake_responses(intake.responses, responses or {}, now.isoformat())
        intake.updated_at = now
        if complete:
            intake.completed_at = now
        saved = self.store.save_intake(intake)
        logger.info("Intake saved for user %s (complete=%s)", user_id, saved.is_complete)
        return EngineResponse.success(saved)

    def get_intake(self, user_id: str) -> EngineResponse[UserIntake]:
        intake = self.store.get_intake(user_id)
        if intake is None:
            return EngineResponse.failure(
                EngineErrorCode.NO_INTAKE_FOUND,
                "No baseline intake yet. Answer the intake questions first.",
            )
        return EngineResponse.success(intake)

    def _completed_intake(self, user_id: str) -> Optional[dict[str, Any]]:
        intake = self.store.get_intake(user_id)
        if intake is None or not intake.is_complete:
            return None
        return intake.answers() or None

    # ── Blueprint ────────────────────────────────────────────────────────────

    def ensure_blueprint(self, user_id: str, force: bool = False) -> EngineResponse[BlueprintStatus]:
        """
        Return the blueprint for the user's current case text (and completed
        intake, if any), generating it on first use.  ``force`` discards the
        cached one and regenerates.
        """
        profile = self.store.get_case_profile(user_id)
        if profile is None:
            return EngineResponse.failure(
                EngineErrorCode.NO_CASE_DATA,
                "No case profile yet. Upload your case file before generating questions.",
            )

        facts = profile.generation_facts()
        cache_key = profile.source_hash
        intake = self._completed_intake(user_id)
        if intake is not None:
            facts["intake"] = intake
            intake_hash = source_hash(json.dumps(intake, sort_keys=True, ensure_ascii=False))
            cache_key = source_hash(f"{profile.source_hash}|{intake_hash}")

        existing = self.store.get_blueprint(user_id, source_hash=cache_key)
        if existing is not None and force:
            logger.info("Regenerating blueprint %s for user %s", existing.id, user_id)
            self.store.delete_blueprint(user_id, existing.id)
            existing = None
        if existing is not None:
            return EngineResponse.success(BlueprintStatus(
                blueprint=existing,
                question_count=len(self.store.get_questions(existing.id)),
                generated=False,
            ))

        generated = self.generator.generate(facts)
        candidate = QuizBlueprint(
            user_id=user_id,
            source_hash=cache_key,
            case_hash=profile.source_hash,
            categories=[CategoryWeight(key=c.key, count=c.count) for c in generated.categories],
            generation_meta=generated.llm_meta,
        )
        questions = [
            QuizQuestion(
                user_id=user_id,
                blueprint_id=candidate.id,
                type=g.type,
                category=g.category,
                difficulty=g.difficulty,
                prompt=g.prompt,
                choices=g.choices if g.type is QuestionType.MCQ else None,
                correct_answer=g.correct if g.type is QuestionType.MCQ else None,
                rationales=g.rationales if g.type is QuestionType.MCQ else None,
                rubric=g.rubric if g.type.is_free_form else None,
            )
            for g in generated.questions
        ]
        blueprint = self.store.create_blueprint(candidate, questions)
        stored_new = blueprint.id == candidate.id
        if stored_new:
            logger.info("Blueprint %s stored for user %s (%d questions, source=%s)",
                        blueprint.id, user_id, len(questions),
                        blueprint.generation_meta.get("source"))
        return EngineResponse.success(BlueprintStatus(
            blueprint=blueprint,
            question_count=len(self.store.get_questions(blueprint.id)),
            generated=stored_new,
        ))

    # ── Sessions ─────────────────────────────────────────────────────────────

    def start_session(
        self,
        user_id: str,
        count: Optional[int] = None,
        blueprint_id: Optional[str] = None,
    ) -> EngineResponse[SessionStart]:
        """Sample a session from the latest (or given) blueprint; questions are redacted."""
        blueprint = self.store.get_blueprint(user_id, blueprint_id=blueprint_id)
        if blueprint is None:
            return EngineResponse.failure(
                EngineErrorCode.NO_BLUEPRINT_FOUND,
                "No question catalogue yet. Generate the blueprint first.",
            )
        bank = self.store.get_questions(blueprint.id)
        if not bank:
            return EngineResponse.failure(
                EngineErrorCode.NO_QUESTIONS_AVAILABLE,
                "The question catalogue is empty. Regenerate the blueprint.",
            )

        desired = clamp_session_size(
            self.settings.engine.default_session_size if count is None else count
        )
        question_ids = build_session(blueprint, bank, desired, rng=self._rng)
        check = self.guardrails.check_session(question_ids, desired, len(bank))
        if check.blocked:
            raise RuntimeError(f"Session sampling produced an invalid session:\n{check.summary()}")

        by_id = {q.id: q for q in bank}
        redacted = [redact_question(by_id[qid]) for qid in question_ids]
        check = self.guardrails.check_redaction(q.model_dump() for q in redacted)
        if check.blocked:
            raise RuntimeError(f"Redaction failed:\n{check.summary()}")

        session = self.store.create_session(QuizSession(
            user_id=user_id,
            blueprint_id=blueprint.id,
            question_ids=question_ids,
        ))
        logger.info("Session %s started for user %s (%d/%d questions)",
                    session.id, user_id, len(question_ids), len(bank))
        return EngineResponse.success(SessionStart(session=session, questions=redacted))

    def submit_answer(
        self,
        user_id: str,
        session_id: str,
        question_id: str,
        answer: Any,
        time_spent_sec: Optional[float] = None,
    ) -> EngineResponse[AnswerFeedback]:
        """Score one answer and store it; resubmitting overwrites the earlier result."""
        session = self.store.get_session(session_id, user_id=user_id)
        if session is None:
            return EngineResponse.failure(
                EngineErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found.",
            )
        if not session.is_open:
            return EngineResponse.failure(
                EngineErrorCode.SESSION_CLOSED,
                "This session is already finished. Start a new session to keep practising.",
            )
        question = (
            self.store.get_questions_by_ids([question_id]).get(question_id)
            if question_id in session.question_ids else None
        )
        if question is None:
            return EngineResponse.failure(
                EngineErrorCode.QUESTION_NOT_FOUND,
                f"Question {question_id} is not part of session {session_id}.",
            )

        evaluation = self.evaluator.evaluate(question, answer, self._judge_facts(user_id, session))
        result = self.store.upsert_result(QuizResult(
            session_id=session.id,
            question_id=question.id,
            submitted_answer=answer,
            is_correct=evaluation.is_correct,
            score=evaluation.score,
            feedback=evaluation.feedback,
            judged_by=evaluation.judged_by,
            time_spent_sec=time_spent_sec,
        ))
        logger.debug("Answer stored for session %s question %s (score=%.2f, %s)",
                     session.id, question.id, evaluation.score, evaluation.judged_by.value)
        return EngineResponse.success(AnswerFeedback(result=result, feedback=evaluation.to_feedback()))

    def _judge_facts(self, user_id: str, session: QuizSession) -> dict[str, Any]:
        blueprint = self.store.get_blueprint(user_id, blueprint_id=session.blueprint_id)
        profile = None
        if blueprint is not None:
            profile = self.store.get_case_profile(
                user_id, source_hash=blueprint.case_hash or blueprint.source_hash,
            )
        # Blueprint regenerated since the session started
        if profile is None:
            profile = self.store.get_case_profile(user_id)
        return profile.generation_facts() if profile else {}

    def finish_session(self, user_id: str, session_id: str) -> EngineResponse[SessionSummary]:
        """Score and close the session. A second call returns the stored numbers."""
        session = self.store.get_session(session_id, user_id=user_id)
        if session is None:
            return EngineResponse.failure(
                EngineErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found.",
            )
        if not session.is_open:
            return EngineResponse.success(self._stored_summary(session))

        results = self.store.get_results(session.id)
        summary = finish(session, results, self.store.get_questions_by_ids(session.question_ids))
        closed = self.store.close_session(
            session.id,
            finished_at=summary.finished_at,
            duration_seconds=summary.duration_seconds,
            score=summary.score,
            competency_scores=summary.competency_scores,
        )
        if not closed:
            # Lost a race against a concurrent finish; report what was stored
            return EngineResponse.success(
                self._stored_summary(self.store.get_session(session.id))
            )
        logger.info("Session %s closed: score=%d competencies=%s",
                    session.id, summary.score, summary.competency_scores)
        return EngineResponse.success(summary)

    def _stored_summary(self, session: QuizSession) -> SessionSummary:
        scored = [
            r for r in self.store.get_results(session.id)
            if r.is_correct is not None or r.score is not None
        ]
        return SessionSummary(
            session_id=session.id,
            score=session.score or 0,
            competency_scores=dict(session.competency_scores or {}),
            scored_count=len(scored),
            finished_at=session.finished_at,
            duration_seconds=session.duration_seconds or 0,
        )

    # ── Admin ────────────────────────────────────────────────────────────────

    def list_sessions(self, user_id: str) -> EngineResponse[list[SessionOverview]]:
        sessions = self.store.list_sessions(user_id)
        counts = self.store.count_results([s.id for s in sessions])
        return EngineResponse.success([
            SessionOverview(
                session=s,
                items_total=len(s.question_ids),
                items_scored=counts.get(s.id, 0),
            )
            for s in sessions
        ])

    def session_detail(self, user_id: str, session_id: str) -> EngineResponse[SessionDetail]:
        """Full, unredacted view of one session for review."""
        session = self.store.get_session(session_id, user_id=user_id)
        if session is None:
            return EngineResponse.failure(
                EngineErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found.",
            )
        by_id = self.store.get_questions_by_ids(session.question_ids)
        return EngineResponse.success(SessionDetail(
            session=session,
            questions=[by_id[qid] for qid in session.question_ids if qid in by_id],
            results=self.store.get_results(session.id),
        ))

    def reset_user(self, user_id: str, reset_intake: bool = False) -> EngineResponse[dict[str, int]]:
        """Delete the user's blueprints, questions, sessions and results; optionally the intake too."""
        deleted = self.store.delete_user_quiz_data(user_id, include_intake=reset_intake)
        logger.info("Quiz data reset for user %s: %s", user_id, deleted)
        return EngineResponse.success(deleted)
