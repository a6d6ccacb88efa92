"""
case_quiz/database.py — SQLite persistence layer for the assessment engine
=========================================================================
Stores case profiles, blueprints, question banks, practice sessions and
per-question results so that the engine itself stays stateless: every
operation is a pure function of what is persisted here.

Design decisions
----------------
- **Unique keys enforce idempotency** — `(user_id, source_hash)` is UNIQUE
  on both `case_profiles` and `quiz_blueprints`; writers use INSERT OR IGNORE
  and read back the surviving row, so two racing generators never produce
  two blueprints.
- **Blueprint + questions in one transaction** — the question bank is only
  written by the writer whose blueprint row was actually inserted.
- **Result upsert** — `(session_id, question_id)` is UNIQUE on
  `quiz_results`; a resubmission overwrites (latest write wins).
- **Conditional close** — a session is closed with
  `UPDATE … WHERE finished_at IS NULL`, so a closed session is never mutated.
- **Latest sync wins** — re-syncing a known case text bumps its `sync_seq`,
  so "the current profile" is whichever text was synced last, not the
  first one stored.
- **Shared questions survive regeneration** — deleting a blueprint keeps
  the questions that an existing session still points at.
- **WAL journal mode** — concurrent readers do not block the writer.

Tables
------
  case_profiles     id, user_id, source_hash, facts_json, risk_flags_json, created_at,
                    synced_at, sync_seq
  user_intakes      user_id, responses_json, completed_at, created_at, updated_at
  quiz_blueprints   id, user_id, source_hash, case_hash, categories_json,
                    generation_meta_json, created_at
  quiz_questions    id, user_id, blueprint_id, position, type, category, difficulty,
                    prompt, choices_json, correct_json, rationales_json, rubric_json
  quiz_sessions     id, user_id, blueprint_id, question_ids_json, started_at,
                    finished_at, duration_seconds, score, competency_json
  quiz_results      id, session_id, question_id, submitted_json, is_correct, score,
                    feedback, judged_by, time_spent_sec, created_at, updated_at

Public API (QuizStore)
----------------------
  init_db()                              create tables if they don't exist
  upsert_case_profile(profile)           → surviving CaseProfile
  get_case_profile(user_id, hash=None)   → CaseProfile | None (last synced if no hash)
  get_intake / save_intake               one baseline intake per user
  create_blueprint(blueprint, questions) → surviving QuizBlueprint
  get_blueprint(user_id, …)              → QuizBlueprint | None
  delete_blueprint(user_id, id)          blueprint + questions no session uses
  get_questions(blueprint_id)            → list[QuizQuestion] (bank order)
  get_questions_by_ids(ids)              → dict[id, QuizQuestion]
  create_session / get_session / list_sessions / close_session
  upsert_result / get_results / count_results
  delete_user_quiz_data(user_id, …)      admin reset (intake optional)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from case_quiz.models import (
    CaseProfile,
    QuizBlueprint,
    QuizQuestion,
    QuizResult,
    QuizSession,
    UserIntake,
    utcnow,
)

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, ensure_ascii=False, default=str)


def _load(text: Optional[str]) -> Any:
    return None if text is None else json.loads(text)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


class QuizStore:
    """SQLite-backed store; one short-lived connection per call."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = str(db_path)

    def _get_conn(self) -> sqlite3.Connection:
        """Return a connection with row_factory set."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        with closing(self._get_conn()) as conn:
            conn.executescript("""
            CREATE TABLE IF NOT EXISTS case_profiles (
                id              TEXT PRIMARY KEY,
                user_id         TEXT NOT NULL,
                source_hash     TEXT NOT NULL,
                facts_json      TEXT NOT NULL,
                risk_flags_json TEXT NOT NULL DEFAULT '[]',
                created_at      TEXT NOT NULL,
                synced_at       TEXT NOT NULL,
                sync_seq        INTEGER NOT NULL DEFAULT 0,
                UNIQUE (user_id, source_hash)
            );
            CREATE TABLE IF NOT EXISTS user_intakes (
                user_id        TEXT PRIMARY KEY,
                responses_json TEXT NOT NULL DEFAULT '{}',
                completed_at   TEXT,
                created_at     TEXT NOT NULL,
                updated_at     TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS quiz_blueprints (
                id                   TEXT PRIMARY KEY,
                user_id              TEXT NOT NULL,
                source_hash          TEXT NOT NULL,
                case_hash            TEXT,
                categories_json      TEXT NOT NULL,
                generation_meta_json TEXT,
                created_at           TEXT NOT NULL,
                UNIQUE (user_id, source_hash)
            );
            CREATE TABLE IF NOT EXISTS quiz_questions (
                id              TEXT PRIMARY KEY,
                user_id         TEXT NOT NULL,
                blueprint_id    TEXT NOT NULL,
                position        INTEGER NOT NULL,
                type            TEXT NOT NULL,
                category        TEXT NOT NULL,
                difficulty      INTEGER NOT NULL DEFAULT 1,
                prompt          TEXT NOT NULL,
                choices_json    TEXT,
                correct_json    TEXT,
                rationales_json TEXT,
                rubric_json     TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_questions_blueprint
                ON quiz_questions (blueprint_id, position);
            CREATE TABLE IF NOT EXISTS quiz_sessions (
                id                TEXT PRIMARY KEY,
                user_id           TEXT NOT NULL,
                blueprint_id      TEXT NOT NULL,
                question_ids_json TEXT NOT NULL,
                started_at        TEXT NOT NULL,
                finished_at       TEXT,
                duration_seconds  INTEGER,
                score             INTEGER,
                competency_json   TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_sessions_user ON quiz_sessions (user_id);
            CREATE TABLE IF NOT EXISTS quiz_results (
                id             TEXT PRIMARY KEY,
                session_id     TEXT NOT NULL,
                question_id    TEXT NOT NULL,
                submitted_json TEXT,
                is_correct     INTEGER,
                score          REAL,
                feedback       TEXT,
                judged_by      TEXT,
                time_spent_sec REAL,
                created_at     TEXT NOT NULL,
                updated_at     TEXT NOT NULL,
                UNIQUE (session_id, question_id)
            );
            """)
            conn.commit()

    # ─── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _profile(row: sqlite3.Row) -> CaseProfile:
        return CaseProfile(
            id=row["id"],
            user_id=row["user_id"],
            source_hash=row["source_hash"],
            facts=_load(row["facts_json"]),
            risk_flags=_load(row["risk_flags_json"]) or [],
            created_at=row["created_at"],
            synced_at=row["synced_at"],
        )

    @staticmethod
    def _intake(row: sqlite3.Row) -> UserIntake:
        return UserIntake(
            user_id=row["user_id"],
            responses=_load(row["responses_json"]) or {},
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _blueprint(row: sqlite3.Row) -> QuizBlueprint:
        return QuizBlueprint(
            id=row["id"],
            user_id=row["user_id"],
            source_hash=row["source_hash"],
            case_hash=row["case_hash"],
            categories=_load(row["categories_json"]),
            generation_meta=_load(row["generation_meta_json"]) or {},
            created_at=row["created_at"],
        )

    @staticmethod
    def _question(row: sqlite3.Row) -> QuizQuestion:
        return QuizQuestion(
            id=row["id"],
            user_id=row["user_id"],
            blueprint_id=row["blueprint_id"],
            type=row["type"],
            category=row["category"],
            difficulty=row["difficulty"],
            prompt=row["prompt"],
            choices=_load(row["choices_json"]),
            correct_answer=_load(row["correct_json"]),
            rationales=_load(row["rationales_json"]),
            rubric=_load(row["rubric_json"]),
        )

    @staticmethod
    def _session(row: sqlite3.Row) -> QuizSession:
        return QuizSession(
            id=row["id"],
            user_id=row["user_id"],
            blueprint_id=row["blueprint_id"],
            question_ids=_load(row["question_ids_json"]),
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            duration_seconds=row["duration_seconds"],
            score=row["score"],
            competency_scores=_load(row["competency_json"]),
        )

    @staticmethod
    def _result(row: sqlite3.Row) -> QuizResult:
        return QuizResult(
            id=row["id"],
            session_id=row["session_id"],
            question_id=row["question_id"],
            submitted_answer=_load(row["submitted_json"]),
            is_correct=None if row["is_correct"] is None else bool(row["is_correct"]),
            score=row["score"],
            feedback=row["feedback"],
            judged_by=row["judged_by"],
            time_spent_sec=row["time_spent_sec"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ─── Case profiles ───────────────────────────────────────────────────────

    def upsert_case_profile(self, profile: CaseProfile) -> CaseProfile:
        """
        Insert unless (user_id, source_hash) exists; return the surviving row.

        Either way the row becomes the user's most recently synced profile.
        Facts of an existing row are never rewritten.
        """
        with closing(self._get_conn()) as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO case_profiles
                        (id, user_id, source_hash, facts_json, risk_flags_json,
                         created_at, synced_at, sync_seq)
                    VALUES (?, ?, ?, ?, ?, ?, ?,
                            (SELECT COALESCE(MAX(sync_seq), 0) + 1
                             FROM case_profiles WHERE user_id = ?))
                    ON CONFLICT (user_id, source_hash) DO UPDATE SET
                        synced_at = excluded.synced_at,
                        sync_seq  = excluded.sync_seq
                    """,
                    (profile.id, profile.user_id, profile.source_hash,
                     _dump(profile.facts), _dump(profile.risk_flags),
                     _ts(profile.created_at), _ts(profile.synced_at), profile.user_id),
                )
            row = conn.execute(
                "SELECT * FROM case_profiles WHERE user_id = ? AND source_hash = ?",
                (profile.user_id, profile.source_hash),
            ).fetchone()
        return self._profile(row)

    def get_case_profile(self, user_id: str, source_hash: Optional[str] = None) -> Optional[CaseProfile]:
        """Profile for a given hash, or the one the user synced last."""
        with closing(self._get_conn()) as conn:
            if source_hash is not None:
                row = conn.execute(
                    "SELECT * FROM case_profiles WHERE user_id = ? AND source_hash = ?",
                    (user_id, source_hash),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM case_profiles WHERE user_id = ? "
                    "ORDER BY sync_seq DESC, rowid DESC LIMIT 1",
                    (user_id,),
                ).fetchone()
        return None if row is None else self._profile(row)

    # ─── Baseline intake ─────────────────────────────────────────────────────

    def get_intake(self, user_id: str) -> Optional[UserIntake]:
        with closing(self._get_conn()) as conn:
            row = conn.execute(
                "SELECT * FROM user_intakes WHERE user_id = ?", (user_id,),
            ).fetchone()
        return None if row is None else self._intake(row)

    def save_intake(self, intake: UserIntake) -> UserIntake:
        """Insert or replace the user's intake; created_at of an existing row is kept."""
        with closing(self._get_conn()) as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO user_intakes
                        (user_id, responses_json, completed_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (user_id) DO UPDATE SET
                        responses_json = excluded.responses_json,
                        completed_at   = excluded.completed_at,
                        updated_at     = excluded.updated_at
                    """,
                    (intake.user_id, _dump(intake.responses), _ts(intake.completed_at),
                     _ts(intake.created_at), _ts(intake.updated_at)),
                )
            row = conn.execute(
                "SELECT * FROM user_intakes WHERE user_id = ?", (intake.user_id,),
            ).fetchone()
        return self._intake(row)

    # ─── Blueprints & questions ──────────────────────────────────────────────

    def create_blueprint(self, blueprint: QuizBlueprint, questions: Sequence[QuizQuestion]) -> QuizBlueprint:
        """
        Store a blueprint and its question bank atomically.

        If another writer already stored a blueprint for the same
        (user_id, source_hash), nothing is written and theirs is returned.
        """
        with closing(self._get_conn()) as conn:
            with conn:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO quiz_blueprints
                        (id, user_id, source_hash, case_hash, categories_json,
                         generation_meta_json, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (blueprint.id, blueprint.user_id, blueprint.source_hash, blueprint.case_hash,
                     _dump([c.model_dump() for c in blueprint.categories]),
                     _dump(blueprint.generation_meta), _ts(blueprint.created_at)),
                )
                if cur.rowcount == 1:
                    conn.executemany(
                        """
                        INSERT INTO quiz_questions
                            (id, user_id, blueprint_id, position, type, category, difficulty,
                             prompt, choices_json, correct_json, rationales_json, rubric_json)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (q.id, q.user_id, blueprint.id, pos, q.type.value, q.category,
                             q.difficulty, q.prompt,
                             _dump(None if q.choices is None else [c.model_dump() for c in q.choices]),
                             _dump(q.correct_answer), _dump(q.rationales),
                             _dump(None if q.rubric is None else [p.model_dump() for p in q.rubric]))
                            for pos, q in enumerate(questions)
                        ],
                    )
                else:
                    logger.info("Blueprint for user %s / %s already stored; keeping existing",
                                blueprint.user_id, blueprint.source_hash[:12])
            row = conn.execute(
                "SELECT * FROM quiz_blueprints WHERE user_id = ? AND source_hash = ?",
                (blueprint.user_id, blueprint.source_hash),
            ).fetchone()
        return self._blueprint(row)

    def get_blueprint(
        self,
        user_id: str,
        blueprint_id: Optional[str] = None,
        source_hash: Optional[str] = None,
    ) -> Optional[QuizBlueprint]:
        """Blueprint by id, by content hash, or the user's most recent one."""
        with closing(self._get_conn()) as conn:
            if blueprint_id is not None:
                row = conn.execute(
                    "SELECT * FROM quiz_blueprints WHERE id = ? AND user_id = ?",
                    (blueprint_id, user_id),
                ).fetchone()
            elif source_hash is not None:
                row = conn.execute(
                    "SELECT * FROM quiz_blueprints WHERE user_id = ? AND source_hash = ?",
                    (user_id, source_hash),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM quiz_blueprints WHERE user_id = ? "
                    "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                    (user_id,),
                ).fetchone()
        return None if row is None else self._blueprint(row)

    def delete_blueprint(self, user_id: str, blueprint_id: str) -> None:
        """Drop a blueprint; its questions stay while any session was sampled from it."""
        with closing(self._get_conn()) as conn:
            with conn:
                conn.execute(
                    """
                    DELETE FROM quiz_questions
                    WHERE user_id = ? AND blueprint_id = ?
                      AND NOT EXISTS (
                          SELECT 1 FROM quiz_sessions s
                          WHERE s.blueprint_id = quiz_questions.blueprint_id
                      )
                    """,
                    (user_id, blueprint_id),
                )
                conn.execute(
                    "DELETE FROM quiz_blueprints WHERE user_id = ? AND id = ?",
                    (user_id, blueprint_id),
                )

    def get_questions(self, blueprint_id: str) -> list[QuizQuestion]:
        with closing(self._get_conn()) as conn:
            rows = conn.execute(
                "SELECT * FROM quiz_questions WHERE blueprint_id = ? ORDER BY position",
                (blueprint_id,),
            ).fetchall()
        return [self._question(r) for r in rows]

    def get_questions_by_ids(self, question_ids: Sequence[str]) -> dict[str, QuizQuestion]:
        if not question_ids:
            return {}
        placeholders = ", ".join("?" for _ in question_ids)
        with closing(self._get_conn()) as conn:
            rows = conn.execute(
                f"SELECT * FROM quiz_questions WHERE id IN ({placeholders})",
                list(question_ids),
            ).fetchall()
        return {r["id"]: self._question(r) for r in rows}

    # ─── Sessions ────────────────────────────────────────────────────────────

    def create_session(self, session: QuizSession) -> QuizSession:
        with closing(self._get_conn()) as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO quiz_sessions
                        (id, user_id, blueprint_id, question_ids_json, started_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (session.id, session.user_id, session.blueprint_id,
                     _dump(session.question_ids), _ts(session.started_at)),
                )
        return session

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[QuizSession]:
        with closing(self._get_conn()) as conn:
            if user_id is None:
                row = conn.execute(
                    "SELECT * FROM quiz_sessions WHERE id = ?", (session_id,),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM quiz_sessions WHERE id = ? AND user_id = ?",
                    (session_id, user_id),
                ).fetchone()
        return None if row is None else self._session(row)

    def list_sessions(self, user_id: str) -> list[QuizSession]:
        """All sessions for a user, newest first."""
        with closing(self._get_conn()) as conn:
            rows = conn.execute(
                "SELECT * FROM quiz_sessions WHERE user_id = ? "
                "ORDER BY started_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [self._session(r) for r in rows]

    def close_session(
        self,
        session_id: str,
        finished_at: datetime,
        duration_seconds: int,
        score: int,
        competency_scores: dict[str, int],
    ) -> bool:
        """Close an open session. Returns False if it was already closed."""
        with closing(self._get_conn()) as conn:
            with conn:
                cur = conn.execute(
                    """
                    UPDATE quiz_sessions SET
                        finished_at = ?,
                        duration_seconds = ?,
                        score = ?,
                        competency_json = ?
                    WHERE id = ? AND finished_at IS NULL
                    """,
                    (_ts(finished_at), duration_seconds, score,
                     _dump(competency_scores), session_id),
                )
        return cur.rowcount == 1

    # ─── Results ─────────────────────────────────────────────────────────────

    def upsert_result(self, result: QuizResult) -> QuizResult:
        """Insert or overwrite the result for (session_id, question_id)."""
        now = _ts(utcnow())
        with closing(self._get_conn()) as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO quiz_results
                        (id, session_id, question_id, submitted_json, is_correct, score,
                         feedback, judged_by, time_spent_sec, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (session_id, question_id) DO UPDATE SET
                        submitted_json = excluded.submitted_json,
                        is_correct     = excluded.is_correct,
                        score          = excluded.score,
                        feedback       = excluded.feedback,
                        judged_by      = excluded.judged_by,
                        time_spent_sec = excluded.time_spent_sec,
                        updated_at     = excluded.updated_at
                    """,
                    (result.id, result.session_id, result.question_id,
                     _dump(result.submitted_answer),
                     None if result.is_correct is None else int(result.is_correct),
                     result.score, result.feedback,
                     None if result.judged_by is None else result.judged_by.value,
                     result.time_spent_sec, now, now),
                )
            row = conn.execute(
                "SELECT * FROM quiz_results WHERE session_id = ? AND question_id = ?",
                (result.session_id, result.question_id),
            ).fetchone()
        return self._result(row)

    def get_results(self, session_id: str) -> list[QuizResult]:
        with closing(self._get_conn()) as conn:
            rows = conn.execute(
                "SELECT * FROM quiz_results WHERE session_id = ? ORDER BY created_at, rowid",
                (session_id,),
            ).fetchall()
        return [self._result(r) for r in rows]

    def count_results(self, session_ids: Sequence[str]) -> dict[str, int]:
        """session_id → number of stored results (admin overview)."""
        if not session_ids:
            return {}
        placeholders = ", ".join("?" for _ in session_ids)
        with closing(self._get_conn()) as conn:
            rows = conn.execute(
                f"SELECT session_id, COUNT(*) AS c FROM quiz_results "
                f"WHERE session_id IN ({placeholders}) GROUP BY session_id",
                list(session_ids),
            ).fetchall()
        return {r["session_id"]: r["c"] for r in rows}

    # ─── Admin reset ─────────────────────────────────────────────────────────

    def delete_user_quiz_data(self, user_id: str, include_intake: bool = False) -> dict[str, int]:
        """Delete every blueprint, question, session and result of a user (and the intake, if asked)."""
        with closing(self._get_conn()) as conn:
            with conn:
                intakes = conn.execute(
                    "DELETE FROM user_intakes WHERE user_id = ?", (user_id,),
                ).rowcount if include_intake else 0
                results = conn.execute(
                    "DELETE FROM quiz_results WHERE session_id IN "
                    "(SELECT id FROM quiz_sessions WHERE user_id = ?)",
                    (user_id,),
                ).rowcount
                sessions = conn.execute(
                    "DELETE FROM quiz_sessions WHERE user_id = ?", (user_id,),
                ).rowcount
                questions = conn.execute(
                    "DELETE FROM quiz_questions WHERE user_id = ?", (user_id,),
                ).rowcount
                blueprints = conn.execute(
                    "DELETE FROM quiz_blueprints WHERE user_id = ?", (user_id,),
                ).rowcount
        return {
            "blueprints": blueprints,
            "questions":  questions,
            "sessions":   sessions,
            "results":    results,
            "intakes":    intakes,
        }
