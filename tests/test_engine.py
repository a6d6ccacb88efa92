"""
End-to-end tests for the AssessmentEngine façade (mock mode, temp SQLite).
"""
import random
from collections import Counter

import pytest

from factories import CASE_TEXT, ScriptedCompletion, make_llm_payload

from case_quiz.case_normalizer import source_hash
from case_quiz.engine import AssessmentEngine
from case_quiz.models import EngineErrorCode, JudgedBy, QuestionType


USER = "user-1"


def _start(engine, count=10):
    response = engine.start_session(USER, count=count)
    assert response.ok, response.error
    return response.value


class TestCaseProfile:
    def test_empty_text_is_no_case_data(self, engine):
        response = engine.sync_case_profile(USER, "   ")
        assert not response.ok
        assert response.error.code is EngineErrorCode.NO_CASE_DATA
        assert response.error.message

    def test_sync_is_idempotent(self, engine):
        first = engine.sync_case_profile(USER, CASE_TEXT).value
        second = engine.sync_case_profile(USER, CASE_TEXT).value
        assert first.id == second.id
        assert "alcohol_case" in first.risk_flags
        assert first.facts["hints"]["reference_bac_1_1"] is True

    def test_get_without_profile(self, engine):
        assert engine.get_case_profile(USER).error.code is EngineErrorCode.NO_CASE_DATA

    def test_resync_makes_older_text_current(self, engine):
        engine.sync_case_profile(USER, CASE_TEXT)
        engine.sync_case_profile(USER, CASE_TEXT + " Second notice.")
        engine.sync_case_profile(USER, CASE_TEXT)
        assert engine.get_case_profile(USER).value.source_hash == source_hash(CASE_TEXT)


class TestBlueprint:
    def test_requires_profile(self, engine):
        response = engine.ensure_blueprint(USER)
        assert response.error.code is EngineErrorCode.NO_CASE_DATA

    def test_fallback_always_available(self, engine):
        engine.sync_case_profile(USER, CASE_TEXT)
        status = engine.ensure_blueprint(USER).value
        assert status.generated
        assert status.degraded
        assert status.question_count == 13
        assert status.blueprint.generation_meta["source"] == "fallback"

    def test_generation_is_cached(self, store):
        llm = ScriptedCompletion(make_llm_payload())
        engine = AssessmentEngine(store, complete=llm, rng=random.Random(1))
        engine.sync_case_profile(USER, CASE_TEXT)
        first = engine.ensure_blueprint(USER).value
        second = engine.ensure_blueprint(USER).value
        assert len(llm.calls) == 1
        assert second.blueprint.id == first.blueprint.id
        assert not second.generated
        assert second.question_count == 12

    def test_force_regenerates(self, store):
        llm = ScriptedCompletion(make_llm_payload(), make_llm_payload(n_questions=14))
        engine = AssessmentEngine(store, complete=llm)
        engine.sync_case_profile(USER, CASE_TEXT)
        first = engine.ensure_blueprint(USER).value
        forced = engine.ensure_blueprint(USER, force=True).value
        assert forced.blueprint.id != first.blueprint.id
        assert forced.question_count == 14
        assert store.get_questions(first.blueprint.id) == []

    def test_new_case_text_gets_new_blueprint(self, ready_engine):
        first = ready_engine.ensure_blueprint(USER).value
        ready_engine.sync_case_profile(USER, CASE_TEXT + " Updated with a cannabis finding.")
        second = ready_engine.ensure_blueprint(USER).value
        assert second.generated
        assert second.blueprint.id != first.blueprint.id

    def test_resync_back_to_earlier_text_serves_its_blueprint(self, engine):
        engine.sync_case_profile(USER, CASE_TEXT)
        first = engine.ensure_blueprint(USER).value.blueprint
        engine.sync_case_profile(USER, CASE_TEXT + " Updated with a cannabis finding.")
        second = engine.ensure_blueprint(USER).value.blueprint
        engine.sync_case_profile(USER, CASE_TEXT)
        again = engine.ensure_blueprint(USER).value
        assert second.id != first.id
        assert not again.generated
        assert again.blueprint.id == first.id
        assert again.blueprint.source_hash == source_hash(CASE_TEXT)

    def test_plan_keys_normalised_so_weights_apply(self, store):
        payload = make_llm_payload()
        payload["categories"] = [
            {"key": "KNOWLEDGE", "count": 8},
            {"key": " Insight", "count": 1},
            {"key": "Planning ", "count": 1},
        ]
        engine = AssessmentEngine(store, complete=ScriptedCompletion(payload), rng=random.Random(3))
        engine.sync_case_profile(USER, CASE_TEXT)
        bp = engine.ensure_blueprint(USER).value.blueprint
        assert [c.key for c in bp.categories] == ["knowledge", "insight", "planning"]
        start = _start(engine, count=5)
        assert Counter(q.category for q in start.questions) == {"knowledge": 4, "insight": 1}

    def test_llm_questions_stored_without_foreign_fields(self, store):
        engine = AssessmentEngine(store, complete=ScriptedCompletion(make_llm_payload()))
        engine.sync_case_profile(USER, CASE_TEXT)
        bp = engine.ensure_blueprint(USER).value.blueprint
        for q in store.get_questions(bp.id):
            if q.type is QuestionType.MCQ:
                assert q.correct_answer == "A" and q.rubric is None
            else:
                assert q.rubric and q.choices is None and q.correct_answer is None


class TestSessions:
    def test_no_blueprint(self, engine):
        response = engine.start_session(USER)
        assert response.error.code is EngineErrorCode.NO_BLUEPRINT_FOUND

    def test_start_returns_redacted_questions(self, ready_engine):
        start = _start(ready_engine, count=10)
        assert len(start.questions) == 10
        assert len({q.id for q in start.questions}) == 10
        payload = start.payload()
        for q in payload["questions"]:
            assert "correct_answer" not in q
            assert "rationales" not in q
            assert "rubric" not in q

    def test_default_size_from_settings(self, ready_engine):
        start = _start(ready_engine, count=None)
        assert len(start.questions) == ready_engine.settings.engine.default_session_size

    def test_count_clamped_to_bank(self, ready_engine):
        assert len(_start(ready_engine, count=50).questions) == 13

    def test_empty_bank(self, store):
        engine = AssessmentEngine(store)
        engine.sync_case_profile(USER, CASE_TEXT)
        bp = engine.ensure_blueprint(USER).value.blueprint
        with store._get_conn() as conn:
            conn.execute("DELETE FROM quiz_questions WHERE blueprint_id = ?", (bp.id,))
        response = engine.start_session(USER)
        assert response.error.code is EngineErrorCode.NO_QUESTIONS_AVAILABLE


class TestAnswers:
    def test_mcq_feedback_reveals_answer(self, ready_engine):
        start = _start(ready_engine, count=13)
        mcq = next(q for q in start.questions if q.type is QuestionType.MCQ)
        fed = ready_engine.submit_answer(USER, start.session.id, mcq.id, "B").value
        assert fed.feedback["is_correct"] is True
        assert fed.feedback["correct_answer"] == "B"
        assert set(fed.feedback["rationales"]) == {"A", "B", "C", "D"}

    def test_free_form_uses_heuristic_in_mock_mode(self, ready_engine):
        start = _start(ready_engine, count=13)
        open_q = next(q for q in start.questions if q.type.is_free_form)
        fed = ready_engine.submit_answer(USER, start.session.id, open_q.id, "x" * 60).value
        assert fed.feedback["score"] == 0.5
        assert fed.result.judged_by is JudgedBy.HEURISTIC
        assert "rubric" not in fed.feedback

    def test_judge_sees_case_facts(self, store):
        llm = ScriptedCompletion(make_llm_payload(), {"score": 0.6, "feedback": "ok"})
        engine = AssessmentEngine(store, complete=llm, rng=random.Random(2))
        engine.sync_case_profile(USER, CASE_TEXT)
        engine.ensure_blueprint(USER)
        start = _start(engine, count=12)
        open_q = next(q for q in start.questions if q.type.is_free_form)
        fed = engine.submit_answer(USER, start.session.id, open_q.id, "my answer").value
        assert fed.feedback["score"] == 0.5
        assert "Flensburg" in llm.calls[-1][1]

    def test_resubmission_overwrites(self, ready_engine, store):
        start = _start(ready_engine, count=13)
        mcq = next(q for q in start.questions if q.type is QuestionType.MCQ)
        ready_engine.submit_answer(USER, start.session.id, mcq.id, "A")
        ready_engine.submit_answer(USER, start.session.id, mcq.id, "B")
        results = store.get_results(start.session.id)
        assert len(results) == 1
        assert results[0].is_correct is True

    def test_unknown_session(self, ready_engine):
        response = ready_engine.submit_answer(USER, "nope", "q", "A")
        assert response.error.code is EngineErrorCode.SESSION_NOT_FOUND

    def test_other_users_session_not_found(self, ready_engine):
        start = _start(ready_engine)
        response = ready_engine.submit_answer("user-2", start.session.id, start.questions[0].id, "A")
        assert response.error.code is EngineErrorCode.SESSION_NOT_FOUND

    def test_question_outside_session(self, ready_engine):
        start = _start(ready_engine, count=3)
        response = ready_engine.submit_answer(USER, start.session.id, "not-in-session", "A")
        assert response.error.code is EngineErrorCode.QUESTION_NOT_FOUND

    def test_closed_session_rejects_answers(self, ready_engine):
        start = _start(ready_engine, count=3)
        ready_engine.finish_session(USER, start.session.id)
        response = ready_engine.submit_answer(USER, start.session.id, start.questions[0].id, "B")
        assert response.error.code is EngineErrorCode.SESSION_CLOSED


class TestFinish:
    def test_finish_scores_and_is_idempotent(self, ready_engine, store):
        start = _start(ready_engine, count=13)
        mcqs = [q for q in start.questions if q.type is QuestionType.MCQ]
        for q in mcqs:
            ready_engine.submit_answer(USER, start.session.id, q.id, "B")

        summary = ready_engine.finish_session(USER, start.session.id).value
        assert summary.score == 100
        assert summary.competency_scores == {"knowledge": 100}
        assert summary.scored_count == len(mcqs)

        again = ready_engine.finish_session(USER, start.session.id).value
        assert again.score == summary.score
        assert again.competency_scores == summary.competency_scores
        assert again.finished_at == summary.finished_at
        assert not store.get_session(start.session.id).is_open

    def test_finish_unknown_session(self, ready_engine):
        response = ready_engine.finish_session(USER, "nope")
        assert response.error.code is EngineErrorCode.SESSION_NOT_FOUND

    def test_open_session_survives_forced_regeneration(self, ready_engine, store):
        start = _start(ready_engine, count=13)
        mcqs = [q for q in start.questions if q.type is QuestionType.MCQ]
        for q in mcqs:
            ready_engine.submit_answer(USER, start.session.id, q.id, "B")

        forced = ready_engine.ensure_blueprint(USER, force=True).value
        assert forced.blueprint.id != start.session.blueprint_id
        open_q = next(q for q in start.questions if q.type.is_free_form)
        assert ready_engine.submit_answer(USER, start.session.id, open_q.id, "x" * 60).ok

        summary = ready_engine.finish_session(USER, start.session.id).value
        assert summary.scored_count == len(mcqs) + 1
        assert summary.competency_scores["knowledge"] == 100
        detail = ready_engine.session_detail(USER, start.session.id).value
        assert len(detail.questions) == 13


class TestIntake:
    ANSWERS = {"drinking": {"now": "abstinent since April"}, "support": "weekly group"}

    def test_missing_intake(self, engine):
        assert engine.get_intake(USER).error.code is EngineErrorCode.NO_INTAKE_FOUND

    def test_partial_saves_merge(self, engine):
        engine.save_intake(USER, {"drinking": {"before": "weekends"}})
        engine.save_intake(USER, {"drinking": {"now": "abstinent"}, "age": 41})
        intake = engine.get_intake(USER).value
        assert intake.answers() == {"drinking": {"before": "weekends", "now": "abstinent"}, "age": 41}
        assert not intake.is_complete

    def test_complete_flag_sticks(self, engine):
        engine.save_intake(USER, {"age": 41}, complete=True)
        intake = engine.save_intake(USER, {"age": 42}).value
        assert intake.is_complete
        assert intake.answers() == {"age": 42}

    def test_incomplete_intake_not_used(self, store):
        llm = ScriptedCompletion(make_llm_payload())
        engine = AssessmentEngine(store, complete=llm)
        profile = engine.sync_case_profile(USER, CASE_TEXT).value
        engine.save_intake(USER, self.ANSWERS)
        bp = engine.ensure_blueprint(USER).value.blueprint
        assert bp.source_hash == profile.source_hash
        assert "abstinent since April" not in llm.calls[0][1]

    def test_completed_intake_feeds_generation_and_cache_key(self, store):
        llm = ScriptedCompletion(make_llm_payload(), make_llm_payload(n_questions=14))
        engine = AssessmentEngine(store, complete=llm)
        profile = engine.sync_case_profile(USER, CASE_TEXT).value
        doc_only = engine.ensure_blueprint(USER).value.blueprint

        engine.save_intake(USER, self.ANSWERS, complete=True)
        status = engine.ensure_blueprint(USER).value
        assert status.generated
        assert status.question_count == 14
        assert status.blueprint.id != doc_only.id
        assert status.blueprint.source_hash != profile.source_hash
        assert status.blueprint.case_hash == profile.source_hash
        assert "abstinent since April" in llm.calls[1][1]

        assert engine.ensure_blueprint(USER).value.blueprint.id == status.blueprint.id
        assert len(llm.calls) == 2

    def test_judge_finds_case_facts_behind_intake_blueprint(self, store):
        llm = ScriptedCompletion(make_llm_payload(), {"score": 0.75, "feedback": "ok"})
        engine = AssessmentEngine(store, complete=llm, rng=random.Random(2))
        engine.sync_case_profile(USER, CASE_TEXT)
        engine.save_intake(USER, self.ANSWERS, complete=True)
        engine.ensure_blueprint(USER)
        start = _start(engine, count=12)
        open_q = next(q for q in start.questions if q.type.is_free_form)
        assert engine.submit_answer(USER, start.session.id, open_q.id, "my answer").ok
        assert "Flensburg" in llm.calls[-1][1]

    def test_reset_keeps_intake_unless_asked(self, ready_engine):
        ready_engine.save_intake(USER, self.ANSWERS, complete=True)
        assert ready_engine.reset_user(USER).value["intakes"] == 0
        assert ready_engine.get_intake(USER).ok
        assert ready_engine.reset_user(USER, reset_intake=True).value["intakes"] == 1
        assert not ready_engine.get_intake(USER).ok


class TestAdmin:
    def test_list_sessions_counts(self, ready_engine):
        start = _start(ready_engine, count=5)
        ready_engine.submit_answer(USER, start.session.id, start.questions[0].id, "B")
        overview = ready_engine.list_sessions(USER).value
        assert len(overview) == 1
        assert overview[0].items_total == 5
        assert overview[0].items_scored == 1

    def test_session_detail_is_unredacted(self, ready_engine):
        start = _start(ready_engine, count=13)
        detail = ready_engine.session_detail(USER, start.session.id).value
        assert [q.id for q in detail.questions] == start.session.question_ids
        assert any(q.correct_answer for q in detail.questions)
        assert any(q.rubric for q in detail.questions)

    def test_reset_then_no_blueprint(self, ready_engine):
        start = _start(ready_engine, count=3)
        ready_engine.submit_answer(USER, start.session.id, start.questions[0].id, "B")
        deleted = ready_engine.reset_user(USER).value
        assert deleted["blueprints"] == 1
        assert deleted["questions"] == 13
        assert deleted["sessions"] == 1
        assert ready_engine.start_session(USER).error.code is EngineErrorCode.NO_BLUEPRINT_FOUND
        assert ready_engine.list_sessions(USER).value == []

    @pytest.mark.parametrize("user", ["user-2", "someone-else"])
    def test_reset_is_per_user(self, ready_engine, user):
        ready_engine.reset_user(user)
        assert ready_engine.start_session(USER).ok


class TestFromSettings:
    def test_builds_mock_engine_on_configured_db(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CASE_QUIZ_DB_PATH", str(tmp_path / "configured.db"))
        engine = AssessmentEngine.from_settings()
        assert engine.store.db_path.endswith("configured.db")
        assert engine.sync_case_profile(USER, CASE_TEXT).ok
        assert engine.ensure_blueprint(USER).value.degraded
