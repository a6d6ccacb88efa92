"""
Tests for session scoring (overall + per-category competencies).
"""
from datetime import timedelta

from factories import make_question, make_result, make_session

from case_quiz.models import QuestionType, utcnow
from case_quiz.session_aggregator import finish


def _fixture(rows):
    """rows: list of (category, qtype, score, is_correct)."""
    questions = [make_question(category=c, qtype=t) for c, t, _, _ in rows]
    session = make_session([q.id for q in questions])
    results = [
        make_result(session.id, q, score=s, is_correct=ok)
        for q, (_, _, s, ok) in zip(questions, rows)
    ]
    return session, results, {q.id: q for q in questions}


class TestScores:
    def test_mixed_categories(self):
        short = QuestionType.SHORT
        session, results, by_id = _fixture([
            ("knowledge", short, 1.0, None),
            ("knowledge", short, 0.5, None),
            ("knowledge", short, 0.0, None),
            ("insight",   short, 1.0, None),
            ("insight",   short, 1.0, None),
        ])
        summary = finish(session, results, by_id)
        assert summary.competency_scores == {"knowledge": 50, "insight": 100}
        assert summary.score == 70
        assert summary.scored_count == 5

    def test_mcq_uses_is_correct(self):
        mcq = QuestionType.MCQ
        session, results, by_id = _fixture([
            ("knowledge", mcq, 1.0, True),
            ("knowledge", mcq, 0.0, False),
        ])
        summary = finish(session, results, by_id)
        assert summary.score == 50
        assert summary.competency_scores == {"knowledge": 50}

    def test_absent_category_not_reported(self):
        session, results, by_id = _fixture([("planning", QuestionType.SHORT, 0.0, None)])
        summary = finish(session, results, by_id)
        assert summary.competency_scores == {"planning": 0}
        assert "knowledge" not in summary.competency_scores

    def test_empty_session_scores_zero(self):
        session = make_session([])
        summary = finish(session, [], {})
        assert summary.score == 0
        assert summary.competency_scores == {}
        assert summary.scored_count == 0


class TestSkippedResults:
    def test_unknown_question_and_unscored_result_skipped(self):
        q = make_question(qtype=QuestionType.SHORT)
        orphan = make_question(qtype=QuestionType.SHORT)
        session = make_session([q.id])
        results = [
            make_result(session.id, q, score=None),
            make_result(session.id, orphan, score=1.0),
        ]
        summary = finish(session, results, {q.id: q})
        assert summary.scored_count == 0
        assert summary.score == 0

    def test_foreign_session_results_ignored(self):
        q = make_question(qtype=QuestionType.SHORT)
        session = make_session([q.id])
        results = [make_result("other-session", q, score=1.0)]
        assert finish(session, results, {q.id: q}).scored_count == 0


class TestDuration:
    def test_whole_seconds(self):
        started = utcnow()
        session = make_session([], started_at=started)
        summary = finish(session, [], {}, finished_at=started + timedelta(seconds=95.8))
        assert summary.duration_seconds == 95
        assert summary.finished_at == started + timedelta(seconds=95.8)

    def test_never_negative(self):
        started = utcnow()
        session = make_session([], started_at=started)
        summary = finish(session, [], {}, finished_at=started - timedelta(seconds=5))
        assert summary.duration_seconds == 0
