"""
Shared pytest fixtures for the Case Quiz test suite.
All fixtures use mock mode — no LLM credentials required.
Factory helpers live in tests/factories.py so they can be imported
directly by test modules as well as being used here.
"""
import sys
import os
import random

_tests_dir = os.path.dirname(__file__)
_src_dir   = os.path.join(_tests_dir, "..", "src")
for _p in (_tests_dir, _src_dir):
    if _p not in sys.path:
        sys.path.insert(0, _p)

# Force mock mode — never call a real LLM during tests
os.environ["FORCE_MOCK_MODE"] = "true"
os.environ.setdefault("AZURE_OPENAI_ENDPOINT", "<placeholder>")
os.environ.setdefault("AZURE_OPENAI_API_KEY",  "<placeholder>")


import pytest

from factories import CASE_TEXT

from case_quiz.database import QuizStore
from case_quiz.engine import AssessmentEngine


# ─── pytest fixtures ──────────────────────────────────────────────────────────

@pytest.fixture
def store(tmp_path):
    s = QuizStore(tmp_path / "quiz.db")
    s.init_db()
    return s


@pytest.fixture
def engine(store):
    """Mock-mode engine: fallback bank + length heuristic, seeded sampling."""
    return AssessmentEngine(store, complete=None, rng=random.Random(7))


@pytest.fixture
def ready_engine(engine):
    """Engine with a synced profile and a stored (fallback) blueprint for user-1."""
    engine.sync_case_profile("user-1", CASE_TEXT)
    engine.ensure_blueprint("user-1")
    return engine
