"""
Smoke tests for config / settings loading.
Run: python -m pytest tests/ -v
"""
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from case_quiz.config import get_settings, _is_placeholder

_LLM_VARS = (
    "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_DEPLOYMENT",
    "AZURE_OPENAI_API_VERSION", "OPENAI_API_KEY", "OPENAI_MODEL", "LLM_TIMEOUT_SECONDS",
    "QUIZ_DEFAULT_SESSION_SIZE", "CASE_QUIZ_DB_PATH", "FORCE_MOCK_MODE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in _LLM_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestIsPlaceholder:
    def test_empty_string_is_placeholder(self):
        assert _is_placeholder("")

    def test_angle_bracket_is_placeholder(self):
        assert _is_placeholder("<your-key-here>")

    def test_your_prefix_is_placeholder(self):
        assert _is_placeholder("your-endpoint")

    def test_literal_PLACEHOLDER_is_placeholder(self):
        assert _is_placeholder("PLACEHOLDER")

    def test_real_key_not_placeholder(self):
        assert not _is_placeholder("sk-abc123defgh456ijkl789mnop")


class TestSettingsDefaults:
    def test_defaults(self, clean_env):
        s = get_settings()
        assert s.openai.deployment == "gpt-4o-mini"
        assert s.openai.public_model == "gpt-4o-mini"
        assert s.openai.timeout_seconds == 20.0
        assert s.engine.default_session_size == 10
        assert s.engine.db_path.endswith("case_quiz_data.db")
        assert not s.app.force_mock_mode

    def test_overrides(self, clean_env):
        clean_env.setenv("QUIZ_DEFAULT_SESSION_SIZE", "15")
        clean_env.setenv("LLM_TIMEOUT_SECONDS", "5")
        clean_env.setenv("CASE_QUIZ_DB_PATH", "/tmp/other.db")
        s = get_settings()
        assert s.engine.default_session_size == 15
        assert s.openai.timeout_seconds == 5.0
        assert s.engine.db_path == "/tmp/other.db"

    def test_endpoint_trailing_slash_stripped(self, clean_env):
        clean_env.setenv("AZURE_OPENAI_ENDPOINT", "https://res.openai.azure.com/")
        assert get_settings().openai.endpoint == "https://res.openai.azure.com"


class TestLiveMode:
    def test_no_credentials_is_mock(self, clean_env):
        s = get_settings()
        assert not s.openai.is_configured
        assert not s.live_mode

    def test_placeholder_credentials_are_mock(self, clean_env):
        clean_env.setenv("AZURE_OPENAI_ENDPOINT", "<placeholder>")
        clean_env.setenv("AZURE_OPENAI_API_KEY", "<placeholder>")
        assert not get_settings().live_mode

    def test_public_key_enables_live_mode(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-real-looking-key")
        s = get_settings()
        assert s.live_mode
        assert not s.openai.azure_configured
        assert s.openai.model == "gpt-4o-mini"

    def test_azure_wins_over_public(self, clean_env):
        clean_env.setenv("AZURE_OPENAI_ENDPOINT", "https://res.openai.azure.com")
        clean_env.setenv("AZURE_OPENAI_API_KEY", "abc123")
        clean_env.setenv("AZURE_OPENAI_DEPLOYMENT", "quiz-deploy")
        clean_env.setenv("OPENAI_API_KEY", "sk-real-looking-key")
        s = get_settings()
        assert s.openai.azure_configured
        assert s.openai.model == "quiz-deploy"

    def test_force_mock_overrides_credentials(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-real-looking-key")
        clean_env.setenv("FORCE_MOCK_MODE", "true")
        assert not get_settings().live_mode

    def test_status_summary_reports_fallbacks(self, clean_env):
        summary = get_settings().status_summary()
        assert "Fallback" in summary["Question writer"]
        assert "heuristic" in summary["Answer judge"]
