"""
config.py — Central settings for the Case Quiz assessment engine
=================================================================
All configuration is loaded from environment variables / .env file.
Copy .env.example → .env and fill in your values.

Live mode activates automatically when either the Azure OpenAI pair
(AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY) or a plain OPENAI_API_KEY
contains a real (non-placeholder) value and FORCE_MOCK_MODE is off.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env into os.environ (no-op if already set, safe to call multiple times)
load_dotenv(override=False)

# Database file lives next to the workspace root unless overridden
_DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "case_quiz_data.db"


# ─── Helpers ────────────────────────────────────────────────────────────────

def _is_placeholder(value: str) -> bool:
    """Return True if the value looks like an unfilled template placeholder."""
    return not value or "<" in value or value.startswith("your-") or value == "PLACEHOLDER"


# ─── LLM provider ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OpenAIConfig:
    endpoint:        str     # Azure OpenAI endpoint; empty for api.openai.com
    api_key:         str     # Azure OpenAI key
    deployment:      str
    api_version:     str
    public_api_key:  str     # OPENAI_API_KEY (non-Azure tier)
    public_model:    str
    timeout_seconds: float

    @property
    def azure_configured(self) -> bool:
        """True when both endpoint and key are real (non-placeholder) values."""
        return (
            bool(self.endpoint)
            and bool(self.api_key)
            and not _is_placeholder(self.endpoint)
            and not _is_placeholder(self.api_key)
        )

    @property
    def public_configured(self) -> bool:
        return bool(self.public_api_key) and not _is_placeholder(self.public_api_key)

    @property
    def is_configured(self) -> bool:
        return self.azure_configured or self.public_configured

    @property
    def model(self) -> str:
        """Deployment name on Azure, model name on api.openai.com."""
        return self.deployment if self.azure_configured else self.public_model


# ─── Engine tuning ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EngineConfig:
    default_session_size: int
    db_path:              str


# ─── App-level settings ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class AppConfig:
    force_mock_mode: bool


# ─── Master settings object ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    openai: OpenAIConfig
    engine: EngineConfig
    app:    AppConfig

    @property
    def live_mode(self) -> bool:
        """Automatically True when LLM creds are real and FORCE_MOCK_MODE is false."""
        return self.openai.is_configured and not self.app.force_mock_mode

    def status_summary(self) -> dict[str, str]:
        """Return a dict of service → status badge for the demo CLI."""
        def badge(ok: bool) -> str:
            return "🟢 Live" if ok else "⚪ Not configured"

        return {
            "Azure OpenAI":    badge(self.openai.azure_configured),
            "OpenAI":          badge(self.openai.public_configured),
            "Question writer": "🟢 LLM" if self.live_mode else "⚪ Fallback bank",
            "Answer judge":    "🟢 LLM" if self.live_mode else "⚪ Length heuristic",
        }


def get_settings() -> Settings:
    """Load all configuration from environment variables."""
    _str   = lambda k, d="": os.getenv(k, d).strip()
    _int   = lambda k, d=0: int(os.getenv(k, str(d)) or d)
    _float = lambda k, d=0.0: float(os.getenv(k, str(d)) or d)
    _bool  = lambda k, d=False: os.getenv(k, str(d)).lower() in ("1", "true", "yes")

    return Settings(
        openai=OpenAIConfig(
            endpoint        = _str("AZURE_OPENAI_ENDPOINT").rstrip("/"),
            api_key         = _str("AZURE_OPENAI_API_KEY"),
            deployment      = _str("AZURE_OPENAI_DEPLOYMENT", "gpt-4o-mini"),
            api_version     = _str("AZURE_OPENAI_API_VERSION", "2024-12-01-preview"),
            public_api_key  = _str("OPENAI_API_KEY"),
            public_model    = _str("OPENAI_MODEL", "gpt-4o-mini"),
            timeout_seconds = _float("LLM_TIMEOUT_SECONDS", 20.0),
        ),
        engine=EngineConfig(
            default_session_size = _int("QUIZ_DEFAULT_SESSION_SIZE", 10),
            db_path              = _str("CASE_QUIZ_DB_PATH", str(_DEFAULT_DB_PATH)),
        ),
        app=AppConfig(
            force_mock_mode = _bool("FORCE_MOCK_MODE", False),
        ),
    )
