"""
llm.py — LLM completion capability
==================================
The engine only needs one thing from a language model:

    complete(system_instruction, user_instruction) -> raw text

Anything with that call signature can be injected (a scripted fake in tests,
``OpenAICompletion`` in production).  Callers must treat the capability as
fallible: every consumer in this package has a deterministic fallback.

Two-tier provider selection (highest available tier wins):
  1. Azure OpenAI  — when AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY are set
  2. OpenAI        — when OPENAI_API_KEY is set
  3. None          — neither configured, or FORCE_MOCK_MODE=true
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from openai import AzureOpenAI, OpenAI

from case_quiz.config import OpenAIConfig, Settings, get_settings

logger = logging.getLogger(__name__)

CompletionFn = Callable[[str, str], str]

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


class OpenAICompletion:
    """
    JSON-mode chat completion against Azure OpenAI or api.openai.com.

    SDK-level retries are disabled; the request is bounded by
    ``timeout_seconds`` and the caller decides whether to retry.
    """

    def __init__(
        self,
        config: OpenAIConfig,
        temperature: float = 0.2,
        max_tokens: int = 3000,
    ) -> None:
        self._cfg = config
        self.temperature = temperature
        self.max_tokens = max_tokens

        if config.azure_configured:
            self._client = AzureOpenAI(
                azure_endpoint=config.endpoint,
                api_key=config.api_key,
                api_version=config.api_version,
                timeout=config.timeout_seconds,
                max_retries=0,
            )
            self.tier = "azure_openai"
        elif config.public_configured:
            self._client = OpenAI(
                api_key=config.public_api_key,
                timeout=config.timeout_seconds,
                max_retries=0,
            )
            self.tier = "openai"
        else:
            raise EnvironmentError(
                "No LLM provider configured. Set AZURE_OPENAI_ENDPOINT + "
                "AZURE_OPENAI_API_KEY (Azure) or OPENAI_API_KEY (direct)."
            )

    @property
    def model(self) -> str:
        return self._cfg.model

    def __call__(self, system_instruction: str, user_instruction: str) -> str:
        response = self._client.chat.completions.create(
            model=self._cfg.model,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_instruction},
                {"role": "user",   "content": user_instruction},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""


def build_completion(settings: Optional[Settings] = None) -> Optional[OpenAICompletion]:
    """Return a live completion adapter, or None in mock mode."""
    settings = settings or get_settings()
    if not settings.live_mode:
        logger.info("LLM disabled (mock mode); fallback generation and heuristic judging active")
        return None
    completion = OpenAICompletion(settings.openai)
    logger.info("LLM enabled via %s (model=%s)", completion.tier, completion.model)
    return completion


def model_name(complete: Optional[CompletionFn]) -> str:
    """Best-effort model label for generation metadata."""
    return (
        getattr(complete, "model", None)
        or getattr(complete, "__name__", None)
        or type(complete).__name__
    )


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parse an LLM reply that should be a single JSON object.

    Tolerates a surrounding markdown code fence.  Raises json.JSONDecodeError
    or ValueError when the reply is not a JSON object.
    """
    cleaned = _FENCE.sub("", (text or "").strip())
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data
