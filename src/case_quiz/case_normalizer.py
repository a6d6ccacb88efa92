"""
case_normalizer.py – Rule-based case fact extraction (no LLM needed).

Turns the extracted text of a user's case file into a small structured fact
object and a set of risk flags.  Deterministic and total: any string in,
a summary out.

Logic covers:
  • Summary = bounded prefix of the raw text
  • Keyword vocabulary (English + German) → risk flags
  • Per-mille readings → hints for the question writer
  • SHA-256 content address used as the cache key for profiles/blueprints
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any

SUMMARY_MAX_CHARS = 2000

# ── Keyword vocabulary ────────────────────────────────────────────────────────

_RISK_FLAG_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"alcohol|alkohol|promill|per.?mille|\bbac\b|\bbak\b|‰|drunk|betrunken", re.I),
     "alcohol_case"),
    (re.compile(r"cannabis|\bthc\b|trennungsverm|joint|marihuana|marijuana|kiffen", re.I),
     "cannabis_case"),
    (re.compile(r"amphetamin|kokain|cocaine|ecstasy|\bmdma\b|heroin|methamphetamin|crystal meth", re.I),
     "drugs_case"),
    (re.compile(r"\bpunkte\b|flensburg|fahreignungsregister|penalty points|demerit points"
                r"|points? regist(?:er|ry)", re.I),
     "points_case"),
]

_BAC_1_1 = re.compile(r"1[,.]1\s*(?:‰|promille|per.?mille)", re.I)
_BAC_READING = re.compile(r"(\d{1,2}[,.]\d{1,2})\s*(?:‰|promille|per.?mille)", re.I)


@dataclass
class NormalizedCase:
    """Output of normalize(): facts for the question writer plus risk tags."""
    facts:      dict[str, Any]
    risk_flags: list[str] = field(default_factory=list)


# ── Helpers ───────────────────────────────────────────────────────────────────

def source_hash(text: str) -> str:
    """Content address of the case text (hex SHA-256)."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def _risk_flags(text: str) -> list[str]:
    flags: list[str] = []
    for pattern, flag in _RISK_FLAG_PATTERNS:
        if pattern.search(text) and flag not in flags:
            flags.append(flag)
    return flags


def _hints(text: str) -> dict[str, Any]:
    hints: dict[str, Any] = {}
    if _BAC_1_1.search(text):
        hints["reference_bac_1_1"] = True
    readings = sorted({float(m.replace(",", ".")) for m in _BAC_READING.findall(text)})
    if readings:
        hints["bac_readings"] = readings
    return hints


# ── Public API ────────────────────────────────────────────────────────────────

def normalize(raw_text: str) -> NormalizedCase:
    """
    Derive case facts and risk flags from extracted document text.

    Never fails: unmatched (or empty) text yields an empty flag list and a
    summary only.  The summary is truncated to SUMMARY_MAX_CHARS so very long
    documents do not bloat the stored profile or the LLM prompts.
    """
    text = raw_text or ""
    return NormalizedCase(
        facts={
            "summary": text[:SUMMARY_MAX_CHARS],
            "hints":   _hints(text),
        },
        risk_flags=_risk_flags(text),
    )
