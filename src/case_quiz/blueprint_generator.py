"""
blueprint_generator.py — Question Bank Writer
==============================================
Turns normalised case facts into a category plan plus a full question bank.

---------------------------------------------------------------------------
Agent: BlueprintGenerator
---------------------------------------------------------------------------
  Input:   case facts (summary, hints, risk flags)
  Output:  GeneratedBlueprint (categories + questions + llm_meta)

  Attempt policy:
    1. One LLM call with the domain system prompt and the blueprint
       instruction; reply must be strict JSON.
    2. Parse / schema / guardrail failure, timeout or provider error →
       exactly one retry with a stricter "JSON only" instruction.
    3. Second failure, or no LLM configured → fixed fallback bank.

  The fallback bank is domain-valid but generic (not tailored to the
  facts).  It always validates, so generation never fails.

  The generator does not cache.  Callers check (user_id, source_hash)
  before invoking it and persist the result exactly once.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError

from case_quiz.guardrails import GuardrailsPipeline
from case_quiz.llm import CompletionFn, model_name, parse_json_object
from case_quiz.models import EngineErrorCode, GeneratedBlueprint
from case_quiz.prompts import BLUEPRINT_INSTRUCTIONS, DOMAIN_CONTEXT, STRICT_JSON_SUFFIX

logger = logging.getLogger(__name__)

FACTS_MAX_CHARS = 4000


# ─── Fallback bank ────────────────────────────────────────────────────────────

_FALLBACK_CATEGORIES: list[dict] = [
    {"key": "knowledge",   "count": 4},
    {"key": "insight",     "count": 2},
    {"key": "behavior",    "count": 2},
    {"key": "consistency", "count": 1},
    {"key": "planning",    "count": 2},
]

_FALLBACK_QUESTIONS: list[dict] = [
    # knowledge MCQs
    {
        "type": "mcq", "category": "knowledge", "difficulty": 1,
        "prompt": "From which blood alcohol concentration (BAC) is a car driver "
                  "considered absolutely unfit to drive? (reference value)",
        "choices": [
            {"key": "A", "text": "0.5‰"}, {"key": "B", "text": "1.1‰"},
            {"key": "C", "text": "1.6‰"}, {"key": "D", "text": "2.0‰"},
        ],
        "correct": "B",
        "rationales": {
            "A": "Administrative offence threshold.",
            "B": "Absolute unfitness to drive for car drivers.",
            "C": "Threshold for cyclists.",
            "D": "Too high.",
        },
    },
    {
        "type": "mcq", "category": "knowledge", "difficulty": 1,
        "prompt": "Which statement about the separation rule (cannabis and driving) is correct?",
        "choices": [
            {"key": "A", "text": "You may always drive as long as you feel fit."},
            {"key": "B", "text": "Separation means reliably keeping consumption and driving apart."},
            {"key": "C", "text": "There are no limits or reference values."},
            {"key": "D", "text": "Consumption the evening before is never a problem."},
        ],
        "correct": "B",
        "rationales": {
            "A": "Wrong, feeling fit is not enough.",
            "B": "That is the definition.",
            "C": "There is legal guidance.",
            "D": "It can be a problem.",
        },
    },
    {
        "type": "mcq", "category": "knowledge", "difficulty": 2,
        "prompt": "What consequence can follow from 0.5‰ to 1.09‰ without signs of impairment?",
        "choices": [
            {"key": "A", "text": "Criminal offence"},
            {"key": "B", "text": "Administrative offence"},
            {"key": "C", "text": "None at all"},
            {"key": "D", "text": "Only a warning"},
        ],
        "correct": "B",
        "rationales": {
            "A": "Not necessarily a criminal offence.",
            "B": "As a rule an administrative offence.",
            "C": "Wrong.",
            "D": "Not applicable.",
        },
    },
    {
        "type": "mcq", "category": "knowledge", "difficulty": 1,
        "prompt": "Which statement about penalty points (Flensburg) is correct?",
        "choices": [
            {"key": "A", "text": "Points play no role for the driving licence."},
            {"key": "B", "text": "8 points lead to withdrawal of the driving licence."},
            {"key": "C", "text": "From 2 points an MPU is always ordered."},
            {"key": "D", "text": "Points never expire."},
        ],
        "correct": "B",
        "rationales": {
            "A": "Wrong.",
            "B": "Rule: 8 points = withdrawal.",
            "C": "Wrong.",
            "D": "Points are erased after a retention period.",
        },
    },
    {
        "type": "mcq", "category": "knowledge", "difficulty": 1,
        "prompt": "Which statement is correct? (cycling under the influence of alcohol)",
        "choices": [
            {"key": "A", "text": "Cycling is always allowed."},
            {"key": "B", "text": "From about 1.6‰ an MPU can be ordered for cyclists too."},
            {"key": "C", "text": "There are no limits for cyclists."},
            {"key": "D", "text": "Only car limits are relevant."},
        ],
        "correct": "B",
        "rationales": {
            "A": "Wrong.",
            "B": "Practically relevant reference value.",
            "C": "Wrong.",
            "D": "Wrong.",
        },
    },
    # insight / behavior / consistency / planning
    {
        "type": "scenario", "category": "insight", "difficulty": 2,
        "prompt": "In the MPU interview you are asked about your insight. Outline briefly "
                  "what the mistake was and what you learned from it (bullet points).",
        "rubric": {"points": [
            {"id": "insight", "desc": "Core of the insight named"},
            {"id": "learning", "desc": "Concrete lessons learned"},
        ]},
    },
    {
        "type": "short", "category": "insight", "difficulty": 2,
        "prompt": "Why was your earlier behaviour a danger to road traffic? Name two points.",
        "rubric": {"points": [{"id": "danger", "desc": "Aspects of endangerment named"}]},
    },
    {
        "type": "short", "category": "behavior", "difficulty": 2,
        "prompt": "Name three measures you have implemented to change your behaviour (bullet points).",
        "rubric": {"points": [{"id": "measures", "desc": "Concrete measures named"}]},
    },
    {
        "type": "short", "category": "behavior", "difficulty": 2,
        "prompt": "How do you ensure abstinence or controlled consumption? "
                  "(bullet points: rules, routines, controls)",
        "rubric": {"points": [{"id": "safeguards", "desc": "Comprehensible safeguards"}]},
    },
    {
        "type": "short", "category": "consistency", "difficulty": 2,
        "prompt": "Give two examples showing that your current behaviour matches your statements.",
        "rubric": {"points": [{"id": "coherence", "desc": "Action and statement are coherent"}]},
    },
    {
        "type": "short", "category": "planning", "difficulty": 2,
        "prompt": "Name two personal risk situations and one concrete avoidance strategy for each.",
        "rubric": {"points": [
            {"id": "risks", "desc": "Situations named"},
            {"id": "strategy", "desc": "Workable strategy"},
        ]},
    },
    {
        "type": "scenario", "category": "planning", "difficulty": 2,
        "prompt": "You are asked about relapse prevention. Outline your early warning system (bullet points).",
        "rubric": {"points": [{"id": "early_warning", "desc": "Early warning signs plus reaction"}]},
    },
    {
        "type": "short", "category": "planning", "difficulty": 1,
        "prompt": "Who supports you in everyday life (two examples) and how do you reach them?",
        "rubric": {"points": [{"id": "network", "desc": "Nameable support"}]},
    },
]


def fallback_blueprint(reason: str = "no LLM configured", attempts: int = 0) -> GeneratedBlueprint:
    """Return the fixed deterministic bank. Never fails."""
    return GeneratedBlueprint.model_validate({
        "categories": _FALLBACK_CATEGORIES,
        "questions":  _FALLBACK_QUESTIONS,
        "llm_meta": {
            "source":          "fallback",
            "model":           None,
            "attempts":        attempts,
            "degraded":        True,
            "degraded_reason": reason,
            "condition":       EngineErrorCode.GENERATION_DEGRADED.value,
        },
    })


# ─── Agent ────────────────────────────────────────────────────────────────────

class BlueprintGenerator:
    """
    Writes a category plan and question bank for one case.

    Usage::

        generator = BlueprintGenerator(complete)       # complete may be None
        generated = generator.generate(profile.generation_facts())
    """

    def __init__(
        self,
        complete: Optional[CompletionFn] = None,
        guardrails: Optional[GuardrailsPipeline] = None,
    ) -> None:
        self._complete = complete
        self._guardrails = guardrails or GuardrailsPipeline()

    def _user_message(self, facts: dict[str, Any], strict: bool) -> str:
        facts_json = json.dumps(facts, ensure_ascii=False, default=str)[:FACTS_MAX_CHARS]
        instructions = BLUEPRINT_INSTRUCTIONS + (STRICT_JSON_SUFFIX if strict else "")
        return f"{instructions}\n\nCASE FACTS (JSON):\n{facts_json}"

    def _parse(self, raw: str) -> GeneratedBlueprint:
        data = parse_json_object(raw)
        data.pop("llm_meta", None)
        blueprint = GeneratedBlueprint.model_validate(data)
        check = self._guardrails.check_blueprint(blueprint)
        if check.blocked:
            raise ValueError(check.summary())
        for v in check.warnings:
            logger.debug("Blueprint guardrail %s: %s", v.code, v.message)
        return blueprint

    def generate(self, facts: dict[str, Any]) -> GeneratedBlueprint:
        """Return a validated blueprint; falls back to the fixed bank on failure."""
        if self._complete is None:
            logger.warning("%s: no LLM configured; using fallback bank",
                           EngineErrorCode.GENERATION_DEGRADED.value)
            return fallback_blueprint()

        last_error = ""
        for attempt, strict in enumerate((False, True), start=1):
            try:
                raw = self._complete(DOMAIN_CONTEXT, self._user_message(facts, strict))
            except Exception as exc:
                last_error = f"completion failed: {exc}"
                logger.warning("Blueprint attempt %d: %s", attempt, last_error)
                continue
            try:
                blueprint = self._parse(raw)
            except (json.JSONDecodeError, ValidationError, ValueError) as exc:
                last_error = f"invalid output: {exc}"
                logger.warning("Blueprint attempt %d rejected: %s", attempt, str(exc)[:300])
                continue

            blueprint.llm_meta = {
                "source":   "llm",
                "model":    model_name(self._complete),
                "attempts": attempt,
                "degraded": False,
            }
            logger.info("Blueprint generated by LLM on attempt %d (%d questions)",
                        attempt, len(blueprint.questions))
            return blueprint

        logger.warning("%s: %s; using fallback bank",
                       EngineErrorCode.GENERATION_DEGRADED.value, last_error)
        return fallback_blueprint(reason=last_error, attempts=2)
