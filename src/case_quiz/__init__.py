"""
case_quiz — Adaptive Assessment Engine for MPU interview preparation
=====================================================================
Turns the extracted text of a user's case file into a reusable, weighted
question bank, assembles practice sessions from it and scores the answers.

Module map
----------
  models.py                 Pydantic entities, LLM output shapes, enums,
                            competency category registry, result envelopes.
  config.py                 Settings loaded from .env; Azure / OpenAI / mock.
  scoring.py                Round-half-up, 0.25 quantisation, percentages.
  llm.py                    CompletionFn capability + OpenAI adapter.
  prompts.py                LLM instructions for the question writer and judge.
  guardrails.py             G-01..G-10 checks for blueprints, sessions, redaction.
  database.py               SQLite persistence (QuizStore).

  case_normalizer.py        Case text → facts + risk flags (rule-based).
  blueprint_generator.py    Facts → category plan + question bank (LLM / fallback).
  session_builder.py        Stratified sampling with global backfill.
  answer_evaluator.py       Exact match (mcq) / LLM judge / length heuristic.
  session_aggregator.py     Results → overall and per-category scores.
  engine.py                 Façade returning typed EngineResponse values.

Flow
----
  sync_case_profile (+ optional save_intake) → ensure_blueprint → start_session
  → submit_answer (× n) → finish_session
"""

__version__ = "0.1.0"
