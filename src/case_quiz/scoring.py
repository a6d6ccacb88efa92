"""
Numeric helpers shared by the session builder, evaluator and aggregator.

All rounding in the engine is round-half-up.  Python's built-in ``round``
uses banker's rounding (``round(2.5) == 2``), which would make category
targets and percentage scores depend on the parity of the integer part.
"""

from __future__ import annotations

import math

SCORE_STEP = 0.25


def round_half_up(value: float) -> int:
    """Round to the nearest integer; exact .5 ties go up."""
    return int(math.floor(value + 0.5))


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def quantize_score(raw: float, step: float = SCORE_STEP) -> float:
    """
    Snap a judge score to the nearest multiple of *step* inside [0, 1].

    >>> quantize_score(0.625)
    0.75
    >>> quantize_score(0.374)
    0.25
    """
    return clamp_unit(round_half_up(raw / step) * step)


def percent(total: float, count: int) -> int:
    """Integer percentage of ``total / count``; 0 when nothing was counted."""
    if count <= 0:
        return 0
    return max(0, min(100, round_half_up(100 * total / count)))
