"""Fit score aggregation (0-100) and summary tiers.

The score starts at 100 and subtracts every rule's deduction. Deductions are
additive; the total is rounded half-up and clamped to [0, 100] once, at the end.
"""

from __future__ import annotations

import math
from typing import Iterable

from bikefit.fitting.config import DEFAULT_CONFIG, FitConfig
from bikefit.fitting.rules import RuleOutcome

MAX_SCORE = 100

_FIT_SUMMARIES = {
    "excellent": "Excellent bike fit! Your two-position analysis shows consistent, optimal positioning.",
    "good": "Good bike fit foundation. The comprehensive analysis identified specific areas for improvement.",
    "needs_work": (
        "Comprehensive analysis reveals significant opportunities to optimize your bike fit "
        "for comfort and performance."
    ),
}

_LEGACY_DETECTED_SUMMARIES = {
    "excellent": "Good bike fit! Consider upgrading to two-photo analysis for comprehensive recommendations.",
    "good": "Decent foundation. Upgrade to two-photo analysis for detailed KOPS and consistency evaluation.",
    "needs_work": (
        "Single-photo analysis shows areas for improvement. Two-photo analysis recommended "
        "for complete assessment."
    ),
}

_LEGACY_MANUAL_SUMMARIES = {
    "excellent": "Great bike fit! Minor adjustments could optimize your position further.",
    "good": "Good foundation with room for improvement.",
    "needs_work": "Significant adjustments needed for optimal comfort and performance.",
}


def total_deduction(outcomes: Iterable[RuleOutcome]) -> float:
    return float(sum(max(0.0, outcome.deduction) for outcome in outcomes))


def clamp_score(raw: float) -> int:
    """Round half-up and clamp to [0, 100]; non-finite totals clamp to 0."""
    if not math.isfinite(raw):
        return 0
    rounded = int(math.floor(raw + 0.5))
    return max(0, min(MAX_SCORE, rounded))


def score_outcomes(outcomes: Iterable[RuleOutcome]) -> int:
    return clamp_score(MAX_SCORE - total_deduction(outcomes))


def score_tier(score: int, config: FitConfig | None = None) -> str:
    tiers = (config or DEFAULT_CONFIG).tiers
    if score >= tiers.excellent:
        return "excellent"
    if score >= tiers.good:
        return "good"
    return "needs_work"


def fit_summary(score: int, config: FitConfig | None = None) -> str:
    return _FIT_SUMMARIES[score_tier(score, config)]


def legacy_summary(score: int, *, detected: bool, config: FitConfig | None = None) -> str:
    """Summary for single-photo reports; detector-derived angles get an upgrade nudge."""
    tier = score_tier(score, config)
    if detected:
        return f"{_LEGACY_DETECTED_SUMMARIES[tier]} (AI Analysis)"
    return _LEGACY_MANUAL_SUMMARIES[tier]


__all__ = [
    "MAX_SCORE",
    "total_deduction",
    "clamp_score",
    "score_outcomes",
    "score_tier",
    "fit_summary",
    "legacy_summary",
]
