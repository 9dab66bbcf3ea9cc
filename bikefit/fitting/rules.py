"""Ordered rule table turning fit measurements into adjustments and deductions.

Each rule is an independent callable taking a context and returning a
`RuleOutcome`: an optional recommendation, a score deduction (>= 0) and an
optional diagnostic flag. Rules never look at each other's results, so several
can fire for the same photo pair.

Two-photo rules, in evaluation order:

    saddle_height       six o'clock knee bend outside [25, 35]       high
    three_oclock_check  three o'clock knee bend outside [60, 100]    (deduction + diagnostic only)
    saddle_fore_aft     KOPS offset outside +/-2 cm                  medium
    handlebar_height    mean torso angle outside [35, 55]            medium
    stem_length         mean elbow angle outside [150, 165]          medium
    core_stability      torso/elbow deltas over their limits         low

The legacy single-photo table keeps only the saddle-height recommendation and
deducts for knee, torso and elbow band deviations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from bikefit.fitting.config import DEFAULT_CONFIG, FITTING_LOGGER as logger, FitConfig
from bikefit.models import (
    ConsistencyResult,
    KOPSResult,
    PoseFeatureSet,
    Recommendation,
)


@dataclass(frozen=True)
class FitContext:
    six_oclock: PoseFeatureSet
    three_oclock: PoseFeatureSet
    kops: KOPSResult
    consistency: ConsistencyResult
    config: FitConfig = DEFAULT_CONFIG

    @property
    def mean_torso_angle(self) -> float:
        return (self.six_oclock.torso_angle + self.three_oclock.torso_angle) / 2.0

    @property
    def mean_elbow_angle(self) -> float:
        return (self.six_oclock.elbow_angle + self.three_oclock.elbow_angle) / 2.0


@dataclass(frozen=True)
class LegacyContext:
    angles: PoseFeatureSet
    config: FitConfig = DEFAULT_CONFIG


@dataclass(frozen=True)
class RuleOutcome:
    rule_id: str
    recommendation: Optional[Recommendation] = None
    deduction: float = 0.0
    diagnostic: Optional[str] = None


Rule = Callable[..., RuleOutcome]


def _saddle_height_recommendation(
    knee: float, target: float, *, too_straight: bool, adjustment: str, detail: str
) -> Recommendation:
    if too_straight:
        description = (
            f"Your knee bend is {knee:.1f}° at bottom dead center, which is too straight. {detail}"
        )
    else:
        description = (
            f"Your knee bend is {knee:.1f}° at bottom dead center, which is too much bend. {detail}"
        )
    return Recommendation(
        type="saddle_height",
        current_value=knee,
        recommended_value=target,
        adjustment_text=adjustment,
        priority="high",
        description=description,
        based_on="knee_angle",
    )


def saddle_height_rule(ctx: FitContext) -> RuleOutcome:
    knee_cfg = ctx.config.knee
    knee = ctx.six_oclock.knee_angle
    band = knee_cfg.six_oclock_band
    logger.debug("saddle_height: six o'clock knee=%.1f band=%s-%s", knee, band.low, band.high)
    if band.contains(knee):
        return RuleOutcome("saddle_height")

    too_straight = knee < band.low
    if too_straight:
        rec = _saddle_height_recommendation(
            knee,
            knee_cfg.saddle_height_target,
            too_straight=True,
            adjustment="Raise saddle by 5-15mm",
            detail="The saddle appears too high, reducing power output and potentially causing hip rocking.",
        )
    else:
        rec = _saddle_height_recommendation(
            knee,
            knee_cfg.saddle_height_target,
            too_straight=False,
            adjustment="Lower saddle by 5-15mm",
            detail="The saddle appears too low, limiting power generation and potentially causing knee strain.",
        )
    return RuleOutcome("saddle_height", rec, band.deviation(knee) * knee_cfg.deviation_weight)


def three_oclock_check_rule(ctx: FitContext) -> RuleOutcome:
    knee_cfg = ctx.config.knee
    knee = ctx.three_oclock.knee_angle
    band = knee_cfg.three_oclock_band
    if band.contains(knee):
        return RuleOutcome("three_oclock_check")
    logger.warning("Unexpected three o'clock knee angle: %.1f (expected %s-%s)", knee, band.low, band.high)
    return RuleOutcome(
        "three_oclock_check",
        deduction=knee_cfg.three_oclock_penalty,
        diagnostic=f"three_oclock_knee_out_of_range: {knee:.1f}° outside {band.low:g}-{band.high:g}°",
    )


def saddle_fore_aft_rule(ctx: FitContext) -> RuleOutcome:
    kops_cfg = ctx.config.kops
    offset = ctx.kops.horizontal_offset_cm
    logger.debug("saddle_fore_aft: KOPS offset=%.2f cm optimal=%s", offset, ctx.kops.is_optimal)
    if ctx.kops.is_optimal:
        return RuleOutcome("saddle_fore_aft")

    rec: Optional[Recommendation] = None
    if offset > kops_cfg.tolerance_cm:
        rec = Recommendation(
            type="saddle_fore_aft",
            current_value=offset,
            recommended_value=0.0,
            adjustment_text="Move saddle backward 5-10mm",
            priority="medium",
            description=(
                "Your knee is too far forward over the pedal axle, which can reduce pedaling "
                "efficiency and cause anterior knee pain."
            ),
            based_on="kops",
        )
    elif offset < -kops_cfg.tolerance_cm:
        rec = Recommendation(
            type="saddle_fore_aft",
            current_value=offset,
            recommended_value=0.0,
            adjustment_text="Move saddle forward 5-10mm",
            priority="medium",
            description=(
                "Your knee is too far behind the pedal axle, reducing power transfer and "
                "potentially overloading your lower back."
            ),
            based_on="kops",
        )
    return RuleOutcome("saddle_fore_aft", rec, abs(offset) * kops_cfg.weight)


def handlebar_height_rule(ctx: FitContext) -> RuleOutcome:
    posture = ctx.config.posture
    torso = ctx.mean_torso_angle
    if posture.torso_band.contains(torso):
        return RuleOutcome("handlebar_height")

    if torso < posture.torso_band.low:
        adjustment = "Raise handlebars by 10-20mm or use shorter stem"
        description = (
            "Very aggressive position detected. Consider raising handlebars for improved comfort "
            "and sustainable aerodynamics."
        )
    else:
        adjustment = "Lower handlebars by 10-20mm"
        description = "Position is quite upright. Lowering handlebars will improve aerodynamics and power transfer."
    rec = Recommendation(
        type="handlebar_height",
        current_value=torso,
        recommended_value=posture.torso_target,
        adjustment_text=adjustment,
        priority="medium",
        description=description,
        based_on="torso_angle",
    )
    return RuleOutcome("handlebar_height", rec, abs(torso - posture.torso_target) * posture.torso_weight)


def stem_length_rule(ctx: FitContext) -> RuleOutcome:
    posture = ctx.config.posture
    elbow = ctx.mean_elbow_angle
    if posture.elbow_band.contains(elbow):
        return RuleOutcome("stem_length")

    if elbow < posture.elbow_band.low:
        adjustment = "Try a longer stem (+10-20mm) or move saddle back"
        description = (
            "Arms are too bent, indicating the cockpit may be too short. This can cause discomfort "
            "and poor weight distribution."
        )
    else:
        adjustment = "Try a shorter stem (-10-20mm) or move saddle forward"
        description = (
            "Arms are too straight/locked, indicating the cockpit may be too long. This reduces "
            "control and comfort."
        )
    rec = Recommendation(
        type="stem_length",
        current_value=elbow,
        recommended_value=posture.elbow_target,
        adjustment_text=adjustment,
        priority="medium",
        description=description,
        based_on="elbow_angle",
    )
    return RuleOutcome("stem_length", rec, abs(elbow - posture.elbow_center) * posture.elbow_weight)


def core_stability_rule(ctx: FitContext) -> RuleOutcome:
    consistency = ctx.consistency
    if consistency.is_consistent:
        return RuleOutcome("core_stability")
    cfg = ctx.config.consistency
    rec = Recommendation(
        type="core_stability",
        current_value=max(consistency.torso_angle_delta, consistency.elbow_angle_delta),
        recommended_value=cfg.core_stability_target,
        adjustment_text="Focus on core strengthening and bike fit stability",
        priority="low",
        description=(
            "Significant postural variations detected between pedal positions. Consider core "
            "strengthening exercises and ensure your fit allows for stable, consistent positioning."
        ),
        based_on="postural_consistency",
    )
    deduction = (consistency.torso_angle_delta + consistency.elbow_angle_delta) * cfg.weight
    return RuleOutcome("core_stability", rec, deduction)


FIT_RULES: tuple[Rule, ...] = (
    saddle_height_rule,
    three_oclock_check_rule,
    saddle_fore_aft_rule,
    handlebar_height_rule,
    stem_length_rule,
    core_stability_rule,
)


def legacy_saddle_height_rule(ctx: LegacyContext) -> RuleOutcome:
    knee_cfg = ctx.config.knee
    knee = ctx.angles.knee_angle
    band = knee_cfg.six_oclock_band
    if band.contains(knee):
        return RuleOutcome("saddle_height")
    too_straight = knee < band.low
    rec = _saddle_height_recommendation(
        knee,
        knee_cfg.saddle_height_target,
        too_straight=too_straight,
        adjustment="Raise saddle by 5-10mm" if too_straight else "Lower saddle by 5-10mm",
        detail="Consider raising the saddle." if too_straight else "Consider lowering the saddle.",
    )
    deduction = abs(knee - ctx.config.legacy.knee_center) * knee_cfg.deviation_weight
    return RuleOutcome("saddle_height", rec, deduction)


def legacy_torso_rule(ctx: LegacyContext) -> RuleOutcome:
    posture = ctx.config.posture
    torso = ctx.angles.torso_angle
    if posture.torso_band.contains(torso):
        return RuleOutcome("torso_angle")
    return RuleOutcome("torso_angle", deduction=abs(torso - posture.torso_target) * posture.torso_weight)


def legacy_elbow_rule(ctx: LegacyContext) -> RuleOutcome:
    legacy = ctx.config.legacy
    elbow = ctx.angles.elbow_angle
    if legacy.elbow_band.contains(elbow):
        return RuleOutcome("elbow_angle")
    return RuleOutcome("elbow_angle", deduction=abs(elbow - legacy.elbow_center) * ctx.config.posture.elbow_weight)


LEGACY_RULES: tuple[Rule, ...] = (
    legacy_saddle_height_rule,
    legacy_torso_rule,
    legacy_elbow_rule,
)


def evaluate_rules(context: object, rules: Sequence[Rule] = FIT_RULES) -> list[RuleOutcome]:
    """Run every rule in order and return all outcomes (fired or not)."""
    return [rule(context) for rule in rules]


def sort_recommendations(recommendations: Iterable[Recommendation]) -> tuple[Recommendation, ...]:
    """Order by priority (high > medium > low); ties keep rule-evaluation order."""
    return tuple(sorted(recommendations, key=lambda rec: -rec.priority_rank))


def collect_recommendations(outcomes: Iterable[RuleOutcome]) -> tuple[Recommendation, ...]:
    return sort_recommendations(o.recommendation for o in outcomes if o.recommendation is not None)


def collect_diagnostics(outcomes: Iterable[RuleOutcome]) -> tuple[str, ...]:
    return tuple(o.diagnostic for o in outcomes if o.diagnostic)


__all__ = [
    "FitContext",
    "LegacyContext",
    "RuleOutcome",
    "FIT_RULES",
    "LEGACY_RULES",
    "saddle_height_rule",
    "three_oclock_check_rule",
    "saddle_fore_aft_rule",
    "handlebar_height_rule",
    "stem_length_rule",
    "core_stability_rule",
    "legacy_saddle_height_rule",
    "legacy_torso_rule",
    "legacy_elbow_rule",
    "evaluate_rules",
    "sort_recommendations",
    "collect_recommendations",
    "collect_diagnostics",
]
