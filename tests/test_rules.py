from __future__ import annotations

import pytest

from bikefit.fitting.comparison import analyze_consistency, neutral_kops
from bikefit.fitting.rules import (
    FIT_RULES,
    FitContext,
    collect_recommendations,
    core_stability_rule,
    evaluate_rules,
    handlebar_height_rule,
    saddle_fore_aft_rule,
    saddle_height_rule,
    sort_recommendations,
    stem_length_rule,
    three_oclock_check_rule,
)
from bikefit.models import KOPSResult, Point2D, PoseFeatureSet, Recommendation


def _features(position: str, knee: float, torso: float = 45.0, elbow: float = 155.0) -> PoseFeatureSet:
    return PoseFeatureSet(
        knee_angle=knee,
        torso_angle=torso,
        elbow_angle=elbow,
        reach_distance=20.0,
        saddle_height_proxy=40.0,
        pedal_position=position,
    )


def _kops(offset: float) -> KOPSResult:
    return KOPSResult(Point2D(0.5, 0.6), Point2D(0.5, 0.8), offset, abs(offset) <= 2.0)


def _context(
    *,
    six_knee: float = 30.0,
    three_knee: float = 80.0,
    torso: tuple[float, float] = (45.0, 45.0),
    elbow: tuple[float, float] = (155.0, 155.0),
    kops: KOPSResult | None = None,
) -> FitContext:
    six = _features("six-oclock", six_knee, torso[0], elbow[0])
    three = _features("three-oclock", three_knee, torso[1], elbow[1])
    return FitContext(
        six_oclock=six,
        three_oclock=three,
        kops=kops or neutral_kops(),
        consistency=analyze_consistency(six, three),
    )


@pytest.mark.parametrize("knee, fires", [(24.9, True), (25.0, False), (30.0, False), (35.0, False), (35.1, True)])
def test_saddle_height_fires_only_outside_band(knee, fires) -> None:
    outcome = saddle_height_rule(_context(six_knee=knee))
    assert (outcome.recommendation is not None) is fires
    assert (outcome.deduction > 0) is fires


def test_saddle_height_direction_and_deduction() -> None:
    low = saddle_height_rule(_context(six_knee=20.0))
    assert low.recommendation.adjustment_text.startswith("Raise saddle")
    assert low.recommendation.priority == "high"
    assert low.recommendation.recommended_value == 30.0
    assert low.deduction == pytest.approx(10.0)

    high = saddle_height_rule(_context(six_knee=40.0))
    assert high.recommendation.adjustment_text.startswith("Lower saddle")
    assert high.deduction == pytest.approx(10.0)


def test_three_oclock_check_only_deducts() -> None:
    outcome = three_oclock_check_rule(_context(three_knee=150.0))
    assert outcome.recommendation is None
    assert outcome.deduction == pytest.approx(10.0)
    assert outcome.diagnostic.startswith("three_oclock_knee_out_of_range")

    assert three_oclock_check_rule(_context(three_knee=100.0)).deduction == 0.0


@pytest.mark.parametrize("offset, fires", [(2.0, False), (-2.0, False), (2.5, True), (-3.0, True), (0.0, False)])
def test_saddle_fore_aft_fires_only_outside_tolerance(offset, fires) -> None:
    outcome = saddle_fore_aft_rule(_context(kops=_kops(offset)))
    assert (outcome.recommendation is not None) is fires


def test_saddle_fore_aft_direction_and_deduction() -> None:
    forward = saddle_fore_aft_rule(_context(kops=_kops(3.0)))
    assert forward.recommendation.adjustment_text == "Move saddle backward 5-10mm"
    assert forward.recommendation.recommended_value == 0.0
    assert forward.deduction == pytest.approx(6.0)

    behind = saddle_fore_aft_rule(_context(kops=_kops(-2.5)))
    assert behind.recommendation.adjustment_text == "Move saddle forward 5-10mm"
    assert behind.deduction == pytest.approx(5.0)


def test_handlebar_height_uses_mean_torso_angle() -> None:
    # mean 45 even though each photo is far from it
    assert handlebar_height_rule(_context(torso=(30.0, 60.0))).recommendation is None

    aggressive = handlebar_height_rule(_context(torso=(30.0, 30.0)))
    assert aggressive.recommendation.adjustment_text.startswith("Raise handlebars")
    assert aggressive.deduction == pytest.approx(15.0)

    upright = handlebar_height_rule(_context(torso=(60.0, 60.0)))
    assert upright.recommendation.adjustment_text.startswith("Lower handlebars")
    assert upright.recommendation.current_value == pytest.approx(60.0)


def test_stem_length_uses_mean_elbow_angle() -> None:
    assert stem_length_rule(_context(elbow=(150.0, 165.0))).recommendation is None

    bent = stem_length_rule(_context(elbow=(140.0, 140.0)))
    assert "longer stem" in bent.recommendation.adjustment_text
    assert bent.recommendation.recommended_value == 155.0
    assert bent.deduction == pytest.approx(abs(140.0 - 157.5) * 0.5)

    straight = stem_length_rule(_context(elbow=(170.0, 170.0)))
    assert "shorter stem" in straight.recommendation.adjustment_text


def test_core_stability_tracks_consistency() -> None:
    stable = core_stability_rule(_context())
    assert stable.recommendation is None and stable.deduction == 0.0

    unstable = core_stability_rule(_context(torso=(40.0, 55.0), elbow=(155.0, 157.0)))
    assert unstable.recommendation.priority == "low"
    assert unstable.recommendation.current_value == pytest.approx(15.0)
    assert unstable.recommendation.recommended_value == 5.0
    assert unstable.deduction == pytest.approx((15.0 + 2.0) * 0.5)


def test_rules_are_independent_and_all_evaluated() -> None:
    outcomes = evaluate_rules(
        _context(six_knee=20.0, torso=(30.0, 30.0), elbow=(170.0, 170.0), kops=_kops(3.0)),
        FIT_RULES,
    )
    assert [o.rule_id for o in outcomes] == [
        "saddle_height",
        "three_oclock_check",
        "saddle_fore_aft",
        "handlebar_height",
        "stem_length",
        "core_stability",
    ]
    fired = [o.recommendation.type for o in outcomes if o.recommendation]
    assert fired == ["saddle_height", "saddle_fore_aft", "handlebar_height", "stem_length"]


def test_recommendations_sorted_by_priority_and_stable() -> None:
    outcomes = evaluate_rules(
        _context(six_knee=20.0, torso=(20.0, 32.0), elbow=(170.0, 170.0), kops=_kops(3.0)),
        FIT_RULES,
    )
    recs = collect_recommendations(outcomes)
    assert [r.type for r in recs] == [
        "saddle_height",
        "saddle_fore_aft",
        "handlebar_height",
        "stem_length",
        "core_stability",
    ]
    ranks = [r.priority_rank for r in recs]
    assert ranks == sorted(ranks, reverse=True)


def test_sort_recommendations_keeps_insertion_order_for_ties() -> None:
    def rec(type_: str, priority: str) -> Recommendation:
        return Recommendation(type_, 0.0, 0.0, "", priority, "", "test")

    ordered = sort_recommendations([rec("a", "low"), rec("b", "medium"), rec("c", "high"), rec("d", "medium")])
    assert [r.type for r in ordered] == ["c", "b", "d", "a"]
