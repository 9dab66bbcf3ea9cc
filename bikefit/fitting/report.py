"""Fit report assembly for two-photo and legacy single-photo requests.

Both paths share the feature extractor and the rule/score machinery:

    two-photo:   extract x2 -> KOPS + consistency -> FIT_RULES -> score/summary
    single-photo: extract x1 ------------------------> LEGACY_RULES -> score/summary
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from bikefit.fitting.comparison import analyze_consistency, compute_kops_or_neutral
from bikefit.fitting.config import DEFAULT_CONFIG, FITTING_LOGGER as logger, FitConfig
from bikefit.fitting.features import extract_features
from bikefit.fitting.rules import (
    FIT_RULES,
    LEGACY_RULES,
    FitContext,
    LegacyContext,
    collect_diagnostics,
    collect_recommendations,
    evaluate_rules,
)
from bikefit.fitting.scoring import fit_summary, legacy_summary, score_outcomes
from bikefit.models import (
    SIX_OCLOCK,
    THREE_OCLOCK,
    FitReport,
    InvalidPositionInputError,
    LegacyFitReport,
    MissingLandmarksError,
    PhotoSubmission,
    PoseFeatureSet,
    normalize_pedal_position,
)


def resolve_features(photo: PhotoSubmission, config: FitConfig | None = None) -> PoseFeatureSet:
    """Use precomputed angles when supplied, otherwise extract them from landmarks."""
    position = normalize_pedal_position(photo.pedal_position)
    if photo.features is not None:
        if photo.features.pedal_position != position:
            raise InvalidPositionInputError(
                f"{position}: precomputed angles are tagged {photo.features.pedal_position}."
            )
        return photo.features
    if photo.landmarks is None:
        raise MissingLandmarksError(f"{position}: no landmarks or precomputed angles supplied.")
    return extract_features(photo.landmarks, position, config)


def split_photo_pair(photos: Sequence[PhotoSubmission]) -> tuple[PhotoSubmission, PhotoSubmission]:
    """Return (six o'clock, three o'clock) photos, validating count and tags."""
    if len(photos) != 2:
        raise InvalidPositionInputError(
            f"Two photos are required (one six-oclock, one three-oclock); received {len(photos)}."
        )
    by_position: dict[str, PhotoSubmission] = {}
    for photo in photos:
        by_position.setdefault(normalize_pedal_position(photo.pedal_position), photo)
    missing = [pos for pos in (SIX_OCLOCK, THREE_OCLOCK) if pos not in by_position]
    if missing:
        raise InvalidPositionInputError(
            f"Both six-oclock and three-oclock photos are required; missing {', '.join(missing)}."
        )
    return by_position[SIX_OCLOCK], by_position[THREE_OCLOCK]


def build_fit_report(
    six_oclock: PoseFeatureSet,
    three_oclock: PoseFeatureSet,
    *,
    three_oclock_landmarks: Optional[Sequence[Any]] = None,
    image_width_px: Optional[float] = None,
    config: FitConfig | None = None,
) -> FitReport:
    """Run cross-photo analysis, the rule table and scoring over two feature sets."""
    cfg = config or DEFAULT_CONFIG
    kops, kops_diagnostic = compute_kops_or_neutral(three_oclock_landmarks, image_width_px, cfg)
    consistency = analyze_consistency(six_oclock, three_oclock, cfg)

    context = FitContext(
        six_oclock=six_oclock,
        three_oclock=three_oclock,
        kops=kops,
        consistency=consistency,
        config=cfg,
    )
    outcomes = evaluate_rules(context, FIT_RULES)
    score = score_outcomes(outcomes)

    diagnostics = collect_diagnostics(outcomes)
    if kops_diagnostic:
        diagnostics = (kops_diagnostic,) + diagnostics

    recommendations = collect_recommendations(outcomes)
    logger.info(
        "Fit report: score=%d recommendations=%s consistent=%s kops_optimal=%s",
        score,
        ",".join(rec.type for rec in recommendations) or "none",
        consistency.is_consistent,
        kops.is_optimal,
    )
    return FitReport(
        six_oclock=six_oclock,
        three_oclock=three_oclock,
        kops=kops,
        consistency=consistency,
        recommendations=recommendations,
        overall_score=score,
        summary=fit_summary(score, cfg),
        diagnostics=diagnostics,
    )


def analyze_photo_pair(photos: Sequence[PhotoSubmission], config: FitConfig | None = None) -> FitReport:
    """Produce a FitReport from one six o'clock and one three o'clock photo.

    Raises:
        InvalidPositionInputError: wrong photo count or a missing position tag.
        MissingLandmarksError: either photo lacks the joints needed for its angles.
    """
    cfg = config or DEFAULT_CONFIG
    six_photo, three_photo = split_photo_pair(photos)
    six = resolve_features(six_photo, cfg)
    three = resolve_features(three_photo, cfg)
    return build_fit_report(
        six,
        three,
        three_oclock_landmarks=three_photo.landmarks,
        image_width_px=three_photo.image_width_px,
        config=cfg,
    )


def analyze_single_photo(
    photo: PhotoSubmission | PoseFeatureSet,
    *,
    detected: bool | None = None,
    config: FitConfig | None = None,
) -> LegacyFitReport:
    """Legacy single-photo assessment (saddle height + band deductions only).

    `detected` picks the summary wording; it defaults to True when the angles
    were measured from landmarks.
    """
    cfg = config or DEFAULT_CONFIG
    if isinstance(photo, PoseFeatureSet):
        angles = photo
        from_landmarks = False
    else:
        angles = resolve_features(photo, cfg)
        from_landmarks = photo.features is None
    if detected is None:
        detected = from_landmarks

    outcomes = evaluate_rules(LegacyContext(angles=angles, config=cfg), LEGACY_RULES)
    score = score_outcomes(outcomes)
    return LegacyFitReport(
        angles=angles,
        recommendations=collect_recommendations(outcomes),
        overall_score=score,
        summary=legacy_summary(score, detected=detected, config=cfg),
    )


__all__ = [
    "resolve_features",
    "split_photo_pair",
    "build_fit_report",
    "analyze_photo_pair",
    "analyze_single_photo",
]
