"""Cross-photo analysis: KOPS alignment and postural consistency.

KOPS (knee over pedal spindle) is read from the three o'clock photo only. The
ankle landmark stands in for the pedal axle, and the normalised horizontal gap
is converted to centimetres with a fixed, uncalibrated factor:

    offset_cm = (knee.x - ankle.x) * image_width_px * px_to_cm

Positive offsets mean the knee sits ahead of the axle.

Consistency compares the torso and elbow angles of both photos; large swings
between pedal positions point to a rider who is moving around on the bike.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Sequence

from bikefit.fitting.config import DEFAULT_CONFIG, FITTING_LOGGER as logger, FitConfig
from bikefit.fitting.features import coerce_landmarks, landmark_at
from bikefit.fitting.geometry import round1
from bikefit.models import (
    ConsistencyResult,
    FitAnalysisError,
    KOPSComputationError,
    KOPSResult,
    Point2D,
    PoseFeatureSet,
)

TORSO_INSTABILITY = "torso instability"
ELBOW_INSTABILITY = "elbow/reach instability"

_DELTA_TOLERANCE = 1e-9

_ISSUE_TEXT = {
    TORSO_INSTABILITY: (
        "torso instability: significant torso angle variation between pedal positions suggests instability"
    ),
    ELBOW_INSTABILITY: (
        "elbow/reach instability: large elbow angle variation indicates excessive reach or poor core stability"
    ),
}


def neutral_kops() -> KOPSResult:
    return KOPSResult(
        knee_point=Point2D(0.5, 0.5),
        pedal_point=Point2D(0.5, 0.5),
        horizontal_offset_cm=0.0,
        is_optimal=True,
    )


def compute_kops(
    landmarks: Optional[Sequence[Any]],
    image_width_px: Optional[float] = None,
    config: FitConfig | None = None,
) -> KOPSResult:
    """Measure the knee/pedal horizontal offset from three o'clock landmarks.

    Raises:
        KOPSComputationError: the knee or ankle landmark is absent.
    """
    cfg = config or DEFAULT_CONFIG
    try:
        points = coerce_landmarks(landmarks)
    except FitAnalysisError as exc:
        raise KOPSComputationError(f"three-oclock: unusable landmarks for KOPS ({exc}).") from exc

    knee = landmark_at(points, "right_knee")
    ankle = landmark_at(points, "right_ankle")
    if knee is None or ankle is None:
        raise KOPSComputationError("three-oclock: could not detect knee or ankle for KOPS analysis.")

    width = float(image_width_px) if image_width_px else cfg.kops.default_image_width_px
    if not math.isfinite(width) or width <= 0:
        raise KOPSComputationError(
            f"three-oclock: image width must be a positive number; received {image_width_px!r}."
        )
    offset = (knee.x - ankle.x) * width * cfg.kops.px_to_cm
    return KOPSResult(
        knee_point=knee.to_point(),
        pedal_point=ankle.to_point(),
        horizontal_offset_cm=offset,
        is_optimal=abs(offset) <= cfg.kops.tolerance_cm,
    )


def compute_kops_or_neutral(
    landmarks: Optional[Sequence[Any]],
    image_width_px: Optional[float] = None,
    config: FitConfig | None = None,
) -> tuple[KOPSResult, Optional[str]]:
    """Return (kops, diagnostic); degrades to a neutral result when KOPS fails."""
    try:
        return compute_kops(landmarks, image_width_px, config), None
    except KOPSComputationError as exc:
        logger.warning("KOPS calculation failed, using neutral result: %s", exc)
        return neutral_kops(), f"kops_fallback: {exc}"


def analyze_consistency(
    six_oclock: PoseFeatureSet,
    three_oclock: PoseFeatureSet,
    config: FitConfig | None = None,
) -> ConsistencyResult:
    cfg = config or DEFAULT_CONFIG
    torso_delta = abs(six_oclock.torso_angle - three_oclock.torso_angle)
    elbow_delta = abs(six_oclock.elbow_angle - three_oclock.elbow_angle)

    # limits are compared on the unrounded deltas; the tolerance absorbs float noise only
    issues: list[str] = []
    if torso_delta - cfg.consistency.torso_delta_deg > _DELTA_TOLERANCE:
        issues.append(_ISSUE_TEXT[TORSO_INSTABILITY])
    if elbow_delta - cfg.consistency.elbow_delta_deg > _DELTA_TOLERANCE:
        issues.append(_ISSUE_TEXT[ELBOW_INSTABILITY])

    return ConsistencyResult(
        torso_angle_delta=round1(torso_delta),
        elbow_angle_delta=round1(elbow_delta),
        issues=tuple(issues),
    )


__all__ = [
    "TORSO_INSTABILITY",
    "ELBOW_INSTABILITY",
    "neutral_kops",
    "compute_kops",
    "compute_kops_or_neutral",
    "analyze_consistency",
]
