"""Per-photo feature extraction from pose landmarks."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from bikefit.fitting.config import (
    DEFAULT_CONFIG,
    FITTING_LOGGER as logger,
    MIN_LANDMARKS,
    POSE_LANDMARKS,
    REQUIRED_JOINTS,
    FitConfig,
)
from bikefit.fitting.geometry import (
    euclidean_distance,
    interior_angle,
    knee_bend_angle,
    round1,
    torso_angle,
)
from bikefit.models import (
    Landmark,
    MissingLandmarksError,
    PoseFeatureSet,
    PoseValidation,
    normalize_pedal_position,
)


def coerce_landmarks(raw: Any) -> list[Optional[Landmark]]:
    """Normalise a raw landmark array; null entries stay None."""
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        raise MissingLandmarksError(f"Landmarks must be an array; received {type(raw).__name__}.")
    return [Landmark.from_raw(item) for item in raw]


def landmark_at(landmarks: Sequence[Optional[Landmark]], joint: str) -> Optional[Landmark]:
    index = POSE_LANDMARKS[joint]
    if index >= len(landmarks):
        return None
    return landmarks[index]


def extract_features(
    landmarks: Sequence[Any],
    pedal_position: str,
    config: FitConfig | None = None,
) -> PoseFeatureSet:
    """Measure knee, torso and elbow angles plus reach/saddle proxies for one photo.

    Raises:
        MissingLandmarksError: fewer than 33 landmarks, or a required joint is absent.
    """
    cfg = config or DEFAULT_CONFIG
    position = normalize_pedal_position(pedal_position)
    points = coerce_landmarks(landmarks)

    if len(points) < MIN_LANDMARKS:
        raise MissingLandmarksError(
            f"{position}: insufficient pose landmarks detected ({len(points)} < {MIN_LANDMARKS})."
        )

    joints = {name: landmark_at(points, name) for name in REQUIRED_JOINTS}
    missing = [name for name, point in joints.items() if point is None]
    if missing:
        raise MissingLandmarksError(
            f"{position}: could not detect all required body parts (missing {', '.join(missing)})."
        )

    shoulder = joints["right_shoulder"]
    elbow = joints["right_elbow"]
    wrist = joints["right_wrist"]
    hip = joints["right_hip"]
    knee = joints["right_knee"]
    ankle = joints["right_ankle"]

    knee_interior = interior_angle(hip, knee, ankle)
    knee_bend = knee_bend_angle(hip, knee, ankle)
    logger.debug(
        "%s knee analysis: interior=%.1f bend=%.1f",
        position,
        knee_interior,
        knee_bend,
    )

    geometry = cfg.geometry
    return PoseFeatureSet(
        knee_angle=round1(knee_bend),
        torso_angle=round1(torso_angle(hip, shoulder, reference_offset=geometry.torso_reference_offset)),
        elbow_angle=round1(interior_angle(shoulder, elbow, wrist)),
        reach_distance=round1(abs(shoulder.x - wrist.x) * geometry.reach_scale),
        saddle_height_proxy=round1(euclidean_distance(hip, ankle) * geometry.saddle_height_scale),
        pedal_position=position,
    )


def validate_pose_for_bike_fit(landmarks: Sequence[Any], config: FitConfig | None = None) -> PoseValidation:
    """Check that a landmark set is usable for a side-on fit; never raises."""
    cfg = config or DEFAULT_CONFIG
    try:
        points = coerce_landmarks(landmarks)
    except (MissingLandmarksError, ValueError):
        return PoseValidation(issues=("No pose detected",))
    if len(points) < MIN_LANDMARKS:
        return PoseValidation(issues=("No pose detected",))

    issues: list[str] = []
    threshold = cfg.pose_quality.min_visibility
    for name in REQUIRED_JOINTS:
        point = landmark_at(points, name)
        if point is None or (point.visibility is not None and point.visibility < threshold):
            issues.append("Key body parts not clearly visible. Ensure good lighting and clear view.")
            break

    left_shoulder = landmark_at(points, "left_shoulder")
    right_shoulder = landmark_at(points, "right_shoulder")
    if left_shoulder is not None and right_shoulder is not None:
        if euclidean_distance(left_shoulder, right_shoulder) > cfg.pose_quality.max_shoulder_separation:
            issues.append("Please position yourself in a side-view (90 degrees to camera) for accurate analysis.")

    return PoseValidation(issues=tuple(issues))


__all__ = ["coerce_landmarks", "extract_features", "validate_pose_for_bike_fit"]
