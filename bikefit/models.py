from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

SIX_OCLOCK = "six-oclock"
THREE_OCLOCK = "three-oclock"
PEDAL_POSITIONS: tuple[str, ...] = (SIX_OCLOCK, THREE_OCLOCK)

_POSITION_ALIASES = {
    "six-oclock": SIX_OCLOCK,
    "6-oclock": SIX_OCLOCK,
    "6": SIX_OCLOCK,
    "bottom": SIX_OCLOCK,
    "three-oclock": THREE_OCLOCK,
    "3-oclock": THREE_OCLOCK,
    "3": THREE_OCLOCK,
    "forward": THREE_OCLOCK,
}

RECOMMENDATION_TYPES: tuple[str, ...] = (
    "saddle_height",
    "saddle_fore_aft",
    "handlebar_height",
    "stem_length",
    "core_stability",
)
PRIORITY_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

__all__ = [
    "SIX_OCLOCK",
    "THREE_OCLOCK",
    "PEDAL_POSITIONS",
    "RECOMMENDATION_TYPES",
    "PRIORITY_RANK",
    "normalize_pedal_position",
    "coerce_angle",
    "round1",
    "FitAnalysisError",
    "MissingLandmarksError",
    "KOPSComputationError",
    "InvalidPositionInputError",
    "PayloadFormatError",
    "Landmark",
    "Point2D",
    "PoseFeatureSet",
    "PhotoSubmission",
    "KOPSResult",
    "ConsistencyResult",
    "Recommendation",
    "PoseValidation",
    "FitReport",
    "LegacyFitReport",
]


class FitAnalysisError(ValueError):
    """Base class for failures raised by the bike-fit pipeline."""


class MissingLandmarksError(FitAnalysisError):
    """Raised when a photo lacks the landmarks needed for feature extraction."""


class KOPSComputationError(FitAnalysisError):
    """Raised when the three o'clock knee/ankle landmarks are unavailable."""


class InvalidPositionInputError(FitAnalysisError):
    """Raised when a photo set does not contain exactly one photo per pedal position."""


class PayloadFormatError(FitAnalysisError):
    """Raised when a request payload cannot be interpreted."""


def normalize_pedal_position(value: Any) -> str:
    """
    Map a user-supplied pedal-position tag onto `six-oclock` / `three-oclock`.

    Accepts the short `6-oclock` / `3-oclock` spellings used by older clients.
    """
    text = str(value or "").strip().lower().replace("_", "-").replace(" ", "-")
    text = text.replace("o-clock", "oclock").replace("o'clock", "oclock")
    try:
        return _POSITION_ALIASES[text]
    except KeyError:
        raise InvalidPositionInputError(
            f"Unknown pedal position {value!r}; expected one of {', '.join(PEDAL_POSITIONS)}."
        ) from None


def round1(value: float) -> float:
    """Round half-up to one decimal place."""
    return math.floor(value * 10.0 + 0.5) / 10.0


def coerce_angle(value: Any, *, field: str = "angle") -> float:
    """Convert a raw angle into a finite, non-negative float."""
    if isinstance(value, bool) or value is None:
        raise PayloadFormatError(f"{field} must be a number; received {value!r}.")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise PayloadFormatError(f"{field} must be a number; received {value!r}.") from exc
    if not math.isfinite(number) or number < 0:
        raise PayloadFormatError(f"{field} must be a finite, non-negative number; received {value!r}.")
    return number


@dataclass(frozen=True)
class Point2D:
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Landmark:
    """A pose-detector landmark in normalised image coordinates."""

    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    @classmethod
    def from_raw(cls, value: Any) -> Optional["Landmark"]:
        """
        Build a landmark from a mapping (`{"x", "y", "z", "visibility"}`) or a
        sequence (`[x, y]`, `[x, y, z]`, `[x, y, z, visibility]`).

        Returns None for a missing (null) entry.
        """
        if value is None:
            return None
        if isinstance(value, Landmark):
            return value
        if isinstance(value, Mapping):
            raw_x, raw_y = value.get("x"), value.get("y")
            raw_z = value.get("z", 0.0)
            raw_vis = value.get("visibility")
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            if len(value) < 2:
                raise PayloadFormatError(f"Landmark needs at least x and y; received {value!r}.")
            raw_x, raw_y = value[0], value[1]
            raw_z = value[2] if len(value) > 2 else 0.0
            raw_vis = value[3] if len(value) > 3 else None
        else:
            raise PayloadFormatError(f"Unsupported landmark shape: {value!r}.")

        try:
            x = float(raw_x)
            y = float(raw_y)
            z = float(raw_z if raw_z is not None else 0.0)
            visibility = float(raw_vis) if raw_vis is not None else None
        except (TypeError, ValueError) as exc:
            raise PayloadFormatError(f"Landmark coordinates must be numeric; received {value!r}.") from exc
        if not (math.isfinite(x) and math.isfinite(y)):
            raise PayloadFormatError(f"Landmark coordinates must be finite; received {value!r}.")
        return cls(x=x, y=y, z=z, visibility=visibility)

    def to_point(self) -> Point2D:
        return Point2D(self.x, self.y)


@dataclass(frozen=True)
class PoseFeatureSet:
    """Angles and proxies measured on a single photo."""

    knee_angle: float
    torso_angle: float
    elbow_angle: float
    reach_distance: float
    saddle_height_proxy: float
    pedal_position: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kneeAngle": self.knee_angle,
            "torsoAngle": self.torso_angle,
            "elbowAngle": self.elbow_angle,
            "reachDistance": self.reach_distance,
            "saddleHeightProxy": self.saddle_height_proxy,
            "pedalPosition": self.pedal_position,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, pedal_position: str | None = None) -> "PoseFeatureSet":
        """
        Rebuild a feature set from precomputed angles.

        Both camelCase (`kneeAngle`) and snake_case (`knee_angle`) keys are
        accepted; `saddleHeight` is read as the saddle-height proxy.
        """

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in payload:
                    return payload[key]
            return default

        position = pedal_position or pick("pedalPosition", "pedal_position", default=SIX_OCLOCK)
        return cls(
            knee_angle=round1(coerce_angle(pick("kneeAngle", "knee_angle"), field="kneeAngle")),
            torso_angle=round1(coerce_angle(pick("torsoAngle", "torso_angle"), field="torsoAngle")),
            elbow_angle=round1(coerce_angle(pick("elbowAngle", "elbow_angle"), field="elbowAngle")),
            reach_distance=round1(
                coerce_angle(pick("reachDistance", "reach_distance", default=0.0), field="reachDistance")
            ),
            saddle_height_proxy=round1(
                coerce_angle(
                    pick("saddleHeightProxy", "saddle_height_proxy", "saddleHeight", default=0.0),
                    field="saddleHeightProxy",
                )
            ),
            pedal_position=normalize_pedal_position(position),
        )


@dataclass(frozen=True)
class PhotoSubmission:
    """One photo of a fit request: raw landmarks and/or precomputed angles."""

    pedal_position: str
    landmarks: Optional[Tuple[Optional[Landmark], ...]] = None
    features: Optional[PoseFeatureSet] = None
    image_width_px: Optional[float] = None
    image_height_px: Optional[float] = None


@dataclass(frozen=True)
class KOPSResult:
    """Knee-over-pedal-spindle alignment at the three o'clock position."""

    knee_point: Point2D
    pedal_point: Point2D
    horizontal_offset_cm: float
    is_optimal: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kneePoint": self.knee_point.to_dict(),
            "pedalPoint": self.pedal_point.to_dict(),
            "horizontalOffsetCm": self.horizontal_offset_cm,
            "isOptimal": self.is_optimal,
        }


@dataclass(frozen=True)
class ConsistencyResult:
    torso_angle_delta: float
    elbow_angle_delta: float
    issues: Tuple[str, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "torsoAngleDelta": self.torso_angle_delta,
            "elbowAngleDelta": self.elbow_angle_delta,
            "isConsistent": self.is_consistent,
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class Recommendation:
    """A single, prioritised bike adjustment."""

    type: str
    current_value: float
    recommended_value: float
    adjustment_text: str
    priority: str
    description: str
    based_on: str

    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK.get(self.priority, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "currentValue": self.current_value,
            "recommendedValue": self.recommended_value,
            "adjustmentText": self.adjustment_text,
            "priority": self.priority,
            "description": self.description,
            "basedOn": self.based_on,
        }


@dataclass(frozen=True)
class PoseValidation:
    issues: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "issues": list(self.issues)}


@dataclass(frozen=True)
class FitReport:
    """Terminal artifact of the two-photo analysis."""

    six_oclock: PoseFeatureSet
    three_oclock: PoseFeatureSet
    kops: KOPSResult
    consistency: ConsistencyResult
    recommendations: Tuple[Recommendation, ...]
    overall_score: int
    summary: str
    diagnostics: Tuple[str, ...] = field(default=())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sixOClock": self.six_oclock.to_dict(),
            "threeOClock": self.three_oclock.to_dict(),
            "kops": self.kops.to_dict(),
            "consistency": self.consistency.to_dict(),
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "overallScore": self.overall_score,
            "summary": self.summary,
            "diagnostics": list(self.diagnostics),
        }


@dataclass(frozen=True)
class LegacyFitReport:
    """Single-photo report kept for older clients."""

    angles: PoseFeatureSet
    recommendations: Tuple[Recommendation, ...]
    overall_score: int
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "angles": self.angles.to_dict(),
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "overallScore": self.overall_score,
            "summary": self.summary,
        }
