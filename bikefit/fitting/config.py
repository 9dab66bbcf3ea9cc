"""Configuration for the bike-fit analysis pipeline.

Settings include:
- POSE_LANDMARKS: MediaPipe Pose landmark indices used for the fit angles.
- FitConfig: every optimal band, penalty weight and heuristic constant used by
  the feature extractor, cross-photo analyzer, rule table and scoring.
- FITTING_LOGGER: the package logger (level from BIKEFIT_LOG_LEVEL / LOG_LEVEL).

The pixel-to-centimetre factor, the default image width and the saddle-height
proxy scale are unvalidated approximations: they convert normalised image
coordinates into rough magnitudes, not calibrated physical units.

Values can be overridden via a TOML/JSON file and environment variables.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import asdict, dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from bikefit.env import get_env

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore[assignment]


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("bikefit.fitting")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


FITTING_LOGGER = _configure_logger()
logger = FITTING_LOGGER

# https://developers.google.com/mediapipe/solutions/vision/pose_landmarker
# Right side only; a side-on photo is analysed from the camera-facing leg.
POSE_LANDMARKS: Dict[str, int] = {
    "left_shoulder": 11,
    "right_shoulder": 12,
    "right_elbow": 14,
    "right_wrist": 16,
    "right_hip": 24,
    "right_knee": 26,
    "right_ankle": 28,
}
REQUIRED_JOINTS: Tuple[str, ...] = (
    "right_shoulder",
    "right_elbow",
    "right_wrist",
    "right_hip",
    "right_knee",
    "right_ankle",
)
MIN_LANDMARKS = 33


@dataclass(frozen=True)
class Band:
    """Inclusive optimal range."""

    low: float
    high: float

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def deviation(self, value: float) -> float:
        """Distance from the nearer band edge (0 inside the band)."""
        if self.contains(value):
            return 0.0
        return min(abs(value - self.low), abs(value - self.high))


@dataclass(frozen=True)
class KneeThresholds:
    six_oclock_band: Band = Band(25.0, 35.0)
    saddle_height_target: float = 30.0
    deviation_weight: float = 2.0
    three_oclock_band: Band = Band(60.0, 100.0)
    three_oclock_penalty: float = 10.0


@dataclass(frozen=True)
class PostureThresholds:
    torso_band: Band = Band(35.0, 55.0)
    torso_target: float = 45.0
    torso_weight: float = 1.0
    elbow_band: Band = Band(150.0, 165.0)
    elbow_target: float = 155.0
    elbow_center: float = 157.5
    elbow_weight: float = 0.5


@dataclass(frozen=True)
class KOPSThresholds:
    tolerance_cm: float = 2.0
    weight: float = 2.0
    px_to_cm: float = 0.05
    default_image_width_px: float = 640.0


@dataclass(frozen=True)
class ConsistencyThresholds:
    torso_delta_deg: float = 10.0
    elbow_delta_deg: float = 15.0
    weight: float = 0.5
    core_stability_target: float = 5.0


@dataclass(frozen=True)
class GeometryConstants:
    torso_reference_offset: float = 0.1
    reach_scale: float = 100.0
    saddle_height_scale: float = 100.0


@dataclass(frozen=True)
class PoseQualityThresholds:
    min_visibility: float = 0.5
    max_shoulder_separation: float = 0.15


@dataclass(frozen=True)
class LegacyThresholds:
    knee_center: float = 30.0
    elbow_band: Band = Band(150.0, 160.0)
    elbow_center: float = 155.0


@dataclass(frozen=True)
class ScoreTiers:
    excellent: int = 80
    good: int = 60


@dataclass(frozen=True)
class FitConfig:
    """Immutable threshold table injected into the analysis pipeline."""

    knee: KneeThresholds = field(default_factory=KneeThresholds)
    posture: PostureThresholds = field(default_factory=PostureThresholds)
    kops: KOPSThresholds = field(default_factory=KOPSThresholds)
    consistency: ConsistencyThresholds = field(default_factory=ConsistencyThresholds)
    geometry: GeometryConstants = field(default_factory=GeometryConstants)
    pose_quality: PoseQualityThresholds = field(default_factory=PoseQualityThresholds)
    legacy: LegacyThresholds = field(default_factory=LegacyThresholds)
    tiers: ScoreTiers = field(default_factory=ScoreTiers)
    source: str = "defaults"


DEFAULT_CONFIG = FitConfig()

__all__ = [
    "FITTING_LOGGER",
    "POSE_LANDMARKS",
    "REQUIRED_JOINTS",
    "MIN_LANDMARKS",
    "Band",
    "FitConfig",
    "DEFAULT_CONFIG",
    "get_config",
    "build_config",
    "load_config_from_file",
    "validate_config_values",
    "config_as_dict",
    "print_config",
]


def _get_env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", key, raw)
        return default


def _parse_range(raw: str) -> Tuple[float, float] | None:
    for sep in (",", ":", "-"):
        if sep in raw:
            try:
                start_str, end_str = raw.split(sep)
                return float(start_str), float(end_str)
            except ValueError:
                continue
    return None


def _get_env_band(key: str, default: Band) -> Band:
    raw = get_env(key)
    if not raw:
        return default
    parsed = _parse_range(raw)
    if parsed is None:
        logger.warning("Ignoring malformed %s=%r (expected e.g. '25-35')", key, raw)
        return default
    return Band(*parsed)


def _coerce_band(value: Any, default: Band) -> Band:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        try:
            return Band(float(value[0]), float(value[1]))
        except (TypeError, ValueError):
            return default
    if isinstance(value, Mapping) and "low" in value and "high" in value:
        try:
            return Band(float(value["low"]), float(value["high"]))
        except (TypeError, ValueError):
            return default
    if isinstance(value, str):
        parsed = _parse_range(value)
        if parsed is not None:
            return Band(*parsed)
    return default


def _coerce_section(section_cls: type, raw: Any) -> Any:
    """Build a threshold section from a mapping, keeping defaults for bad values."""
    base = section_cls()
    if not isinstance(raw, Mapping):
        return base
    updates: Dict[str, Any] = {}
    for name, current in asdict(base).items():
        if name not in raw:
            continue
        default = getattr(base, name)
        if isinstance(default, Band):
            updates[name] = _coerce_band(raw[name], default)
            continue
        try:
            updates[name] = type(current)(raw[name])
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid %s.%s=%r", section_cls.__name__, name, raw[name])
    return replace(base, **updates)


def _load_toml_file(path: Path) -> Dict[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _apply_env_overrides(config: FitConfig) -> FitConfig:
    knee = replace(
        config.knee,
        six_oclock_band=_get_env_band("SIX_OCLOCK_KNEE_BAND", config.knee.six_oclock_band),
    )
    posture = replace(
        config.posture,
        torso_band=_get_env_band("TORSO_BAND", config.posture.torso_band),
        elbow_band=_get_env_band("ELBOW_BAND", config.posture.elbow_band),
    )
    kops = replace(
        config.kops,
        px_to_cm=_get_env_float("PX_TO_CM", config.kops.px_to_cm),
        default_image_width_px=_get_env_float("DEFAULT_IMAGE_WIDTH", config.kops.default_image_width_px),
        tolerance_cm=_get_env_float("KOPS_TOLERANCE_CM", config.kops.tolerance_cm),
    )
    return replace(config, knee=knee, posture=posture, kops=kops)


def build_config(raw: Mapping[str, Any], *, source: str = "mapping") -> FitConfig:
    """Build a FitConfig from a mapping; env vars take precedence over mapping values."""
    body = raw.get("bikefit", raw) if isinstance(raw, Mapping) else raw
    if not isinstance(body, Mapping):
        raise ValueError("Invalid config structure; expected a dict or a [bikefit] section.")
    config = FitConfig(
        knee=_coerce_section(KneeThresholds, body.get("knee")),
        posture=_coerce_section(PostureThresholds, body.get("posture")),
        kops=_coerce_section(KOPSThresholds, body.get("kops")),
        consistency=_coerce_section(ConsistencyThresholds, body.get("consistency")),
        geometry=_coerce_section(GeometryConstants, body.get("geometry")),
        pose_quality=_coerce_section(PoseQualityThresholds, body.get("pose_quality")),
        legacy=_coerce_section(LegacyThresholds, body.get("legacy")),
        tiers=_coerce_section(ScoreTiers, body.get("tiers")),
        source=source,
    )
    return _apply_env_overrides(config)


def load_config_from_file(config_path: Path | str) -> FitConfig:
    """Load thresholds from TOML or JSON and apply env var overrides.

    Supports either a root-level mapping or a [bikefit] table/object.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    if not path.is_file():
        raise ValueError(f"Expected a config file, but got a directory: {path}")

    suffix = path.suffix.lower()
    if suffix == ".toml":
        raw_config = _load_toml_file(path)
    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as handle:
            raw_config = json.load(handle)
    else:
        raise ValueError(f"Unsupported config format for {path}; expected .toml or .json.")

    config = build_config(raw_config, source=str(path))
    validate_config_values(config)
    return config


def _config_path() -> Path | None:
    """Resolve the configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None
    default_path = Path("config/bikefit.toml")
    if default_path.exists():
        return default_path
    return None


@lru_cache(maxsize=1)
def get_config() -> FitConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return _apply_env_overrides(DEFAULT_CONFIG)
    return load_config_from_file(path)


def _warn(message: str) -> None:
    warnings.warn(message, RuntimeWarning, stacklevel=3)
    logger.warning(message)


def validate_config_values(config: FitConfig) -> None:
    """Emit warnings for suspicious settings; never raises."""
    bands = {
        "knee.six_oclock_band": config.knee.six_oclock_band,
        "knee.three_oclock_band": config.knee.three_oclock_band,
        "posture.torso_band": config.posture.torso_band,
        "posture.elbow_band": config.posture.elbow_band,
        "legacy.elbow_band": config.legacy.elbow_band,
    }
    for name, band in bands.items():
        if band.low > band.high:
            _warn(f"{name} is inverted ({band.low} > {band.high}); nothing will fall inside it.")

    weights = {
        "knee.deviation_weight": config.knee.deviation_weight,
        "knee.three_oclock_penalty": config.knee.three_oclock_penalty,
        "posture.torso_weight": config.posture.torso_weight,
        "posture.elbow_weight": config.posture.elbow_weight,
        "kops.weight": config.kops.weight,
        "consistency.weight": config.consistency.weight,
    }
    for name, value in weights.items():
        if value < 0:
            _warn(f"{name}={value} is negative; deductions would raise the score.")

    if config.kops.px_to_cm <= 0 or config.kops.default_image_width_px <= 0:
        _warn("kops.px_to_cm and kops.default_image_width_px should be positive.")

    if not 0 <= config.tiers.good <= config.tiers.excellent <= 100:
        _warn(
            f"Score tiers look out of order (good={config.tiers.good}, excellent={config.tiers.excellent})."
        )


def config_as_dict(config: FitConfig | None = None) -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    cfg = config or get_config()
    payload = asdict(cfg)
    payload["source"] = cfg.source
    return payload


def print_config(config: FitConfig | None = None) -> None:
    """Print configuration values for debugging purposes."""
    cfg = config or get_config()
    print("Bike-fit configuration:")
    print(f"  Source: {cfg.source}")
    print(f"  Six o'clock knee band: {cfg.knee.six_oclock_band.low}-{cfg.knee.six_oclock_band.high} deg")
    print(f"  Three o'clock knee band: {cfg.knee.three_oclock_band.low}-{cfg.knee.three_oclock_band.high} deg")
    print(f"  Torso band: {cfg.posture.torso_band.low}-{cfg.posture.torso_band.high} deg")
    print(f"  Elbow band: {cfg.posture.elbow_band.low}-{cfg.posture.elbow_band.high} deg")
    print(f"  KOPS tolerance: +/-{cfg.kops.tolerance_cm} cm (px->cm factor {cfg.kops.px_to_cm})")
    print(
        "  Consistency limits (torso, elbow): "
        f"{cfg.consistency.torso_delta_deg}, {cfg.consistency.elbow_delta_deg} deg"
    )
    print(f"  Score tiers (excellent, good): {cfg.tiers.excellent}, {cfg.tiers.good}")
