"""Bike-fit analysis from pose landmarks at two pedal positions.

Pipeline: geometry -> per-photo features -> cross-photo analysis (KOPS,
consistency) -> rule table and score.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "FITTING_LOGGER",
    "FitConfig",
    "DEFAULT_CONFIG",
    "get_config",
    "load_config_from_file",
    "print_config",
    "interior_angle",
    "knee_bend_angle",
    "euclidean_distance",
    "extract_features",
    "validate_pose_for_bike_fit",
    "compute_kops",
    "analyze_consistency",
    "evaluate_rules",
    "analyze_photo_pair",
    "analyze_single_photo",
    "build_fit_report",
]

_CONFIG_EXPORTS = {
    "FITTING_LOGGER",
    "FitConfig",
    "DEFAULT_CONFIG",
    "get_config",
    "load_config_from_file",
    "print_config",
}
_GEOMETRY_EXPORTS = {"interior_angle", "knee_bend_angle", "euclidean_distance"}
_FEATURE_EXPORTS = {"extract_features", "validate_pose_for_bike_fit"}
_COMPARISON_EXPORTS = {"compute_kops", "analyze_consistency"}
_RULE_EXPORTS = {"evaluate_rules"}
_REPORT_EXPORTS = {"analyze_photo_pair", "analyze_single_photo", "build_fit_report"}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _CONFIG_EXPORTS:
        from . import config as _config

        return getattr(_config, name)
    if name in _GEOMETRY_EXPORTS:
        from . import geometry as _geometry

        return getattr(_geometry, name)
    if name in _FEATURE_EXPORTS:
        from . import features as _features

        return getattr(_features, name)
    if name in _COMPARISON_EXPORTS:
        from . import comparison as _comparison

        return getattr(_comparison, name)
    if name in _RULE_EXPORTS:
        from . import rules as _rules

        return getattr(_rules, name)
    if name in _REPORT_EXPORTS:
        from . import report as _report

        return getattr(_report, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
