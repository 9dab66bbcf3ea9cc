"""Planar joint-angle computations for side-on bike-fit photos."""

from __future__ import annotations

import math
from typing import Any, Mapping

import numpy as np

from bikefit.models import Point2D, round1


def _as_xy(point: Any) -> np.ndarray:
    """Project a landmark, point, mapping or sequence onto (x, y)."""
    if isinstance(point, Mapping):
        return np.array([float(point["x"]), float(point["y"])], dtype=float)
    if hasattr(point, "x") and hasattr(point, "y"):
        return np.array([float(point.x), float(point.y)], dtype=float)
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.size < 2:
        raise ValueError(f"Expected at least two coordinates; received {point!r}.")
    return arr[:2]


def interior_angle(a: Any, b: Any, c: Any) -> float:
    """Return the unsigned angle at `b` between rays b->a and b->c (degrees, 0-180).

    Computed from the difference of the two atan2 bearings; reflex values are
    folded back (360 - angle) so the result never exceeds 180.
    """
    pa, pb, pc = _as_xy(a), _as_xy(b), _as_xy(c)
    radians = math.atan2(pc[1] - pb[1], pc[0] - pb[0]) - math.atan2(pa[1] - pb[1], pa[0] - pb[0])
    angle = abs(float(np.degrees(radians)))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def knee_bend_angle(hip: Any, knee: Any, ankle: Any) -> float:
    """Degrees of bend away from a straight leg (0 = locked out)."""
    return 180.0 - interior_angle(hip, knee, ankle)


def euclidean_distance(a: Any, b: Any) -> float:
    return float(np.linalg.norm(_as_xy(a) - _as_xy(b)))


def torso_angle(hip: Any, shoulder: Any, *, reference_offset: float = 0.1) -> float:
    """Lean of the hip->shoulder line away from vertical.

    Image y grows downwards, so the synthetic reference sits at `hip.y - offset`.
    """
    hip_xy = _as_xy(hip)
    vertical = Point2D(float(hip_xy[0]), float(hip_xy[1]) - reference_offset)
    return interior_angle(vertical, hip_xy, shoulder)


__all__ = ["interior_angle", "knee_bend_angle", "euclidean_distance", "torso_angle", "round1"]
