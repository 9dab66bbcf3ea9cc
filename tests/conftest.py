from __future__ import annotations

from typing import Callable, Optional

import pytest

from bikefit.fitting import config as fit_config

# Side-on rider, right side facing the camera. Image y grows downwards.
BASE_JOINTS: dict[int, tuple[float, float]] = {
    11: (0.62, 0.30),  # left shoulder
    12: (0.60, 0.30),  # right shoulder
    14: (0.60, 0.40),  # right elbow
    16: (0.70, 0.40),  # right wrist
    24: (0.50, 0.40),  # right hip
    26: (0.50, 0.60),  # right knee
    28: (0.50, 0.80),  # right ankle
}


@pytest.fixture
def make_landmarks() -> Callable[..., list[Optional[dict]]]:
    """Build a 33-entry landmark array; `overrides` maps index -> (x, y) or None."""

    def _build(
        overrides: Optional[dict[int, Optional[tuple[float, float]]]] = None,
        *,
        count: int = 33,
        visibility: float = 0.99,
    ) -> list[Optional[dict]]:
        joints = dict(BASE_JOINTS)
        joints.update(overrides or {})
        landmarks: list[Optional[dict]] = []
        for idx in range(count):
            if idx in joints:
                point = joints[idx]
                landmarks.append(
                    None if point is None else {"x": point[0], "y": point[1], "z": 0.0, "visibility": visibility}
                )
            else:
                landmarks.append({"x": 0.5, "y": 0.5, "z": 0.0, "visibility": visibility})
        return landmarks

    return _build


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    for name in (
        "CONFIG",
        "LOG_LEVEL",
        "PX_TO_CM",
        "DEFAULT_IMAGE_WIDTH",
        "KOPS_TOLERANCE_CM",
        "SIX_OCLOCK_KNEE_BAND",
        "TORSO_BAND",
        "ELBOW_BAND",
    ):
        monkeypatch.delenv(f"BIKEFIT_{name}", raising=False)
    fit_config.get_config.cache_clear()
    yield
    fit_config.get_config.cache_clear()
