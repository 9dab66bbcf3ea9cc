from __future__ import annotations

import os

PRIMARY_PREFIX = "BIKEFIT_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    Looks up `BIKEFIT_<name>` and returns `default` when it is not set.
    """
    value = os.getenv(f"{PRIMARY_PREFIX}{name}")
    if value is not None:
        return value
    return default
