from __future__ import annotations

import os

ENV_PREFIX = "POSE_FEEDBACK_"


def get_env(name: str, default: str | None = None) -> str | None:
    """Resolve a ``POSE_FEEDBACK_``-prefixed configuration environment variable."""
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is not None:
        return value
    return default
