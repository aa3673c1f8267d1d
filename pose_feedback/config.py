"""Configuration for live pose feedback.

Settings include:
- CONFIDENCE_THRESHOLD: Keypoints at or below this confidence are dropped.
- MODEL_INPUT_SIZE: Square input resolution expected by the detector.
- FRAME_WIDTH / FRAME_HEIGHT: Resolution requested from the camera.
- CAMERA_INDEX: OpenCV device index for the live camera.
- POSE_BACKEND: Detector backend ("movenet" or "mediapipe").
- MOVENET_MODEL_URL: TensorFlow Hub handle for MoveNet SinglePose Lightning.
- OVERLAY_STYLE: Marker/line/label styling for the skeleton overlay.

All values can be overridden via environment variables (``POSE_FEEDBACK_``
prefix) to ease experimentation.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

from pose_feedback.env import get_env

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback when tomllib missing
    tomllib = None  # type: ignore[assignment]


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("pose_feedback")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


POSE_LOGGER = _configure_logger()
logger = POSE_LOGGER

Color = Tuple[int, int, int]


def _get_env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_int(key: str, default: int) -> int:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_color(key: str, default: Color) -> Color:
    raw = get_env(key)
    if not raw:
        return default
    return _coerce_color(raw, default)


def _coerce_color(value: Any, default: Color) -> Color:
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    if isinstance(value, (list, tuple)) and len(value) == 3:
        try:
            return int(value[0]), int(value[1]), int(value[2])
        except (TypeError, ValueError):
            return default
    return default


def _load_toml_file(path: Path) -> Dict[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


@dataclass(frozen=True)
class OverlayStyle:
    """Drawing parameters for the skeleton overlay (colours are BGR)."""

    marker_radius: int = 5
    marker_color: Color = (0, 0, 255)
    line_color: Color = (0, 255, 0)
    line_thickness: int = 2
    label_color: Color = (255, 255, 255)
    label_offset: Tuple[int, int] = (10, 5)
    label_scale: float = 0.4


DEFAULT_MOVENET_MODEL_URL = "https://tfhub.dev/google/movenet/singlepose/lightning/4"

CONFIDENCE_THRESHOLD: float = _get_env_float("CONFIDENCE_THRESHOLD", 0.30)
MODEL_INPUT_SIZE: int = _get_env_int("MODEL_INPUT_SIZE", 192)
FRAME_WIDTH: int = _get_env_int("FRAME_WIDTH", 640)
FRAME_HEIGHT: int = _get_env_int("FRAME_HEIGHT", 480)
CAMERA_INDEX: int = _get_env_int("CAMERA_INDEX", 0)
POSE_BACKEND: str = (get_env("POSE_BACKEND") or "movenet").strip().lower()
MOVENET_MODEL_URL: str = get_env("MOVENET_MODEL_URL") or DEFAULT_MOVENET_MODEL_URL

OVERLAY_STYLE = OverlayStyle(
    marker_radius=_get_env_int("OVERLAY_MARKER_RADIUS", 5),
    marker_color=_get_env_color("OVERLAY_MARKER_COLOR", (0, 0, 255)),
    line_color=_get_env_color("OVERLAY_LINE_COLOR", (0, 255, 0)),
    line_thickness=_get_env_int("OVERLAY_LINE_THICKNESS", 2),
    label_color=_get_env_color("OVERLAY_LABEL_COLOR", (255, 255, 255)),
)

__all__ = [
    "POSE_LOGGER",
    "OverlayStyle",
    "CONFIDENCE_THRESHOLD",
    "MODEL_INPUT_SIZE",
    "FRAME_WIDTH",
    "FRAME_HEIGHT",
    "CAMERA_INDEX",
    "POSE_BACKEND",
    "MOVENET_MODEL_URL",
    "OVERLAY_STYLE",
    "load_config_from_file",
    "current_settings",
    "validate_config_values",
    "as_dict",
    "print_config",
]


def load_config_from_file(config_path: Path) -> Dict[str, Any]:
    """Load pose feedback config from TOML or JSON and apply env var overrides.

    Env vars take precedence over file values. Supports either a root-level
    mapping or a [pose_feedback] table/object in the config file.
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

    body = raw_config.get("pose_feedback", raw_config) if isinstance(raw_config, dict) else raw_config
    if not isinstance(body, dict):
        raise ValueError("Invalid config structure; expected a dict or a [pose_feedback] section.")

    overlay_cfg = body.get("overlay", {}) if isinstance(body.get("overlay", {}), dict) else {}
    base_style = OverlayStyle()

    return {
        "CONFIDENCE_THRESHOLD": _get_env_float(
            "CONFIDENCE_THRESHOLD", float(body.get("confidence_threshold", 0.30))
        ),
        "MODEL_INPUT_SIZE": _get_env_int("MODEL_INPUT_SIZE", int(body.get("model_input_size", 192))),
        "FRAME_WIDTH": _get_env_int("FRAME_WIDTH", int(body.get("frame_width", 640))),
        "FRAME_HEIGHT": _get_env_int("FRAME_HEIGHT", int(body.get("frame_height", 480))),
        "CAMERA_INDEX": _get_env_int("CAMERA_INDEX", int(body.get("camera_index", 0))),
        "POSE_BACKEND": (get_env("POSE_BACKEND") or str(body.get("pose_backend", "movenet"))).strip().lower(),
        "MOVENET_MODEL_URL": get_env("MOVENET_MODEL_URL")
        or str(body.get("movenet_model_url", DEFAULT_MOVENET_MODEL_URL)),
        "OVERLAY_STYLE": OverlayStyle(
            marker_radius=_get_env_int(
                "OVERLAY_MARKER_RADIUS", int(overlay_cfg.get("marker_radius", base_style.marker_radius))
            ),
            marker_color=_get_env_color(
                "OVERLAY_MARKER_COLOR", _coerce_color(overlay_cfg.get("marker_color"), base_style.marker_color)
            ),
            line_color=_get_env_color(
                "OVERLAY_LINE_COLOR", _coerce_color(overlay_cfg.get("line_color"), base_style.line_color)
            ),
            line_thickness=_get_env_int(
                "OVERLAY_LINE_THICKNESS", int(overlay_cfg.get("line_thickness", base_style.line_thickness))
            ),
            label_color=_get_env_color(
                "OVERLAY_LABEL_COLOR", _coerce_color(overlay_cfg.get("label_color"), base_style.label_color)
            ),
        ),
    }


def current_settings() -> Dict[str, Any]:
    """Module-level settings in the same shape ``load_config_from_file`` returns."""
    return {
        "CONFIDENCE_THRESHOLD": CONFIDENCE_THRESHOLD,
        "MODEL_INPUT_SIZE": MODEL_INPUT_SIZE,
        "FRAME_WIDTH": FRAME_WIDTH,
        "FRAME_HEIGHT": FRAME_HEIGHT,
        "CAMERA_INDEX": CAMERA_INDEX,
        "POSE_BACKEND": POSE_BACKEND,
        "MOVENET_MODEL_URL": MOVENET_MODEL_URL,
        "OVERLAY_STYLE": OVERLAY_STYLE,
    }


def _check_threshold() -> None:
    if not 0.0 <= CONFIDENCE_THRESHOLD <= 1.0:
        warnings.warn(
            f"CONFIDENCE_THRESHOLD={CONFIDENCE_THRESHOLD} is outside [0,1]; please correct the environment or config.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("CONFIDENCE_THRESHOLD is outside [0,1]: %s", CONFIDENCE_THRESHOLD)


def _check_dimensions() -> None:
    for name, value in (
        ("MODEL_INPUT_SIZE", MODEL_INPUT_SIZE),
        ("FRAME_WIDTH", FRAME_WIDTH),
        ("FRAME_HEIGHT", FRAME_HEIGHT),
    ):
        if value <= 0:
            warnings.warn(
                f"{name}={value} is non-positive; expected a pixel size.",
                RuntimeWarning,
                stacklevel=2,
            )
            logger.warning("%s is non-positive: %s", name, value)
    if MODEL_INPUT_SIZE % 32 != 0:
        # MoveNet Lightning is trained at 192; Thunder at 256.
        warnings.warn(
            f"MODEL_INPUT_SIZE={MODEL_INPUT_SIZE} is not a multiple of 32; MoveNet expects 192 or 256.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("MODEL_INPUT_SIZE is not a multiple of 32: %s", MODEL_INPUT_SIZE)


def _check_backend() -> None:
    if POSE_BACKEND not in {"movenet", "mediapipe"}:
        warnings.warn(
            f"POSE_BACKEND={POSE_BACKEND!r} is unknown; expected 'movenet' or 'mediapipe'.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("Unknown POSE_BACKEND: %s", POSE_BACKEND)


def validate_config_values() -> None:
    """Validate current config values and emit warnings for suspicious settings."""
    _check_threshold()
    _check_dimensions()
    _check_backend()


def as_dict() -> Dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    return {
        "confidence_threshold": CONFIDENCE_THRESHOLD,
        "model_input_size": MODEL_INPUT_SIZE,
        "frame_size": [FRAME_WIDTH, FRAME_HEIGHT],
        "camera_index": CAMERA_INDEX,
        "pose_backend": POSE_BACKEND,
        "movenet_model_url": MOVENET_MODEL_URL,
        "overlay": {
            "marker_radius": OVERLAY_STYLE.marker_radius,
            "marker_color": list(OVERLAY_STYLE.marker_color),
            "line_color": list(OVERLAY_STYLE.line_color),
            "line_thickness": OVERLAY_STYLE.line_thickness,
            "label_color": list(OVERLAY_STYLE.label_color),
        },
    }


def print_config() -> None:
    """Print configuration values for debugging purposes."""
    print("Pose feedback configuration:")
    print(f"  Confidence threshold: {CONFIDENCE_THRESHOLD}")
    print(f"  Model input size: {MODEL_INPUT_SIZE}")
    print(f"  Frame size: {FRAME_WIDTH}x{FRAME_HEIGHT}")
    print(f"  Camera index: {CAMERA_INDEX}")
    print(f"  Pose backend: {POSE_BACKEND}")
    print(f"  MoveNet model: {MOVENET_MODEL_URL}")
    print(
        "  Overlay (radius, marker, line, thickness, label): "
        f"{OVERLAY_STYLE.marker_radius}, {OVERLAY_STYLE.marker_color}, {OVERLAY_STYLE.line_color}, "
        f"{OVERLAY_STYLE.line_thickness}, {OVERLAY_STYLE.label_color}"
    )


# Run validation at import to surface misconfigurations early.
validate_config_values()
