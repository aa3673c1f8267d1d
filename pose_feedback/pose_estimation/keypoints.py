"""Decode raw detector output into named, confidence-filtered keypoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from pose_feedback.config import CONFIDENCE_THRESHOLD, POSE_LOGGER as logger
from pose_feedback.errors import ShapeMismatch
from pose_feedback.models import Keypoint, KeypointMap, freeze_keypoints
from pose_feedback.skeleton import KEYPOINT_NAMES

NUM_KEYPOINTS = len(KEYPOINT_NAMES)


def select_person(output: Any) -> Optional[np.ndarray]:
    """Return the first detected person's ``(17, 3)`` rows from a ``[1, N, 17, 3]`` output.

    Returns None when the detector reports nobody; extra people are ignored.
    """
    try:
        arr = np.asarray(output, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ShapeMismatch(f"Detector output is not numeric: {exc}") from exc

    if arr.ndim != 4 or arr.shape[0] != 1 or arr.shape[2:] != (NUM_KEYPOINTS, 3):
        raise ShapeMismatch(f"Expected detector output of shape [1, N, {NUM_KEYPOINTS}, 3]; got {list(arr.shape)}.")

    people = int(arr.shape[1])
    if people == 0:
        return None
    if people > 1:
        logger.debug("Detector reported %s people; using the first.", people)
    return arr[0, 0]


def extract_keypoints(
    rows: Any,
    frame_width: float,
    frame_height: float,
    *,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> KeypointMap:
    """Map detector rows ``(y_norm, x_norm, confidence)`` to pixel keypoints.

    Rows are matched to ``KEYPOINT_NAMES`` by position. A keypoint is kept only
    when its confidence is strictly above ``threshold``.
    """
    try:
        arr = np.asarray(rows, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ShapeMismatch(f"Keypoint rows are not numeric: {exc}") from exc
    if arr.shape != (NUM_KEYPOINTS, 3):
        raise ShapeMismatch(f"Expected {NUM_KEYPOINTS} rows of (y, x, confidence); got shape {list(arr.shape)}.")

    keypoints: Dict[str, Keypoint] = {}
    for name, (y_norm, x_norm, confidence) in zip(KEYPOINT_NAMES, arr):
        if not confidence > threshold:
            continue
        # Detector rows are (y, x); keep that order when scaling.
        keypoints[name] = Keypoint(
            name=name,
            x=float(x_norm) * float(frame_width),
            y=float(y_norm) * float(frame_height),
            confidence=float(confidence),
        )
    return freeze_keypoints(keypoints)


__all__ = ["NUM_KEYPOINTS", "select_person", "extract_keypoints"]
