"""Joint angle computations for per-frame biomechanical feedback."""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

import numpy as np

from pose_feedback.models import AngleSample, Keypoint
from pose_feedback.skeleton import ANGLE_DEFINITIONS


def _coerce_point(point: Any) -> Optional[np.ndarray]:
    if point is None:
        return None
    if isinstance(point, Keypoint):
        coords = np.array([point.x, point.y], dtype=float)
    else:
        arr = np.asarray(point, dtype=float).reshape(-1)
        if arr.size < 2:
            return None
        coords = arr[:2]
    if not np.all(np.isfinite(coords)):
        return None
    return coords


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest integer, sending exact halves away from zero (44.5 -> 45)."""
    magnitude = math.floor(abs(value) + 0.5)
    return int(math.copysign(magnitude, value))


def compute_joint_angle(p1: Any, p2: Any, p3: Any) -> Optional[int]:
    """Compute the interior angle at p2 formed by p1-p2-p3, in whole degrees.

    Points may be ``Keypoint`` instances or ``(x, y)`` sequences. Returns None
    when any point is missing or when any two of the points coincide.
    """
    point1 = _coerce_point(p1)
    vertex = _coerce_point(p2)
    point3 = _coerce_point(p3)
    if point1 is None or vertex is None or point3 is None:
        return None

    vector1 = point1 - vertex
    vector2 = point3 - vertex
    norm1 = float(np.linalg.norm(vector1))
    norm2 = float(np.linalg.norm(vector2))
    if norm1 == 0.0 or norm2 == 0.0:
        return None
    if np.array_equal(point1, point3):
        return None

    cosine = float(np.dot(vector1, vector2) / (norm1 * norm2))
    cosine = float(np.clip(cosine, -1.0, 1.0))
    return round_half_away_from_zero(math.degrees(math.acos(cosine)))


def compute_frame_angles(keypoints: Mapping[str, Keypoint]) -> Dict[str, AngleSample]:
    """Compute every configured joint angle for one frame.

    The result always holds all joints from ``ANGLE_DEFINITIONS``; joints that
    cannot be determined carry ``degrees=None``.
    """
    results: Dict[str, AngleSample] = {}
    for joint, (first, vertex, second) in ANGLE_DEFINITIONS.items():
        degrees = compute_joint_angle(keypoints.get(first), keypoints.get(vertex), keypoints.get(second))
        results[joint] = AngleSample(joint=joint, degrees=degrees)
    return results


__all__ = ["compute_joint_angle", "compute_frame_angles", "round_half_away_from_zero"]
