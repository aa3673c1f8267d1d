"""Metrics computed from a single frame's keypoint map."""

from .angles import compute_frame_angles, compute_joint_angle, round_half_away_from_zero

__all__ = ["compute_joint_angle", "compute_frame_angles", "round_half_away_from_zero"]
