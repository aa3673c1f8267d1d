"""Terminal presentation of per-frame angle feedback."""

from __future__ import annotations

from typing import List, Mapping, Optional, Tuple

from rich.table import Table

from pose_feedback.models import AngleSample, FrameResult
from pose_feedback.skeleton import ANGLE_JOINTS

MISSING_VALUE = "N/A"


def format_joint_label(joint: str) -> str:
    """``left_elbow`` -> ``Left Elbow``."""
    return " ".join(part.capitalize() for part in joint.split("_"))


def format_angle_rows(angles: Optional[Mapping[str, AngleSample]]) -> List[Tuple[str, str]]:
    rows: List[Tuple[str, str]] = []
    for joint in ANGLE_JOINTS:
        sample = angles.get(joint) if angles else None
        value = f"{sample.degrees}°" if sample is not None and sample.degrees is not None else MISSING_VALUE
        rows.append((format_joint_label(joint), value))
    return rows


def build_angle_table(result: Optional[FrameResult]) -> Table:
    title = "Detected Angles" if result is None else f"Detected Angles (frame {result.frame_index})"
    table = Table(title=title)
    table.add_column("Joint")
    table.add_column("Angle", justify="right")
    for label, value in format_angle_rows(result.angles if result is not None else None):
        table.add_row(label, value)
    return table


__all__ = ["MISSING_VALUE", "format_joint_label", "format_angle_rows", "build_angle_table"]
