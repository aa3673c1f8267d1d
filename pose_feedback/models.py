from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "Keypoint",
    "KeypointMap",
    "AngleSample",
    "FrameResult",
    "freeze_keypoints",
]


@dataclass(frozen=True)
class Keypoint:
    """A named landmark in frame pixel coordinates."""

    name: str
    x: float
    y: float
    confidence: float

    def as_tuple(self) -> tuple[float, float]:
        return self.x, self.y


KeypointMap = Mapping[str, Keypoint]


def freeze_keypoints(keypoints: Dict[str, Keypoint]) -> KeypointMap:
    """Wrap a freshly built keypoint dict in a read-only view."""
    return MappingProxyType(dict(keypoints))


@dataclass(frozen=True)
class AngleSample:
    """Interior angle at a joint; ``degrees`` is None when it cannot be determined."""

    joint: str
    degrees: Optional[int]

    @property
    def valid(self) -> bool:
        return self.degrees is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"joint": self.joint, "degrees": self.degrees, "valid": self.valid}


@dataclass(frozen=True)
class FrameResult:
    """Everything published for one processed frame."""

    frame_index: int
    keypoints: KeypointMap = field(default_factory=lambda: MappingProxyType({}))
    angles: Mapping[str, AngleSample] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def has_pose(self) -> bool:
        return bool(self.keypoints)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_index": self.frame_index,
            "keypoints": {
                name: {"x": kp.x, "y": kp.y, "confidence": kp.confidence} for name, kp in self.keypoints.items()
            },
            "angles": {joint: sample.degrees for joint, sample in self.angles.items()},
        }
