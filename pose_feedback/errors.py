"""Exception hierarchy for the pose feedback pipeline."""

from __future__ import annotations


class PoseFeedbackError(Exception):
    """Base class for all pose feedback errors."""


class BoundaryFailure(PoseFeedbackError):
    """Raised when the model or frame source cannot be set up; the loop never runs."""


class EndOfStream(PoseFeedbackError):
    """Raised by finite frame sources (video files) once every frame was read."""


class PerFrameFailure(PoseFeedbackError):
    """A failure confined to one loop iteration; the loop keeps running."""


class ShapeMismatch(PerFrameFailure, ValueError):
    """Detector output does not match the expected 17x3 keypoint layout."""


class MalformedFrame(PerFrameFailure, ValueError):
    """The frame source returned something that is not a usable image."""


class PerFrameInferenceFailure(PerFrameFailure, RuntimeError):
    """The detector call raised for this frame."""


__all__ = [
    "PoseFeedbackError",
    "BoundaryFailure",
    "EndOfStream",
    "PerFrameFailure",
    "ShapeMismatch",
    "MalformedFrame",
    "PerFrameInferenceFailure",
]
