"""Utility helpers for frame acquisition."""

from .video import FrameSource, VideoCaptureSource, validate_video_readable

__all__ = ["FrameSource", "VideoCaptureSource", "validate_video_readable"]
