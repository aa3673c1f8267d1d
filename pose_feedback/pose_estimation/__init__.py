"""Pose estimation components."""

from .keypoints import extract_keypoints, select_person
from .frame_loop import BufferArena, FrameLoop, LoopState, RunLoop

__all__ = ["extract_keypoints", "select_person", "BufferArena", "FrameLoop", "LoopState", "RunLoop"]
