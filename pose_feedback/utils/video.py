"""Frame sources backed by OpenCV capture devices and video files."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple, Union

import cv2
import numpy as np

from pose_feedback.config import CAMERA_INDEX, FRAME_HEIGHT, FRAME_WIDTH, POSE_LOGGER as logger
from pose_feedback.errors import BoundaryFailure, EndOfStream, MalformedFrame


class FrameSource(Protocol):
    @property
    def frame_size(self) -> Tuple[int, int]: ...

    def open(self) -> None: ...

    def next_frame(self) -> np.ndarray: ...

    def close(self) -> None: ...


def validate_video_readable(video_path: Union[str, Path]) -> Dict[str, Union[bool, int, float, str]]:
    """Check if a video can be opened and read; raise ``BoundaryFailure`` otherwise.

    Example:
        >>> validate_video_readable("squat.mp4")  # doctest: +SKIP
        {'readable': True, 'width': 640, 'height': 480, 'fps': 30.0, 'total_frames': 300, 'codec': 'avc1'}
    """
    path = Path(video_path)
    if not path.exists():
        raise BoundaryFailure(f"Video not found: {path}")
    if not path.is_file():
        raise BoundaryFailure(f"Expected a video file, but got a directory: {path}")

    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise BoundaryFailure(
            f"Could not open video {path}. The file may be corrupted or use an unsupported codec."
        )

    try:
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = float(cap.get(cv2.CAP_PROP_FPS))
        total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        codec = _decode_fourcc(int(cap.get(cv2.CAP_PROP_FOURCC)))

        if width <= 0 or height <= 0:
            raise BoundaryFailure(
                f"Invalid metadata for {path}. The file may be corrupted or unreadable (w={width}, h={height})."
            )

        ret, frame = cap.read()
        if not ret or frame is None or frame.size == 0:
            raise BoundaryFailure(
                f"Failed to read the first frame from {path}. The file may be corrupted or use an unsupported codec."
            )

        return {
            "readable": True,
            "width": width,
            "height": height,
            "fps": fps,
            "total_frames": total_frames,
            "codec": codec,
        }
    finally:
        cap.release()


class VideoCaptureSource:
    """Frames from a camera index or a video file via ``cv2.VideoCapture``.

    Camera sources treat a failed read as a transient per-frame failure; file
    sources raise ``EndOfStream`` once the last frame was read.
    """

    def __init__(
        self,
        source: Union[int, str, Path] = CAMERA_INDEX,
        *,
        width: int = FRAME_WIDTH,
        height: int = FRAME_HEIGHT,
    ) -> None:
        self.source = source
        self.is_camera = isinstance(source, int)
        self._requested_size = (int(width), int(height))
        self._frame_size = self._requested_size
        self._cap: Optional[cv2.VideoCapture] = None
        self.frames_read = 0

    @property
    def frame_size(self) -> Tuple[int, int]:
        return self._frame_size

    def open(self) -> None:
        if self._cap is not None:
            return
        if not self.is_camera:
            validate_video_readable(self.source)
            cap = cv2.VideoCapture(str(self.source))
        else:
            cap = cv2.VideoCapture(int(self.source))
        if not cap.isOpened():
            cap.release()
            raise BoundaryFailure(
                f"Could not open frame source {self.source!r}. Check the camera is connected and not in use."
            )

        if self.is_camera:
            req_w, req_h = self._requested_size
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, req_w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, req_h)
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if width > 0 and height > 0:
            self._frame_size = (width, height)
        self._cap = cap
        logger.info("Opened frame source %r at %sx%s", self.source, *self._frame_size)

    def next_frame(self) -> np.ndarray:
        if self._cap is None:
            raise BoundaryFailure("Frame source is not open; call open() first.")
        ret, frame = self._cap.read()
        if not ret or frame is None:
            if not self.is_camera:
                raise EndOfStream(f"Reached end of {self.source} after {self.frames_read} frames.")
            raise MalformedFrame(f"Camera {self.source!r} returned no frame.")
        self.frames_read += 1
        return frame

    def close(self) -> None:
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Released frame source %r after %s frames.", self.source, self.frames_read)

    def __enter__(self) -> "VideoCaptureSource":
        self.open()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _decode_fourcc(cc: int) -> str:
    return "".join([chr((cc >> 8 * i) & 0xFF) for i in range(4)])


__all__ = ["FrameSource", "VideoCaptureSource", "validate_video_readable"]
