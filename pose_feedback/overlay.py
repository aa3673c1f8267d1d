"""Skeleton overlay drawing."""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

import cv2
import numpy as np

from pose_feedback.config import OVERLAY_STYLE, Color, OverlayStyle
from pose_feedback.models import KeypointMap
from pose_feedback.skeleton import SKELETAL_CONNECTIONS

Point = Tuple[float, float]


class DrawingSurface(Protocol):
    """Minimal 2-D canvas the renderer draws onto."""

    def clear(self) -> None: ...

    def draw_image(self, image: np.ndarray) -> None: ...

    def draw_circle(self, center: Point, radius: int, color: Color) -> None: ...

    def draw_line(self, start: Point, end: Point, color: Color, thickness: int) -> None: ...

    def draw_text(self, text: str, origin: Point, color: Color, scale: float) -> None: ...


def _px(point: Point) -> Tuple[int, int]:
    return int(round(point[0])), int(round(point[1]))


class OpenCVSurface:
    """DrawingSurface backed by a BGR numpy canvas and OpenCV primitives."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface size must be positive; got {width}x{height}.")
        self.width = int(width)
        self.height = int(height)
        self.image = np.zeros((self.height, self.width, 3), dtype=np.uint8)

    def clear(self) -> None:
        self.image[:] = 0

    def draw_image(self, image: np.ndarray) -> None:
        if image.shape != self.image.shape:
            # Follow the frame size so keypoint pixel coordinates line up.
            self.height, self.width = image.shape[:2]
            self.image = np.array(image, dtype=np.uint8, copy=True)
            return
        np.copyto(self.image, image)

    def draw_circle(self, center: Point, radius: int, color: Color) -> None:
        cv2.circle(self.image, _px(center), int(radius), color, thickness=-1, lineType=cv2.LINE_AA)

    def draw_line(self, start: Point, end: Point, color: Color, thickness: int) -> None:
        cv2.line(self.image, _px(start), _px(end), color, int(thickness), lineType=cv2.LINE_AA)

    def draw_text(self, text: str, origin: Point, color: Color, scale: float) -> None:
        cv2.putText(self.image, text, _px(origin), cv2.FONT_HERSHEY_SIMPLEX, scale, color, 1, cv2.LINE_AA)


class SkeletonRenderer:
    """Draws the frame, skeletal connections, then keypoint markers and labels.

    Connections go first so labels are never covered by lines. An edge is drawn
    only when both of its keypoints are present.
    """

    def __init__(self, style: Optional[OverlayStyle] = None) -> None:
        self.style = style or OVERLAY_STYLE

    def render(self, surface: DrawingSurface, image: np.ndarray, keypoints: KeypointMap) -> None:
        style = self.style
        surface.clear()
        surface.draw_image(image)

        for first, second in SKELETAL_CONNECTIONS:
            start = keypoints.get(first)
            end = keypoints.get(second)
            if start is None or end is None:
                continue
            surface.draw_line(start.as_tuple(), end.as_tuple(), style.line_color, style.line_thickness)

        dx, dy = style.label_offset
        for name, keypoint in keypoints.items():
            surface.draw_circle(keypoint.as_tuple(), style.marker_radius, style.marker_color)
            surface.draw_text(name, (keypoint.x + dx, keypoint.y + dy), style.label_color, style.label_scale)


__all__ = ["DrawingSurface", "OpenCVSurface", "SkeletonRenderer"]
