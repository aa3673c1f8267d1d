"""Keypoint detector backends.

Two backends produce the same ``[1, N, 17, 3]`` output of
``(y_norm, x_norm, confidence)`` rows:

- **movenet** (default): MoveNet SinglePose Lightning from TensorFlow Hub.
- **mediapipe**: MediaPipe Pose, with its 33 landmarks reduced to the 17
  COCO keypoints MoveNet reports.

Heavy imports (TensorFlow, MediaPipe) happen inside the loaders so the rest of
the package can be used without them.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol

import cv2
import numpy as np

from pose_feedback.config import MODEL_INPUT_SIZE, MOVENET_MODEL_URL, POSE_BACKEND, POSE_LOGGER as logger
from pose_feedback.errors import BoundaryFailure, MalformedFrame
from pose_feedback.skeleton import KEYPOINT_NAMES

# MediaPipe PoseLandmark indices for each COCO keypoint, in KEYPOINT_NAMES order.
MEDIAPIPE_TO_COCO: Dict[str, int] = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_ear": 7,
    "right_ear": 8,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}


class Detector(Protocol):
    def predict(self, batch: np.ndarray) -> np.ndarray: ...

    def close(self) -> None: ...


def preprocess_frame(frame: Any, size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """Turn a BGR frame into a ``[1, size, size, 3]`` int32 RGB batch."""
    if frame is None:
        raise MalformedFrame("Invalid frame: received None. Possible camera or decode issue.")
    if not isinstance(frame, np.ndarray):
        raise MalformedFrame("Invalid frame type; expected numpy.ndarray from the frame source.")
    if frame.ndim != 3 or frame.shape[2] != 3 or frame.size == 0:
        raise MalformedFrame(f"Invalid frame shape {frame.shape}; expected a non-empty BGR image.")

    try:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        resized = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_LINEAR)
    except cv2.error as exc:
        raise MalformedFrame(f"Failed to convert frame for inference: {exc}") from exc
    return np.expand_dims(resized, axis=0).astype(np.int32)


class MoveNetDetector:
    """MoveNet SinglePose Lightning served from TensorFlow Hub."""

    def __init__(self, model_url: str = MOVENET_MODEL_URL) -> None:
        try:
            import tensorflow as tf
            import tensorflow_hub as hub
        except ModuleNotFoundError as exc:
            raise BoundaryFailure(
                "MoveNet backend requires `tensorflow` and `tensorflow-hub` (pip install 'pose-feedback[movenet]')."
            ) from exc

        logger.info("Loading MoveNet model from %s", model_url)
        try:
            model = hub.load(model_url)
            self._movenet = model.signatures["serving_default"]
        except Exception as exc:
            raise BoundaryFailure(f"Failed to load MoveNet model from {model_url}: {exc}") from exc
        self._tf = tf
        self._model = model
        logger.info("MoveNet model loaded.")

    def predict(self, batch: np.ndarray) -> np.ndarray:
        outputs = self._movenet(self._tf.constant(batch, dtype=self._tf.int32))
        return outputs["output_0"].numpy()

    def close(self) -> None:
        self._movenet = None
        self._model = None


class MediaPipeDetector:
    """MediaPipe Pose reduced to the 17 COCO keypoints."""

    def __init__(self, model_complexity: int = 1) -> None:
        try:
            import mediapipe as mp
        except ModuleNotFoundError as exc:
            raise BoundaryFailure(
                "MediaPipe backend requires `mediapipe` (pip install 'pose-feedback[mediapipe]')."
            ) from exc

        solutions = getattr(mp, "solutions", None)
        if solutions is None or getattr(solutions, "pose", None) is None:
            raise BoundaryFailure("Installed mediapipe wheel does not ship mediapipe.solutions.pose.")
        try:
            self._pose = solutions.pose.Pose(static_image_mode=False, model_complexity=model_complexity)
        except Exception as exc:
            raise BoundaryFailure(f"Failed to initialise MediaPipe Pose: {exc}") from exc
        self._indices = [MEDIAPIPE_TO_COCO[name] for name in KEYPOINT_NAMES]
        logger.info("MediaPipe Pose initialised (model_complexity=%s).", model_complexity)

    def predict(self, batch: np.ndarray) -> np.ndarray:
        image = np.ascontiguousarray(np.asarray(batch)[0], dtype=np.uint8)
        results = self._pose.process(image)
        if results.pose_landmarks is None:
            return np.zeros((1, 0, len(KEYPOINT_NAMES), 3), dtype=np.float32)
        landmarks = results.pose_landmarks.landmark
        rows = [(landmarks[idx].y, landmarks[idx].x, landmarks[idx].visibility) for idx in self._indices]
        return np.asarray(rows, dtype=np.float32).reshape(1, 1, len(KEYPOINT_NAMES), 3)

    def close(self) -> None:
        if self._pose is not None:
            self._pose.close()
            self._pose = None
            logger.info("MediaPipe Pose resources released.")


def load_detector(backend: str | None = None, *, model_url: str | None = None) -> Detector:
    """Build the configured detector; raises ``BoundaryFailure`` if it cannot be loaded."""
    name = (backend or POSE_BACKEND).strip().lower()
    if name == "movenet":
        return MoveNetDetector(model_url or MOVENET_MODEL_URL)
    if name == "mediapipe":
        return MediaPipeDetector()
    raise BoundaryFailure(f"Unknown pose backend: {name!r}. Use 'movenet' or 'mediapipe'.")


__all__ = [
    "Detector",
    "MoveNetDetector",
    "MediaPipeDetector",
    "MEDIAPIPE_TO_COCO",
    "preprocess_frame",
    "load_detector",
]
