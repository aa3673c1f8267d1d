"""Per-frame acquire -> infer -> extract -> render -> publish loop.

The loop is driven by a cooperative ``Scheduler``: each completed iteration
schedules the next one, so at most one detector call is ever in flight and
frame N is fully published before frame N+1 starts. Everything an iteration
allocates is tracked in a ``BufferArena`` and released on every exit path.
"""

from __future__ import annotations

from collections import deque
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, Optional, Protocol

from pose_feedback.config import CONFIDENCE_THRESHOLD, MODEL_INPUT_SIZE, POSE_LOGGER as logger
from pose_feedback.errors import (
    BoundaryFailure,
    EndOfStream,
    PerFrameFailure,
    PerFrameInferenceFailure,
)
from pose_feedback.metrics.angles import compute_frame_angles
from pose_feedback.models import FrameResult, freeze_keypoints
from pose_feedback.overlay import DrawingSurface, SkeletonRenderer
from pose_feedback.pose_estimation.detector import Detector, preprocess_frame
from pose_feedback.pose_estimation.keypoints import extract_keypoints, select_person
from pose_feedback.utils.video import FrameSource


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class Scheduler(Protocol):
    def schedule_next(self, callback: Callable[[], Any]) -> None: ...


class RunLoop:
    """Single-threaded scheduler that runs queued callbacks one after another.

    ``on_idle`` runs between callbacks (display refresh, key polling); it may
    stop the frame loop, which then schedules nothing further.
    """

    def __init__(self, on_idle: Optional[Callable[[], None]] = None) -> None:
        self._pending: Deque[Callable[[], Any]] = deque()
        self._on_idle = on_idle

    def schedule_next(self, callback: Callable[[], Any]) -> None:
        self._pending.append(callback)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run(self, max_ticks: Optional[int] = None) -> int:
        """Drain scheduled callbacks; return how many ran."""
        ticks = 0
        while self._pending:
            if max_ticks is not None and ticks >= max_ticks:
                break
            if self._on_idle is not None:
                self._on_idle()
            callback = self._pending.popleft()
            callback()
            ticks += 1
        return ticks


class BufferArena:
    """Tracks per-iteration buffers and releases all of them when the scope exits."""

    def __init__(self) -> None:
        self._stack = ExitStack()
        self._buffers: Dict[int, Any] = {}
        self._next_token = 0

    @property
    def outstanding(self) -> int:
        return len(self._buffers)

    def track(self, buffer: Any, release: Optional[Callable[[Any], None]] = None) -> Any:
        token = self._next_token
        self._next_token += 1
        self._buffers[token] = buffer

        def _release() -> None:
            try:
                if release is not None:
                    release(buffer)
            finally:
                del self._buffers[token]

        self._stack.callback(_release)
        return buffer

    def close(self) -> None:
        self._stack.close()

    def __enter__(self) -> "BufferArena":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


@dataclass
class LoopStats:
    processed: int = 0
    failed: int = 0
    without_pose: int = 0


class FrameLoop:
    """Drives pose detection over a frame source and publishes a ``FrameResult`` per frame.

    States: IDLE -> RUNNING -> STOPPED. While RUNNING, ``busy`` marks an
    iteration in flight. Per-frame failures are logged and skipped; only
    ``stop()``, end of a finite stream, or a setup failure in ``start()`` end
    the loop.
    """

    def __init__(
        self,
        source: FrameSource,
        detector: Detector,
        surface: DrawingSurface,
        scheduler: Scheduler,
        *,
        renderer: Optional[SkeletonRenderer] = None,
        on_result: Optional[Callable[[FrameResult], None]] = None,
        input_size: int = MODEL_INPUT_SIZE,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        arena_factory: Callable[[], BufferArena] = BufferArena,
    ) -> None:
        self._source = source
        self._detector = detector
        self._surface = surface
        self._scheduler = scheduler
        self._renderer = renderer or SkeletonRenderer()
        self._on_result = on_result
        self._input_size = int(input_size)
        self._threshold = float(confidence_threshold)
        self._arena_factory = arena_factory

        self._state = LoopState.IDLE
        self._busy = False
        self._tick_scheduled = False
        self._arena: Optional[BufferArena] = None
        self._source_open = False
        self._frame_counter = 0
        self._latest: Optional[FrameResult] = None
        self.stats = LoopStats()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def latest_result(self) -> Optional[FrameResult]:
        return self._latest

    @property
    def outstanding_buffers(self) -> int:
        return self._arena.outstanding if self._arena is not None else 0

    def start(self) -> None:
        if self._state is not LoopState.IDLE:
            raise RuntimeError(f"FrameLoop can only start from idle; current state is {self._state.value}.")
        try:
            self._source.open()
        except BoundaryFailure:
            logger.error("Frame source unavailable; loop not started.")
            raise
        except Exception as exc:
            raise BoundaryFailure(f"Frame source failed to open: {exc}") from exc
        self._source_open = True
        self._state = LoopState.RUNNING
        logger.info("Frame loop started.")
        self._schedule_tick()

    def stop(self) -> None:
        if self._state is LoopState.STOPPED:
            return
        self._state = LoopState.STOPPED
        logger.info(
            "Frame loop stopped after %s frames (%s failed, %s without pose).",
            self.stats.processed,
            self.stats.failed,
            self.stats.without_pose,
        )
        if not self._busy:
            self._close_source()

    def tick(self) -> Optional[FrameResult]:
        """Run one iteration; a no-op unless running and idle."""
        if self._state is not LoopState.RUNNING:
            return None
        if self._busy:
            logger.debug("Tick ignored; previous iteration still in flight.")
            return None

        self._busy = True
        frame_index = self._frame_counter
        self._frame_counter += 1
        result: Optional[FrameResult] = None
        try:
            result = self._run_iteration(frame_index)
            self._publish(result)
        except EndOfStream as exc:
            logger.info("%s", exc)
            self.stop()
        except PerFrameFailure as exc:
            self.stats.failed += 1
            logger.warning("Frame %s skipped: %s", frame_index, exc)
        except Exception:
            self.stats.failed += 1
            logger.exception("Unexpected error while processing frame %s; skipping.", frame_index)
        finally:
            self._busy = False
            if self._state is LoopState.RUNNING:
                self._schedule_tick()
            else:
                self._close_source()

        return result

    def _run_iteration(self, frame_index: int) -> FrameResult:
        arena = self._arena_factory()
        self._arena = arena
        try:
            with arena:
                frame = arena.track(self._source.next_frame())
                batch = arena.track(preprocess_frame(frame, self._input_size))
                try:
                    output = self._detector.predict(batch)
                except PerFrameFailure:
                    raise
                except Exception as exc:
                    raise PerFrameInferenceFailure(f"Detector failed on frame {frame_index}: {exc}") from exc
                output = arena.track(output)

                rows = select_person(output)
                if rows is None:
                    keypoints = freeze_keypoints({})
                else:
                    height, width = frame.shape[:2]
                    keypoints = extract_keypoints(rows, width, height, threshold=self._threshold)

                self._renderer.render(self._surface, frame, keypoints)
                angles = compute_frame_angles(keypoints)
        finally:
            self._arena = None

        self.stats.processed += 1
        if not keypoints:
            self.stats.without_pose += 1
            logger.debug("No pose detected in frame %s.", frame_index)
        return FrameResult(frame_index=frame_index, keypoints=keypoints, angles=MappingProxyType(angles))

    def _schedule_tick(self) -> None:
        # At most one tick is queued, however often tick() is called directly.
        if self._tick_scheduled:
            return
        self._tick_scheduled = True
        self._scheduler.schedule_next(self._scheduled_tick)

    def _scheduled_tick(self) -> None:
        self._tick_scheduled = False
        self.tick()

    def _publish(self, result: FrameResult) -> None:
        self._latest = result
        if self._on_result is None:
            return
        try:
            self._on_result(result)
        except Exception:
            logger.exception("Result callback failed for frame %s.", result.frame_index)

    def _close_source(self) -> None:
        if not self._source_open:
            return
        self._source_open = False
        try:
            self._source.close()
        except Exception:
            logger.exception("Failed to close frame source.")


__all__ = ["LoopState", "Scheduler", "RunLoop", "BufferArena", "LoopStats", "FrameLoop"]
