from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pytest

from pose_feedback.errors import BoundaryFailure, EndOfStream
from pose_feedback.models import FrameResult
from pose_feedback.pose_estimation.frame_loop import BufferArena, FrameLoop, LoopState, RunLoop
from pose_feedback.skeleton import ANGLE_JOINTS, KEYPOINT_NAMES

WIDTH, HEIGHT = 640, 480

# Normalised (x, y) positions of a T-pose: arms horizontal, hips under the shoulders.
T_POSE: dict[str, tuple[float, float]] = {
    "nose": (0.5, 0.15),
    "left_eye": (0.52, 0.13),
    "right_eye": (0.48, 0.13),
    "left_ear": (0.54, 0.14),
    "right_ear": (0.46, 0.14),
    "left_shoulder": (0.6, 0.3),
    "right_shoulder": (0.4, 0.3),
    "left_elbow": (0.75, 0.3),
    "right_elbow": (0.25, 0.3),
    "left_wrist": (0.9, 0.3),
    "right_wrist": (0.1, 0.3),
    "left_hip": (0.6, 0.6),
    "right_hip": (0.4, 0.6),
    "left_knee": (0.6, 0.8),
    "right_knee": (0.4, 0.8),
    "left_ankle": (0.6, 0.95),
    "right_ankle": (0.4, 0.95),
}


def _detector_output(pose: dict[str, tuple[float, float]], confidence: float = 1.0) -> np.ndarray:
    output = np.zeros((1, 1, 17, 3), dtype=np.float32)
    for idx, name in enumerate(KEYPOINT_NAMES):
        if name in pose:
            x, y = pose[name]
            output[0, 0, idx] = (y, x, confidence)
    return output


def _frame() -> np.ndarray:
    return np.zeros((HEIGHT, WIDTH, 3), dtype=np.uint8)


class FakeSource:
    def __init__(self, frames: Optional[list] = None, *, finite: bool = False, open_error: Exception | None = None):
        self.frames = list(frames) if frames is not None else None
        self.finite = finite
        self.open_error = open_error
        self.opened = False
        self.closed = False
        self.reads = 0

    @property
    def frame_size(self) -> tuple[int, int]:
        return WIDTH, HEIGHT

    def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def next_frame(self):
        self.reads += 1
        if self.frames is None:
            return _frame()
        if not self.frames:
            raise EndOfStream("no more frames")
        return self.frames.pop(0)

    def close(self) -> None:
        self.closed = True


class FakeDetector:
    def __init__(self, outputs: list, hook: Optional[Callable[[np.ndarray], None]] = None) -> None:
        self.outputs = list(outputs)
        self.hook = hook
        self.calls = 0
        self.batches: list[tuple] = []

    def predict(self, batch: np.ndarray):
        self.calls += 1
        self.batches.append((batch.shape, batch.dtype))
        if self.hook is not None:
            self.hook(batch)
        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(output, Exception):
            raise output
        return output

    def close(self) -> None:
        pass


class NullSurface:
    def __init__(self) -> None:
        self.renders = 0

    def clear(self) -> None:
        self.renders += 1

    def draw_image(self, image) -> None:
        pass

    def draw_circle(self, center, radius, color) -> None:
        pass

    def draw_line(self, start, end, color, thickness) -> None:
        pass

    def draw_text(self, text, origin, color, scale) -> None:
        pass


def _make_loop(source, detector, **kwargs) -> tuple[FrameLoop, RunLoop, list[FrameResult]]:
    published: list[FrameResult] = []
    scheduler = RunLoop()
    loop = FrameLoop(source, detector, NullSurface(), scheduler, on_result=published.append, **kwargs)
    return loop, scheduler, published


def test_end_to_end_t_pose_angles() -> None:
    loop, scheduler, published = _make_loop(FakeSource(), FakeDetector([_detector_output(T_POSE)]))
    loop.start()
    assert scheduler.run(max_ticks=1) == 1

    (result,) = published
    assert set(result.keypoints) == set(KEYPOINT_NAMES)
    assert result.keypoints["left_wrist"].x == pytest.approx(0.9 * WIDTH)
    assert result.keypoints["left_wrist"].y == pytest.approx(0.3 * HEIGHT)

    degrees = {joint: sample.degrees for joint, sample in result.angles.items()}
    assert degrees["left_elbow"] == 180
    assert degrees["right_elbow"] == 180
    assert degrees["left_shoulder"] == 90
    assert degrees["right_shoulder"] == 90
    assert degrees["left_hip"] == 180
    assert degrees["right_knee"] == 180
    assert loop.latest_result is result


def test_detector_receives_model_sized_batch() -> None:
    detector = FakeDetector([_detector_output(T_POSE)])
    loop, scheduler, _published = _make_loop(FakeSource(), detector, input_size=192)
    loop.start()
    scheduler.run(max_ticks=1)
    assert detector.batches == [((1, 192, 192, 3), np.dtype(np.int32))]


def test_iterations_never_overlap_and_release_buffers() -> None:
    arenas: list[BufferArena] = []

    def arena_factory() -> BufferArena:
        arena = BufferArena()
        arenas.append(arena)
        return arena

    observed: list[tuple[int, list[int]]] = []
    loop_ref: dict[str, FrameLoop] = {}

    def hook(_batch) -> None:
        loop = loop_ref["loop"]
        assert loop.busy
        # A tick requested mid-inference must not start a second iteration.
        assert loop.tick() is None
        observed.append((loop.outstanding_buffers, [arena.outstanding for arena in arenas[:-1]]))

    detector = FakeDetector([_detector_output(T_POSE)], hook=hook)
    loop, scheduler, published = _make_loop(FakeSource(), detector, arena_factory=arena_factory)
    loop_ref["loop"] = loop
    loop.start()
    scheduler.run(max_ticks=4)

    assert detector.calls == 4
    assert len(published) == 4
    assert [r.frame_index for r in published] == [0, 1, 2, 3]
    # Frame and input batch are live during inference; earlier iterations hold nothing.
    assert all(current == 2 and all(prev == 0 for prev in earlier) for current, earlier in observed)
    assert all(arena.outstanding == 0 for arena in arenas)
    assert loop.outstanding_buffers == 0
    assert scheduler.pending == 1


def test_shape_mismatch_is_skipped_and_loop_recovers() -> None:
    arenas: list[BufferArena] = []

    def arena_factory() -> BufferArena:
        arena = BufferArena()
        arenas.append(arena)
        return arena

    bad = np.zeros((1, 1, 16, 3), dtype=np.float32)
    detector = FakeDetector([bad, _detector_output(T_POSE)])
    loop, scheduler, published = _make_loop(FakeSource(), detector, arena_factory=arena_factory)
    loop.start()
    scheduler.run(max_ticks=2)

    assert loop.state is LoopState.RUNNING
    assert loop.stats.failed == 1
    assert loop.stats.processed == 1
    (result,) = published
    assert result.frame_index == 1
    assert result.angles["left_shoulder"].degrees == 90
    assert [arena.outstanding for arena in arenas] == [0, 0]


def test_detector_error_is_absorbed() -> None:
    detector = FakeDetector([RuntimeError("GPU hiccup"), _detector_output(T_POSE)])
    loop, scheduler, published = _make_loop(FakeSource(), detector)
    loop.start()
    scheduler.run(max_ticks=2)

    assert loop.state is LoopState.RUNNING
    assert loop.stats.failed == 1
    assert len(published) == 1
    assert scheduler.pending == 1


def test_malformed_frame_is_absorbed() -> None:
    source = FakeSource([None, _frame()], finite=True)
    detector = FakeDetector([_detector_output(T_POSE)])
    loop, scheduler, published = _make_loop(source, detector)
    loop.start()
    scheduler.run(max_ticks=2)

    assert loop.stats.failed == 1
    assert detector.calls == 1
    assert len(published) == 1


def test_missing_people_publishes_empty_result() -> None:
    detector = FakeDetector([np.zeros((1, 0, 17, 3), dtype=np.float32)])
    loop, scheduler, published = _make_loop(FakeSource(), detector)
    loop.start()
    scheduler.run(max_ticks=1)

    (result,) = published
    assert dict(result.keypoints) == {}
    assert list(result.angles) == list(ANGLE_JOINTS)
    assert all(sample.degrees is None for sample in result.angles.values())
    assert loop.stats.without_pose == 1


def test_low_confidence_keypoints_yield_absent_angles() -> None:
    pose = dict(T_POSE)
    output = _detector_output(pose)
    output[0, 0, KEYPOINT_NAMES.index("left_wrist"), 2] = 0.2
    loop, scheduler, published = _make_loop(FakeSource(), FakeDetector([output]))
    loop.start()
    scheduler.run(max_ticks=1)

    (result,) = published
    assert "left_wrist" not in result.keypoints
    assert result.angles["left_elbow"].degrees is None
    assert result.angles["right_elbow"].degrees == 180


def test_stop_is_terminal_and_closes_source() -> None:
    source = FakeSource()
    loop_ref: dict[str, FrameLoop] = {}

    def on_result(result: FrameResult) -> None:
        if result.frame_index == 1:
            loop_ref["loop"].stop()

    scheduler = RunLoop()
    loop = FrameLoop(source, FakeDetector([_detector_output(T_POSE)]), NullSurface(), scheduler, on_result=on_result)
    loop_ref["loop"] = loop
    loop.start()
    ticks = scheduler.run()

    assert ticks == 2
    assert loop.state is LoopState.STOPPED
    assert source.closed
    assert scheduler.pending == 0
    assert loop.tick() is None
    assert loop.latest_result is not None and loop.latest_result.frame_index == 1


def test_stop_during_inference_finishes_iteration_without_rescheduling() -> None:
    source = FakeSource()
    loop_ref: dict[str, FrameLoop] = {}

    def hook(_batch) -> None:
        loop_ref["loop"].stop()
        # The in-flight iteration still owns the source.
        assert not source.closed

    scheduler = RunLoop()
    loop = FrameLoop(source, FakeDetector([_detector_output(T_POSE)], hook=hook), NullSurface(), scheduler)
    loop_ref["loop"] = loop
    loop.start()
    scheduler.run()

    assert loop.state is LoopState.STOPPED
    assert loop.latest_result is not None
    assert source.closed
    assert scheduler.pending == 0


def test_end_of_stream_stops_loop() -> None:
    source = FakeSource([_frame(), _frame()], finite=True)
    loop, scheduler, published = _make_loop(source, FakeDetector([_detector_output(T_POSE)]))
    loop.start()
    scheduler.run()

    assert len(published) == 2
    assert loop.state is LoopState.STOPPED
    assert source.closed
    assert loop.stats.failed == 0


def test_start_surfaces_boundary_failure() -> None:
    source = FakeSource(open_error=BoundaryFailure("camera busy"))
    loop, scheduler, _published = _make_loop(source, FakeDetector([_detector_output(T_POSE)]))
    with pytest.raises(BoundaryFailure):
        loop.start()
    assert loop.state is LoopState.IDLE
    assert scheduler.pending == 0


def test_start_wraps_unexpected_open_errors() -> None:
    source = FakeSource(open_error=OSError("device vanished"))
    loop, _scheduler, _published = _make_loop(source, FakeDetector([_detector_output(T_POSE)]))
    with pytest.raises(BoundaryFailure, match="device vanished"):
        loop.start()
    assert loop.state is LoopState.IDLE


def test_start_twice_is_rejected() -> None:
    loop, _scheduler, _published = _make_loop(FakeSource(), FakeDetector([_detector_output(T_POSE)]))
    loop.start()
    with pytest.raises(RuntimeError):
        loop.start()


def test_failing_result_callback_does_not_stop_loop() -> None:
    def on_result(_result: FrameResult) -> None:
        raise ValueError("ui went away")

    scheduler = RunLoop()
    loop = FrameLoop(FakeSource(), FakeDetector([_detector_output(T_POSE)]), NullSurface(), scheduler, on_result=on_result)
    loop.start()
    scheduler.run(max_ticks=2)

    assert loop.state is LoopState.RUNNING
    assert loop.stats.processed == 2
    assert loop.latest_result is not None


def test_buffer_arena_releases_on_error() -> None:
    released: list[str] = []
    arena = BufferArena()
    with pytest.raises(RuntimeError):
        with arena:
            arena.track("input", release=released.append)
            arena.track("output", release=released.append)
            assert arena.outstanding == 2
            raise RuntimeError("boom")
    assert released == ["output", "input"]
    assert arena.outstanding == 0


def test_run_loop_calls_idle_hook_between_ticks() -> None:
    events: list[str] = []
    scheduler = RunLoop(on_idle=lambda: events.append("idle"))
    scheduler.schedule_next(lambda: events.append("tick"))
    scheduler.schedule_next(lambda: events.append("tick"))
    assert scheduler.run() == 2
    assert events == ["idle", "tick", "idle", "tick"]


def test_direct_ticks_keep_a_single_pending_tick() -> None:
    loop, scheduler, published = _make_loop(FakeSource(), FakeDetector([_detector_output(T_POSE)]))
    loop.start()
    loop.tick()
    loop.tick()
    assert scheduler.pending == 1

    assert scheduler.run(max_ticks=2) == 2
    assert scheduler.pending == 1
    assert [r.frame_index for r in published] == [0, 1, 2, 3]
