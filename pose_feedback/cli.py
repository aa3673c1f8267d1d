from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import cv2
import typer
from rich.console import Console
from rich.live import Live

from . import config as pose_config
from .config import POSE_LOGGER as logger
from .display import build_angle_table
from .errors import BoundaryFailure
from .models import FrameResult
from .overlay import OpenCVSurface, SkeletonRenderer
from .pose_estimation.detector import load_detector
from .pose_estimation.frame_loop import FrameLoop, RunLoop
from .utils.video import FrameSource, VideoCaptureSource

app = typer.Typer(help="Live pose detection with joint-angle feedback.")

WINDOW_NAME = "Pose Feedback"
QUIT_KEYS = {ord("q"), 27}

CONFIG_OPTION_HELP = "TOML or JSON settings file; POSE_FEEDBACK_* environment variables still win."


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _load_settings(config_path: Optional[Path]) -> Dict[str, Any]:
    if config_path is None:
        return pose_config.current_settings()
    try:
        settings = pose_config.load_config_from_file(config_path)
    except (FileNotFoundError, ValueError, TypeError, RuntimeError) as exc:
        _fail(f"Could not load config {config_path}: {exc}")
        return {}
    logger.info("Loaded settings from %s", config_path)
    return settings


def _run_pipeline(
    source: FrameSource,
    *,
    settings: Dict[str, Any],
    backend: Optional[str],
    max_frames: Optional[int],
    show_window: bool,
) -> None:
    try:
        detector = load_detector(backend or settings["POSE_BACKEND"], model_url=settings["MOVENET_MODEL_URL"])
    except BoundaryFailure as exc:
        source.close()
        _fail(f"Could not load pose model: {exc}")
        return

    width, height = source.frame_size
    surface = OpenCVSurface(width, height)
    console = Console()
    loop: Optional[FrameLoop] = None

    with Live(build_angle_table(None), console=console, refresh_per_second=10) as live:

        def on_result(result: FrameResult) -> None:
            live.update(build_angle_table(result))

        def on_idle() -> None:
            if loop is None:
                return
            if show_window and loop.latest_result is not None:
                cv2.imshow(WINDOW_NAME, surface.image)
                if cv2.waitKey(1) & 0xFF in QUIT_KEYS:
                    loop.stop()
            if max_frames is not None and loop.stats.processed + loop.stats.failed >= max_frames:
                loop.stop()

        scheduler = RunLoop(on_idle=on_idle)
        loop = FrameLoop(
            source,
            detector,
            surface,
            scheduler,
            renderer=SkeletonRenderer(settings["OVERLAY_STYLE"]),
            on_result=on_result,
            input_size=settings["MODEL_INPUT_SIZE"],
            confidence_threshold=settings["CONFIDENCE_THRESHOLD"],
        )
        try:
            loop.start()
        except BoundaryFailure as exc:
            detector.close()
            _fail(f"Could not open frame source: {exc}")
            return

        try:
            scheduler.run()
        except KeyboardInterrupt:
            logger.warning("Interrupt received; stopping after current frame.")
        finally:
            loop.stop()
            detector.close()
            if show_window:
                cv2.destroyAllWindows()

    stats = loop.stats
    typer.echo(f"Processed {stats.processed} frames ({stats.failed} failed, {stats.without_pose} without pose).")


@app.command()
def live(
    camera: Optional[int] = typer.Option(None, "--camera", "-c", help="OpenCV camera index [default: CAMERA_INDEX]."),
    width: Optional[int] = typer.Option(None, help="Requested capture width [default: FRAME_WIDTH]."),
    height: Optional[int] = typer.Option(None, help="Requested capture height [default: FRAME_HEIGHT]."),
    backend: Optional[str] = typer.Option(None, help="Detector backend: movenet or mediapipe."),
    max_frames: Optional[int] = typer.Option(None, "--max-frames", min=1, help="Stop after this many frames."),
    window: bool = typer.Option(True, "--window/--no-window", help="Show the overlay window (press q to quit)."),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """
    Run pose detection on the live camera feed.

    Example:
        pose-feedback live --camera 0 --backend movenet
    """
    settings = _load_settings(config_path)
    source = VideoCaptureSource(
        settings["CAMERA_INDEX"] if camera is None else camera,
        width=settings["FRAME_WIDTH"] if width is None else width,
        height=settings["FRAME_HEIGHT"] if height is None else height,
    )
    _run_pipeline(source, settings=settings, backend=backend, max_frames=max_frames, show_window=window)


@app.command()
def video(
    path: Path = typer.Argument(..., help="Video file to analyse."),
    backend: Optional[str] = typer.Option(None, help="Detector backend: movenet or mediapipe."),
    max_frames: Optional[int] = typer.Option(None, "--max-frames", min=1, help="Stop after this many frames."),
    window: bool = typer.Option(False, "--window/--no-window", help="Show the overlay window (press q to quit)."),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """
    Run pose detection over a recorded video until it ends.
    """
    settings = _load_settings(config_path)
    source = VideoCaptureSource(path)
    # Open before loading the model so a bad file fails fast; FrameLoop.start() reuses the open capture.
    try:
        source.open()
    except BoundaryFailure as exc:
        _fail(str(exc))
        return
    _run_pipeline(source, settings=settings, backend=backend, max_frames=max_frames, show_window=window)


@app.command("config")
def config_show(as_json: bool = typer.Option(False, "--json", help="Emit the configuration as JSON.")) -> None:
    """
    Show the effective configuration (thresholds, model, overlay style).
    """
    if as_json:
        typer.echo(json.dumps(pose_config.as_dict(), indent=2))
        return
    pose_config.print_config()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
