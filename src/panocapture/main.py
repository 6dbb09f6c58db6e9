"""Command-line entry point: capture from a camera or stitch frame files."""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger
from PyQt6.QtCore import QCoreApplication

from .capture.scheduler import CaptureScheduler
from .config import PROJECTION_MODES, CaptureConfig, StitchConfig
from .errors import StitchError
from .io.export import default_export_name, write_json, write_png
from .io.frame_source import VideoDeviceFrameSource, load_frames
from .logging import configure_logging
from .models.panorama import Panorama
from .models.progress import CaptureProgress, CountdownTick, ProgressEvent
from .stitching.engine import StitchEngine
from .stitching.fallback import FallbackStitcher
from .stitching.features import FeatureStitcher
from .workers.task_runner import StitchTask, TaskRunner


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="panocapture", description=__doc__)
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", type=Path, help="also write DEBUG logs to this file")
    commands = parser.add_subparsers(dest="command", required=True)

    def add_output_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("-o", "--output", type=Path, help="PNG file to write")
        sub.add_argument("--json", type=Path, help="also write a JSON bundle with the embedded PNG")
        sub.add_argument("--no-features", action="store_true", help="skip feature-based stitching")
        sub.add_argument("--projection", choices=PROJECTION_MODES, default="auto")
        sub.add_argument("--seed", type=int, default=0, help="RANSAC sampling seed")

    stitch = commands.add_parser("stitch", help="stitch existing frame images in the given order")
    stitch.add_argument("frames", nargs="+", type=Path)
    add_output_options(stitch)

    capture = commands.add_parser("capture", help="capture a 360 degree pan from a camera, then stitch")
    capture.add_argument("--device", default="0")
    capture.add_argument("--duration-ms", type=float, default=12000.0)
    capture.add_argument("--frames", dest="frame_count", type=int, default=18)
    capture.add_argument("--countdown", type=int, default=3)
    add_output_options(capture)
    return parser


def _log_capture_event(event) -> None:
    if isinstance(event, CountdownTick):
        logger.info("Starting in {}...", event.remaining)
    elif isinstance(event, CaptureProgress):
        logger.info("Capture {:.0f}% ({} frames)", event.percent, event.captured)


def _log_progress(event: ProgressEvent) -> None:
    logger.info("[{:>3.0f}%] {}: {}", event.percent, event.stage.value, event.message)


def _stitch_in_background(engine: StitchEngine, frames) -> Panorama:
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    task = StitchTask(engine, frames)
    task.setAutoDelete(False)
    outcome: dict = {}

    def on_finished(panorama) -> None:
        outcome["panorama"] = panorama
        app.quit()

    def on_failed(message: str) -> None:
        logger.debug("Stitch task failed:\n{}", message)
        app.quit()

    task.signals.progress.connect(_log_progress)
    task.signals.finished.connect(on_finished)
    task.signals.failed.connect(on_failed)
    runner = TaskRunner(max_threads=1)
    runner.submit(task)
    app.exec()
    runner.wait()

    if "panorama" not in outcome:
        raise task.error if task.error is not None else RuntimeError("Stitch task ended without a result")
    return outcome["panorama"]


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the ``panocapture`` command line."""
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    config = StitchConfig(projection=args.projection, ransac_seed=args.seed)
    stitchers = [FallbackStitcher()] if args.no_features else [FeatureStitcher(config), FallbackStitcher()]
    engine = StitchEngine(stitchers, config=config)

    try:
        if args.command == "stitch":
            frames = load_frames(args.frames)
        else:
            device = int(args.device) if args.device.isdigit() else args.device
            scheduler = CaptureScheduler(
                CaptureConfig(
                    duration_ms=args.duration_ms,
                    frame_count=args.frame_count,
                    countdown_s=args.countdown,
                )
            )
            with VideoDeviceFrameSource(device) as source:
                frames = list(asyncio.run(scheduler.run(source, on_event=_log_capture_event)))

        panorama = _stitch_in_background(engine, frames)
    except StitchError as exc:
        logger.error("{}", exc.user_message)
        return 1
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        logger.error("{}", exc)
        return 1

    try:
        write_png(panorama, args.output or Path(default_export_name("png")))
        if args.json is not None:
            write_json(panorama, args.json)
    except StitchError as exc:
        logger.error("{}", exc.user_message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
