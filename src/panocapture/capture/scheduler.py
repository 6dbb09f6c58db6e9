"""Timed, interruptible acquisition of a panning frame sequence."""
from __future__ import annotations

import asyncio
import threading
import time
from typing import Awaitable, Callable, Optional, Union

import numpy as np
from loguru import logger

from ..config import CaptureConfig
from ..errors import InsufficientFrames
from ..io.frame_source import FrameSource
from ..models.frames import FrameSequence, freeze_image, validate_raster
from ..models.progress import CaptureProgress, CountdownTick

CaptureEvent = Union[CountdownTick, CaptureProgress]
CaptureObserver = Callable[[CaptureEvent], None]
SleepFn = Callable[[float], Awaitable[None]]

MIN_FRAMES = 2


class CancelToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CaptureScheduler:
    """Pulls frames from a source at uniform intervals after a countdown.

    Frame ``i`` is requested at ``i * interval`` after the loop starts. A slot
    whose capture returns ``None`` is skipped, never retried, so the sequence
    may be shorter than requested.
    """

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CaptureConfig()
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        source: FrameSource,
        duration_ms: Optional[float] = None,
        frame_count: Optional[int] = None,
        *,
        cancel: Optional[CancelToken] = None,
        on_event: Optional[CaptureObserver] = None,
    ) -> FrameSequence:
        """Run the countdown and acquisition loop.

        Raises
        ------
        InsufficientFrames
            If the loop ran to completion but fewer than two frames were
            captured. A cancelled run returns whatever it captured instead.
        """
        config = CaptureConfig(
            duration_ms=self.config.duration_ms if duration_ms is None else duration_ms,
            frame_count=self.config.frame_count if frame_count is None else frame_count,
            countdown_s=self.config.countdown_s,
        )
        interval_s = config.interval_ms / 1000.0
        emit = on_event or (lambda event: None)

        for remaining in range(config.countdown_s, 0, -1):
            if _is_cancelled(cancel):
                return self._finish([], [], config.frame_count, cancelled=True)
            emit(CountdownTick(remaining))
            await self._sleep(1.0)

        frames: list[np.ndarray] = []
        stamps: list[float] = []
        loop_start = self._clock()
        logger.info(
            "Capturing {} frames over {:.0f} ms ({:.0f} ms interval)",
            config.frame_count,
            config.duration_ms,
            config.interval_ms,
        )

        for attempt in range(config.frame_count):
            delay = loop_start + attempt * interval_s - self._clock()
            if delay > 0:
                await self._sleep(delay)
            if _is_cancelled(cancel):
                logger.info("Capture cancelled after {} frames", len(frames))
                return self._finish(frames, stamps, config.frame_count, cancelled=True)

            image = source.capture_frame()
            if image is None:
                logger.debug("No frame ready for slot {}; skipping", attempt)
            else:
                validate_raster(image)
                frames.append(freeze_image(image))
                stamps.append((self._clock() - loop_start) * 1000.0)
            emit(CaptureProgress(attempt=attempt, fraction=(attempt + 1) / config.frame_count, captured=len(frames)))

        sequence = self._finish(frames, stamps, config.frame_count, cancelled=False)
        if len(sequence) < MIN_FRAMES:
            raise InsufficientFrames(len(sequence), MIN_FRAMES)
        return sequence

    @staticmethod
    def _finish(frames, stamps, requested: int, *, cancelled: bool) -> FrameSequence:
        logger.info("Capture finished with {}/{} frames", len(frames), requested)
        return FrameSequence(
            frames=tuple(frames),
            timestamps_ms=tuple(stamps),
            requested_count=requested,
            cancelled=cancelled,
        )


def _is_cancelled(cancel: Optional[CancelToken]) -> bool:
    return cancel is not None and cancel.cancelled
