"""One capture-to-panorama session."""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from .capture.scheduler import CancelToken, CaptureObserver, CaptureScheduler
from .config import SessionConfig
from .io.frame_source import FrameSource
from .models.frames import FrameSequence
from .models.panorama import Panorama
from .models.progress import ProgressEvent
from .stitching.engine import StitchEngine
from .stitching.fallback import FallbackStitcher
from .stitching.features import FeatureStitcher


class SessionState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    VIEWING = "viewing"


class CaptureSession:
    """Owns the scheduler, the engine and the latest panorama.

    Failures leave the previously produced panorama untouched; only a
    successful stitch or an explicit :meth:`reset` replaces it. Stitching
    runs in a worker thread so the event loop keeps serving capture and UI
    callbacks, and progress events are delivered back on the loop thread.
    """

    def __init__(
        self,
        source: FrameSource,
        config: Optional[SessionConfig] = None,
        *,
        scheduler: Optional[CaptureScheduler] = None,
        engine: Optional[StitchEngine] = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.source = source
        self.scheduler = scheduler or CaptureScheduler(self.config.capture)
        if engine is None:
            stitchers = [FallbackStitcher()]
            if self.config.use_features:
                stitchers.insert(0, FeatureStitcher(self.config.stitch))
            engine = StitchEngine(stitchers, config=self.config.stitch)
        self.engine = engine
        self.state = SessionState.IDLE
        self.frames: Optional[FrameSequence] = None
        self.panorama: Optional[Panorama] = None
        self._cancel: Optional[CancelToken] = None
        self._stitching = False

    def cancel_capture(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    def reset(self) -> None:
        """Discard frames and panorama ahead of a new capture."""
        self.frames = None
        self.panorama = None
        self.state = SessionState.IDLE

    async def capture(self, on_event: Optional[CaptureObserver] = None) -> FrameSequence:
        if self.state in (SessionState.CAPTURING, SessionState.PROCESSING):
            raise RuntimeError(f"Session is busy ({self.state.value})")
        previous_state = self.state
        self._cancel = CancelToken()
        self.state = SessionState.CAPTURING
        try:
            frames = await self.scheduler.run(self.source, cancel=self._cancel, on_event=on_event)
        except BaseException:
            self.state = previous_state
            raise
        finally:
            self._cancel = None
        self.frames = frames
        self.state = previous_state if frames.cancelled else SessionState.IDLE
        return frames

    async def stitch(
        self,
        frames: Optional[FrameSequence] = None,
        observer: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> Panorama:
        if self._stitching:
            raise RuntimeError("A stitch is already running for this session")
        if self.state == SessionState.CAPTURING:
            raise RuntimeError("Cannot stitch while a capture is in progress")
        frames = frames if frames is not None else self.frames
        if frames is None:
            raise RuntimeError("No frames captured yet")

        loop = asyncio.get_running_loop()
        relay = None
        if observer is not None:
            def relay(event: ProgressEvent) -> None:
                loop.call_soon_threadsafe(observer, event)

        previous_state = self.state
        self._stitching = True
        self.state = SessionState.PROCESSING
        try:
            panorama = await asyncio.to_thread(self.engine.stitch, list(frames), relay)
        except BaseException:
            self.state = previous_state
            raise
        finally:
            self._stitching = False
        self.panorama = panorama
        self.frames = None
        self.state = SessionState.VIEWING
        return panorama

    async def capture_and_stitch(
        self,
        on_capture_event: Optional[CaptureObserver] = None,
        observer: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> Panorama:
        frames = await self.capture(on_capture_event)
        logger.info("Captured {} frames; stitching", len(frames))
        return await self.stitch(frames, observer)
