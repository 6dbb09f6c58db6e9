import asyncio
import threading

import numpy as np
import pytest

from panocapture.capture.scheduler import CaptureScheduler
from panocapture.config import CaptureConfig, SessionConfig, StitchConfig
from panocapture.errors import FeatureDetectionFailed
from panocapture.models.frames import FrameSequence, freeze_image
from panocapture.models.panorama import Panorama
from panocapture.models.progress import CountdownTick, StitchStage
from panocapture.session import CaptureSession, SessionState
from panocapture.stitching.engine import StitchEngine
from panocapture.stitching.features import FeatureStitcher


class InstantClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class YieldingClock(InstantClock):
    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class StripeSource:
    def __init__(self) -> None:
        self.calls = 0

    def capture_frame(self):
        self.calls += 1
        return np.full((24, 32, 3), self.calls * 12, dtype=np.uint8)


def _session(source=None, engine=None, **capture) -> CaptureSession:
    clock = InstantClock()
    config = SessionConfig(capture=CaptureConfig(**capture), use_features=False)
    scheduler = CaptureScheduler(config.capture, sleep=clock.sleep, clock=clock)
    return CaptureSession(source or StripeSource(), config, scheduler=scheduler, engine=engine)


def test_default_session_engine_honours_feature_toggle():
    with_features = CaptureSession(StripeSource(), SessionConfig())
    without = CaptureSession(StripeSource(), SessionConfig(use_features=False))
    assert [s.name for s in with_features.engine.stitchers] == ["features", "fallback"]
    assert [s.name for s in without.engine.stitchers] == ["fallback"]


def test_capture_and_stitch_produces_panorama():
    session = _session(duration_ms=600, frame_count=6, countdown_s=2)
    capture_events = []
    progress = []

    panorama = asyncio.run(session.capture_and_stitch(capture_events.append, progress.append))

    assert session.state == SessionState.VIEWING
    assert session.panorama is panorama
    assert session.frames is None
    assert panorama.frame_count == 6
    assert panorama.width == 6 * 32
    assert panorama.height == 6 * 32 // 2
    assert capture_events[:2] == [CountdownTick(2), CountdownTick(1)]
    assert progress[0].stage == StitchStage.LOADING
    assert progress[-1].stage == StitchStage.COMPLETE


def test_progress_is_delivered_on_the_event_loop_thread():
    session = _session(duration_ms=300, frame_count=3, countdown_s=0)
    threads = set()

    async def scenario():
        frames = await session.capture()
        await session.stitch(frames, lambda event: threads.add(threading.get_ident()))

    asyncio.run(scenario())
    assert threads == {threading.get_ident()}


def test_failed_stitch_keeps_previous_panorama():
    config = StitchConfig(cylindrical_warp=False)
    session = _session(engine=StitchEngine([FeatureStitcher(config)], config=config))
    previous = Panorama(image=freeze_image(np.zeros((8, 16, 3), np.uint8)), frame_count=2, method="fallback")
    session.panorama = previous
    session.state = SessionState.VIEWING
    flat = FrameSequence.from_images([np.full((60, 80, 3), 90, np.uint8)] * 3)

    with pytest.raises(FeatureDetectionFailed):
        asyncio.run(session.stitch(flat))

    assert session.panorama is previous
    assert session.state == SessionState.VIEWING


def test_cancelled_capture_returns_partial_frames():
    source = StripeSource()
    session = _session(source=source, duration_ms=1000, frame_count=10, countdown_s=0)

    class CancellingSource:
        def capture_frame(self):
            frame = source.capture_frame()
            if source.calls == 4:
                session.cancel_capture()
            return frame

    session.source = CancellingSource()
    frames = asyncio.run(session.capture())

    assert frames.cancelled
    assert len(frames) == 4
    assert session.frames is frames
    assert session.state == SessionState.IDLE


def test_session_rejects_overlapping_operations():
    session = _session()
    session.state = SessionState.CAPTURING
    with pytest.raises(RuntimeError):
        asyncio.run(session.capture())

    idle = _session()
    with pytest.raises(RuntimeError):
        asyncio.run(idle.stitch())


def test_reset_discards_results():
    session = _session(duration_ms=200, frame_count=2, countdown_s=0)
    asyncio.run(session.capture_and_stitch())
    session.reset()
    assert session.panorama is None
    assert session.frames is None
    assert session.state == SessionState.IDLE


def test_stitch_is_rejected_while_capture_runs():
    session = _session(duration_ms=400, frame_count=4, countdown_s=1)
    clock = YieldingClock()
    session.scheduler = CaptureScheduler(session.config.capture, sleep=clock.sleep, clock=clock)
    frames = FrameSequence.from_images([np.full((24, 32, 3), 10, np.uint8)] * 2)
    outcome = {}

    async def scenario():
        capturing = asyncio.create_task(session.capture())
        await asyncio.sleep(0)
        assert session.state == SessionState.CAPTURING
        with pytest.raises(RuntimeError, match="capture is in progress"):
            await session.stitch(frames)
        outcome["captured"] = await capturing

    asyncio.run(scenario())
    assert len(outcome["captured"]) == 4
    assert session.panorama is None
