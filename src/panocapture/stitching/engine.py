"""Stitch state machine: strategy selection, staged progress and projection."""
from __future__ import annotations

import time
from typing import Callable, Generator, Iterable, List, Optional, Sequence

import numpy as np
from loguru import logger

from ..config import StitchConfig
from ..errors import EngineUnavailable, InsufficientFrames, StitchError
from ..io.projection import ProjectionConverter
from ..models.frames import freeze_image, validate_raster
from ..models.panorama import Panorama
from ..models.progress import ProgressEvent, ProgressTracker, StitchStage
from .base import Composite, Stitcher
from .fallback import FallbackStitcher
from .features import FeatureStitcher

MIN_FRAMES = 2

ProgressObserver = Callable[[ProgressEvent], None]


class StitchRun:
    """Lazy, single-pass stream of progress events for one stitch.

    Iterating drives the work. Once the stream is exhausted ``panorama``
    holds the result; if the stitch failed the error is re-raised from the
    iteration and kept in ``error``. Iterating again yields nothing.
    """

    def __init__(self, steps: Generator[ProgressEvent, None, Panorama]) -> None:
        self._steps = steps
        self._done = False
        self.panorama: Optional[Panorama] = None
        self.error: Optional[BaseException] = None

    def __iter__(self) -> "StitchRun":
        return self

    def __next__(self) -> ProgressEvent:
        if self._done:
            raise StopIteration
        try:
            return next(self._steps)
        except StopIteration as stop:
            self._done = True
            self.panorama = stop.value
            raise StopIteration from None
        except Exception as exc:
            self._done = True
            self.error = exc
            raise

    @property
    def done(self) -> bool:
        return self._done

    def result(self) -> Panorama:
        """Drain the remaining events and return the panorama."""
        for _ in self:
            pass
        if self.panorama is None:
            raise self.error if self.error is not None else RuntimeError("Stitch run was abandoned")
        return self.panorama


class StitchEngine:
    """Turns an ordered frame sequence into an equirectangular panorama.

    Strategies are tried in order, once per call: a strategy whose
    capabilities are missing is skipped, and one that fails hands over to
    the next. The default order is feature-based stitching, then plain
    concatenation. Falling back is logged, never reported as an error.
    """

    def __init__(
        self,
        stitchers: Optional[Sequence[Stitcher]] = None,
        projector: Optional[ProjectionConverter] = None,
        config: Optional[StitchConfig] = None,
    ) -> None:
        self.config = config or StitchConfig()
        if stitchers is None:
            stitchers = [FeatureStitcher(self.config), FallbackStitcher()]
        self.stitchers: List[Stitcher] = list(stitchers)
        self.projector = projector or ProjectionConverter(self.config.projection)
        self.stage: Optional[StitchStage] = None

    @property
    def is_stitching(self) -> bool:
        return self.stage is not None

    def start(self, frames: Iterable[np.ndarray]) -> StitchRun:
        """Validate the input and return the event stream of a new stitch.

        Raises
        ------
        InsufficientFrames
            Immediately, before any stage is entered, for fewer than 2 frames.
        """
        images = list(frames)
        if len(images) < MIN_FRAMES:
            raise InsufficientFrames(len(images), MIN_FRAMES)
        return StitchRun(self._run(images))

    def stitch(self, frames: Iterable[np.ndarray], observer: Optional[ProgressObserver] = None) -> Panorama:
        run = self.start(frames)
        for event in run:
            if observer is not None:
                observer(event)
        return run.result()

    # ------------------------------------------------------------------
    def _run(self, frames: List[np.ndarray]) -> Generator[ProgressEvent, None, Panorama]:
        tracker = ProgressTracker()
        started = time.perf_counter()
        try:
            yield from self._advance(tracker, ProgressEvent(StitchStage.LOADING, 0.0, "Loading frames..."))
            yield from self._advance(tracker, ProgressEvent(StitchStage.PREPROCESSING, 10.0, "Preprocessing frames..."))

            images: List[np.ndarray] = []
            total = len(frames)
            for index, frame in enumerate(frames):
                prepared = self._prepare(frame, index)
                if prepared is not None:
                    images.append(prepared)
                yield from self._advance(
                    tracker,
                    ProgressEvent(
                        StitchStage.PREPROCESSING,
                        10.0 + (index + 1) / total * 20.0,
                        f"Loading frame {index + 1}/{total}...",
                    ),
                )
            images = _unify_channels(images)

            yield from self._advance(tracker, ProgressEvent(StitchStage.DETECTING, 30.0, "Detecting features..."))
            composite = yield from self._compose(tracker, images)

            yield from self._advance(tracker, ProgressEvent(StitchStage.BLENDING, 80.0, "Blending seams..."))
            yield from self._advance(
                tracker, ProgressEvent(StitchStage.BLENDING, 90.0, "Projecting to equirectangular...")
            )
            equirect = self.projector.convert(
                composite.image, focal_px=composite.focal_px if composite.is_cylindrical else None
            )
            panorama = Panorama(
                image=freeze_image(equirect),
                frame_count=len(images),
                method=composite.method,
                inlier_counts=composite.inlier_counts,
            )
            yield from self._advance(tracker, ProgressEvent(StitchStage.COMPLETE, 100.0, "Complete!"))
            logger.info(
                "Stitched {} frames into {}x{} panorama via {} in {:.2f}s",
                panorama.frame_count,
                panorama.width,
                panorama.height,
                panorama.method,
                time.perf_counter() - started,
            )
            return panorama
        except StitchError as exc:
            logger.error("Stitching failed: {}", exc)
            raise
        finally:
            self.stage = None

    def _compose(self, tracker: ProgressTracker, images: List[np.ndarray]) -> Generator[ProgressEvent, None, Composite]:
        last_error: Optional[StitchError] = None
        for stitcher in self.stitchers:
            if not stitcher.is_available():
                logger.info("{}", EngineUnavailable(stitcher.name, stitcher.unavailable_reason()))
                continue
            try:
                composite = yield from self._tracked(tracker, stitcher.stitch(images))
            except StitchError as exc:
                logger.warning("{} stitcher failed ({}); trying next strategy", stitcher.name, exc)
                last_error = exc
                continue
            if last_error is not None:
                logger.info("Recovered with {} stitcher after: {}", stitcher.name, last_error)
            return composite

        if last_error is not None:
            raise last_error
        raise EngineUnavailable("stitch engine", "no stitching strategy is available")

    def _tracked(self, tracker: ProgressTracker, steps) -> Generator[ProgressEvent, None, Composite]:
        while True:
            try:
                event = next(steps)
            except StopIteration as stop:
                return stop.value
            yield from self._advance(tracker, event)

    def _advance(self, tracker: ProgressTracker, event: ProgressEvent) -> Generator[ProgressEvent, None, None]:
        admitted = tracker.admit(event)
        if admitted is not None:
            self.stage = admitted.stage
            yield admitted

    @staticmethod
    def _prepare(frame: np.ndarray, index: int) -> Optional[np.ndarray]:
        """Decode one frame into an owned, writable RGB or RGBA buffer."""
        try:
            validate_raster(frame)
        except ValueError as exc:
            logger.warning("Dropping frame {}: {}", index + 1, exc)
            return None
        image = np.array(frame, dtype=np.uint8, copy=True)
        if image.ndim == 2:
            image = image[..., None]
        if image.shape[2] == 1:
            image = np.repeat(image, 3, axis=2)
        return image


def _unify_channels(images: List[np.ndarray]) -> List[np.ndarray]:
    if not any(image.shape[2] == 4 for image in images):
        return images
    unified = []
    for image in images:
        if image.shape[2] == 3:
            alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
            image = np.concatenate([image, alpha], axis=2)
        unified.append(image)
    return unified
