"""Progress events for the capture and stitch channels."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StitchStage(Enum):
    """Position of a stitch operation in the pipeline."""

    LOADING = "loading"
    PREPROCESSING = "preprocessing"
    DETECTING = "detecting"
    MATCHING = "matching"
    WARPING = "warping"
    BLENDING = "blending"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]

    def __str__(self) -> str:  # pragma: no cover - user friendly label
        return self.value


_STAGE_ORDER = {stage: index for index, stage in enumerate(StitchStage)}


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """One checkpoint reported while stitching."""

    stage: StitchStage
    percent: float
    message: str

    def __post_init__(self) -> None:
        if not 0.0 <= self.percent <= 100.0:
            raise ValueError(f"percent must be within 0..100, got {self.percent}")


class ProgressTracker:
    """Keeps the reported stage and percent from ever moving backwards.

    Events for a stage earlier than the current one are dropped; events for
    the current stage are clamped to the highest percent already reported.
    """

    def __init__(self) -> None:
        self._last: Optional[ProgressEvent] = None

    @property
    def last(self) -> Optional[ProgressEvent]:
        return self._last

    def admit(self, event: ProgressEvent) -> Optional[ProgressEvent]:
        last = self._last
        if last is not None:
            if event.stage.order < last.stage.order:
                return None
            if event.percent < last.percent:
                event = ProgressEvent(event.stage, last.percent, event.message)
        self._last = event
        return event


@dataclass(slots=True, frozen=True)
class CountdownTick:
    """Seconds left before the acquisition loop starts."""

    remaining: int


@dataclass(slots=True, frozen=True)
class CaptureProgress:
    """Emitted after every capture attempt, successful or skipped."""

    attempt: int
    fraction: float
    captured: int

    @property
    def percent(self) -> float:
        return self.fraction * 100.0
