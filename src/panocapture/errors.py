"""Typed failures raised by the capture and stitching pipeline."""
from __future__ import annotations

from typing import Optional, Tuple


class StitchError(Exception):
    """Base class for every pipeline failure reported to the caller."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        """Short text suitable for an error banner."""
        return self.message


class InsufficientFrames(StitchError):
    """Fewer frames than stitching requires."""

    def __init__(self, frame_count: int, required: int = 2) -> None:
        super().__init__(f"Need at least {required} frames to stitch, got {frame_count}")
        self.frame_count = frame_count
        self.required = required

    @property
    def user_message(self) -> str:
        return (
            f"Captured {self.frame_count} frames, but at least {self.required} are needed. "
            "Please start a new capture."
        )


class FeatureDetectionFailed(StitchError):
    """Feature-based registration could not find usable features."""

    def __init__(self, message: str, frame_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.frame_index = frame_index


class HomographyEstimationFailed(FeatureDetectionFailed):
    """Neighbouring frames could not be registered with a valid transform."""

    def __init__(
        self,
        message: str,
        pair: Optional[Tuple[int, int]] = None,
        inliers: int = 0,
        required: int = 0,
    ) -> None:
        super().__init__(message, frame_index=pair[1] if pair is not None else None)
        self.pair = pair
        self.inliers = inliers
        self.required = required


class EngineUnavailable(StitchError):
    """A stitching strategy cannot run in the current environment."""

    def __init__(self, engine: str, reason: str) -> None:
        super().__init__(f"{engine} unavailable: {reason}")
        self.engine = engine
        self.reason = reason


class EncodingFailed(StitchError):
    """A raster could not be resampled or encoded."""

    @property
    def user_message(self) -> str:
        return f"Could not produce the panorama image: {self.message}"
