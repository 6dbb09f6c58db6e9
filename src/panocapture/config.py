"""Session, capture and stitching parameters."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

PROJECTION_MODES = ("auto", "resize", "cylindrical")


@dataclass(slots=True)
class CaptureConfig:
    """Timing of one acquisition loop.

    The defaults reproduce the handheld workflow: a 3 second countdown, then
    18 frames over 12 seconds (one frame roughly every 667 ms).
    """

    duration_ms: float = 12000.0
    frame_count: int = 18
    countdown_s: int = 3

    def __post_init__(self) -> None:
        if self.duration_ms <= 0:
            raise ValueError(f"duration_ms must be positive, got {self.duration_ms}")
        if self.frame_count < 1:
            raise ValueError(f"frame_count must be at least 1, got {self.frame_count}")
        if self.countdown_s < 0:
            raise ValueError(f"countdown_s must not be negative, got {self.countdown_s}")

    @property
    def interval_ms(self) -> float:
        return self.duration_ms / self.frame_count


@dataclass(slots=True)
class StitchConfig:
    """Tuning for feature-based registration, blending and projection."""

    ratio_test: float = 0.75
    min_keypoints: int = 8
    min_inliers: int = 12
    ransac_iterations: int = 2000
    ransac_threshold_px: float = 3.0
    ransac_seed: int = 0
    max_detection_dim: int = 800
    cylindrical_warp: bool = True
    horizontal_fov_deg: float = 65.0
    focal_px: Optional[float] = None
    compensate_exposure: bool = True
    blend_levels: int = 5
    max_canvas_scale: float = 4.0
    projection: str = "auto"

    def __post_init__(self) -> None:
        if not 0.0 < self.ratio_test < 1.0:
            raise ValueError(f"ratio_test must be in (0, 1), got {self.ratio_test}")
        if self.min_inliers < 4:
            raise ValueError("min_inliers must be at least 4 for a homography")
        if self.ransac_iterations < 1:
            raise ValueError("ransac_iterations must be positive")
        if not 0.0 < self.horizontal_fov_deg < 180.0:
            raise ValueError(f"horizontal_fov_deg must be in (0, 180), got {self.horizontal_fov_deg}")
        if self.projection not in PROJECTION_MODES:
            raise ValueError(f"projection must be one of {PROJECTION_MODES}, got {self.projection!r}")


@dataclass(slots=True)
class SessionConfig:
    """Everything a capture session needs from the caller."""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    stitch: StitchConfig = field(default_factory=StitchConfig)
    use_features: bool = True
