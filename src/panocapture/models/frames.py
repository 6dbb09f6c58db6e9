"""Raster and frame-sequence domain models."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Tuple

import numpy as np

RasterImage = np.ndarray  # uint8, (H, W) or (H, W, C) with C in {1, 3, 4}


def freeze_image(image: np.ndarray) -> np.ndarray:
    """Return an owned, read-only copy of ``image``."""
    frozen = np.array(image, dtype=np.uint8, copy=True, order="C")
    frozen.setflags(write=False)
    return frozen


def validate_raster(image: np.ndarray) -> None:
    """Raise ``ValueError`` unless ``image`` is a usable 8-bit raster."""
    if not isinstance(image, np.ndarray):
        raise ValueError(f"Expected a numpy array, got {type(image).__name__}")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 pixels, got {image.dtype}")
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        raise ValueError(f"Unsupported channel count {image.shape[2]}")
    if image.ndim not in (2, 3):
        raise ValueError(f"Expected a 2-D raster, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError("Raster has zero width or height")


@dataclass(slots=True, frozen=True)
class FrameSequence:
    """Frames of one capture session in capture order.

    Attributes
    ----------
    frames:
        Read-only rasters. Capture order is trusted to match the left-to-right
        pan order; it is never checked against the image content.
    timestamps_ms:
        Time of each capture relative to the start of the acquisition loop.
    requested_count:
        Number of capture attempts the scheduler was asked to make.
    cancelled:
        ``True`` when the loop stopped early at the caller's request.
    """

    frames: Tuple[np.ndarray, ...]
    timestamps_ms: Tuple[float, ...] = ()
    requested_count: int = 0
    cancelled: bool = False

    @classmethod
    def from_images(cls, images, timestamps_ms=None) -> "FrameSequence":
        frames = []
        for image in images:
            validate_raster(image)
            frames.append(freeze_image(image))
        stamps = tuple(float(t) for t in timestamps_ms) if timestamps_ms is not None else ()
        return cls(frames=tuple(frames), timestamps_ms=stamps, requested_count=len(frames))

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.frames)

    def __getitem__(self, index: int) -> np.ndarray:
        return self.frames[index]

    @property
    def is_stitchable(self) -> bool:
        return len(self.frames) >= 2
