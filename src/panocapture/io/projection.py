"""Resampling of stitched composites into 2:1 equirectangular rasters."""
from __future__ import annotations

import math
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from ..config import PROJECTION_MODES
from ..errors import EncodingFailed


class ProjectionConverter:
    """Turns a composite into an equirectangular panorama.

    The output is always ``width`` wide and ``width // 2`` tall, where
    ``width`` is the composite width. In ``resize`` mode the composite is
    simply stretched to that aspect. In ``cylindrical`` mode every output
    pixel is traced back through its longitude and latitude onto the
    cylinder the composite was stitched on; regions the capture never saw
    stay black. ``auto`` remaps when a focal length is known and resizes
    otherwise.
    """

    def __init__(self, mode: str = "auto") -> None:
        if mode not in PROJECTION_MODES:
            raise ValueError(f"Unsupported projection mode {mode!r}")
        self.mode = mode

    def convert(self, composite: np.ndarray, focal_px: Optional[float] = None) -> np.ndarray:
        self._validate(composite)
        width = int(composite.shape[1])
        target = (width, width // 2)

        mode = self.mode
        if mode == "auto":
            mode = "cylindrical" if focal_px is not None else "resize"

        try:
            if mode == "cylindrical":
                result = self._remap_cylindrical(composite, target, focal_px or width / (2.0 * math.pi))
            else:
                result = cv2.resize(composite, target, interpolation=cv2.INTER_AREA)
        except (cv2.error, MemoryError) as exc:
            raise EncodingFailed(f"Equirectangular resampling failed: {exc}") from exc

        if result.ndim == 2 and composite.ndim == 3:
            result = result[..., None]
        logger.debug("Projected {}x{} composite to {}x{} ({})", width, composite.shape[0], *target, mode)
        return np.ascontiguousarray(result)

    @staticmethod
    def _validate(composite: np.ndarray) -> None:
        if not isinstance(composite, np.ndarray) or composite.dtype != np.uint8:
            raise EncodingFailed("Composite must be a uint8 numpy array")
        if composite.ndim not in (2, 3) or composite.size == 0:
            raise EncodingFailed(f"Composite has an invalid shape {getattr(composite, 'shape', None)}")
        if composite.shape[1] < 2:
            raise EncodingFailed("Composite must be at least 2 pixels wide")

    @staticmethod
    def _remap_cylindrical(composite: np.ndarray, target: tuple, focal_px: float) -> np.ndarray:
        src_height, src_width = composite.shape[:2]
        dst_width, dst_height = target

        lon = (np.arange(dst_width, dtype=np.float32) + 0.5) / dst_width * (2.0 * math.pi) - math.pi
        lat = math.pi / 2.0 - (np.arange(dst_height, dtype=np.float32) + 0.5) / dst_height * math.pi
        lon_grid, lat_grid = np.meshgrid(lon, lat)

        map_x = (src_width / 2.0 + focal_px * lon_grid - 0.5).astype(np.float32)
        with np.errstate(over="ignore", invalid="ignore"):
            map_y = (src_height / 2.0 - focal_px * np.tan(lat_grid) - 0.5).astype(np.float32)
        map_y[~np.isfinite(map_y)] = -1.0

        return cv2.remap(
            composite,
            map_x,
            map_y,
            interpolation=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
