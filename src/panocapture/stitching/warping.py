"""Cylindrical pre-warp and canvas geometry for registered frames."""
from __future__ import annotations

import math
from typing import Sequence, Tuple

import cv2
import numpy as np


def estimate_focal(width: int, horizontal_fov_deg: float) -> float:
    """Pinhole focal length in pixels for a frame of ``width`` and the given FOV."""
    half_fov = math.radians(horizontal_fov_deg) / 2.0
    return (width / 2.0) / math.tan(half_fov)


def cylindrical_warp(image: np.ndarray, focal_px: float) -> Tuple[np.ndarray, np.ndarray]:
    """Project a pinhole frame onto a cylinder of radius ``focal_px``.

    Returns the warped image, cropped to the columns the cylinder covers, and
    a uint8 mask of valid pixels (255 inside the source frame).
    """
    height, width = image.shape[:2]
    cx, cy = width / 2.0, height / 2.0
    out_width = max(1, int(round(2.0 * focal_px * math.atan(cx / focal_px))))
    out_cx = out_width / 2.0

    theta = (np.arange(out_width, dtype=np.float32) - out_cx + 0.5) / focal_px
    rows = np.arange(height, dtype=np.float32) - cy + 0.5
    theta_grid, row_grid = np.meshgrid(theta, rows)

    map_x = (focal_px * np.tan(theta_grid) + cx - 0.5).astype(np.float32)
    map_y = (row_grid / np.cos(theta_grid) + cy - 0.5).astype(np.float32)

    warped = cv2.remap(
        image,
        map_x,
        map_y,
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )
    source_mask = np.full((height, width), 255, dtype=np.uint8)
    mask = cv2.remap(
        source_mask,
        map_x,
        map_y,
        interpolation=cv2.INTER_NEAREST,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )
    return np.ascontiguousarray(warped), mask


def warp_corners(matrix: np.ndarray, width: int, height: int) -> np.ndarray:
    """Map the frame corners through ``matrix``; returns 4x3 homogeneous points."""
    corners = np.array(
        [[0.0, 0.0, 1.0], [width, 0.0, 1.0], [width, height, 1.0], [0.0, height, 1.0]],
        dtype=np.float64,
    )
    return corners @ matrix.T


def canvas_geometry(
    transforms: Sequence[np.ndarray],
    sizes: Sequence[Tuple[int, int]],
) -> Tuple[np.ndarray, Tuple[int, int]]:
    """Bounding canvas for all warped frames.

    ``sizes`` holds ``(width, height)`` per frame. Returns the translation that
    moves the bounds to the origin and the canvas ``(width, height)``. Raises
    ``ValueError`` when a corner maps to or behind the plane at infinity.
    """
    points = []
    for matrix, (width, height) in zip(transforms, sizes):
        mapped = warp_corners(matrix, width, height)
        if np.any(mapped[:, 2] <= 1e-9):
            raise ValueError("Frame corner maps behind the reference plane")
        points.append(mapped[:, :2] / mapped[:, 2:3])
    stacked = np.vstack(points)
    min_x, min_y = np.floor(stacked.min(axis=0))
    max_x, max_y = np.ceil(stacked.max(axis=0))
    offset = np.array([[1.0, 0.0, -min_x], [0.0, 1.0, -min_y], [0.0, 0.0, 1.0]], dtype=np.float64)
    return offset, (int(max_x - min_x), int(max_y - min_y))
