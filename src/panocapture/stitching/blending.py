"""Exposure compensation and multi-band seam blending on a shared canvas."""
from __future__ import annotations

from typing import Iterable, Iterator, List, Sequence, Tuple

import cv2
import numpy as np
from loguru import logger

MIN_OVERLAP_PX = 100
GAIN_LIMITS = (0.5, 2.0)


def compensate_gains(images: Sequence[np.ndarray], masks: Sequence[np.ndarray]) -> Iterator[np.ndarray]:
    """Match each frame's brightness to its predecessor over their overlap.

    Gains are per channel, clamped to ``GAIN_LIMITS`` and accumulated along
    the sequence so the first frame keeps its exposure. Compensated float32
    frames are yielded one at a time; only the current one is held.
    """
    cumulative = np.ones(images[0].shape[2], dtype=np.float32)
    yield images[0].astype(np.float32)
    for index in range(1, len(images)):
        overlap = (masks[index - 1] > 0) & (masks[index] > 0)
        if int(np.count_nonzero(overlap)) >= MIN_OVERLAP_PX:
            previous_mean = images[index - 1][overlap].astype(np.float32).mean(axis=0)
            current_mean = images[index][overlap].astype(np.float32).mean(axis=0)
            gains = np.where(current_mean > 1.0, previous_mean / np.maximum(current_mean, 1e-6), 1.0)
            cumulative = cumulative * np.clip(gains, *GAIN_LIMITS).astype(np.float32)
        logger.debug("Exposure gain for frame {}: {}", index, np.round(cumulative, 3).tolist())
        yield images[index].astype(np.float32) * cumulative


def max_pyramid_levels(shape: Tuple[int, ...], requested: int) -> int:
    smallest = min(shape[0], shape[1])
    levels = 1
    while levels < requested and smallest >= 2:
        smallest = (smallest + 1) // 2
        levels += 1
    return levels


def gaussian_pyramid(image: np.ndarray, levels: int) -> List[np.ndarray]:
    pyramid = [image]
    for _ in range(levels - 1):
        pyramid.append(cv2.pyrDown(pyramid[-1]))
    return pyramid


def laplacian_pyramid(image: np.ndarray, levels: int) -> List[np.ndarray]:
    gauss = gaussian_pyramid(image, levels)
    pyramid = []
    for fine, coarse in zip(gauss[:-1], gauss[1:]):
        height, width = fine.shape[:2]
        pyramid.append(fine - cv2.pyrUp(coarse, dstsize=(width, height)))
    pyramid.append(gauss[-1])
    return pyramid


def collapse_pyramid(pyramid: Sequence[np.ndarray]) -> np.ndarray:
    image = pyramid[-1]
    for level in reversed(pyramid[:-1]):
        height, width = level.shape[:2]
        image = cv2.pyrUp(image, dstsize=(width, height)) + level
    return image


def seam_masks(masks: Sequence[np.ndarray]) -> Tuple[List[np.ndarray], np.ndarray]:
    """Assign each canvas pixel to the frame whose border is farthest away.

    Returns one float32 0/1 mask per frame and the boolean coverage map.
    """
    best = np.zeros(masks[0].shape[:2], dtype=np.float32)
    winner = np.full(masks[0].shape[:2], -1, dtype=np.int32)
    for index, mask in enumerate(masks):
        distance = cv2.distanceTransform((mask > 0).astype(np.uint8), cv2.DIST_L2, 5)
        farther = distance > best
        winner[farther] = index
        best[farther] = distance[farther]
    covered = winner >= 0
    seams = [(winner == index).astype(np.float32) for index in range(len(masks))]
    return seams, covered


def _fill_invalid(image: np.ndarray, mask: np.ndarray) -> np.ndarray:
    valid = mask > 0
    if not np.any(valid):
        return image
    filled = image.copy()
    filled[~valid] = image[valid].mean(axis=0)
    return filled


def multi_band_blend(
    images: Iterable[np.ndarray],
    masks: Sequence[np.ndarray],
    levels: int = 5,
) -> Tuple[np.ndarray, np.ndarray]:
    """Blend warped frames across Laplacian pyramid bands.

    Low frequencies are mixed over wide transitions and high frequencies over
    narrow ones, hiding seams without blurring detail. Pixels outside every
    frame stay black. ``images`` may be a lazy iterable; it is consumed once.
    Returns the uint8 canvas and its coverage map.
    """
    seams, covered = seam_masks(masks)
    levels = max_pyramid_levels(masks[0].shape, levels)

    accum: List[np.ndarray] = []
    weights: List[np.ndarray] = []
    for image, mask, seam in zip(images, masks, seams):
        bands = laplacian_pyramid(_fill_invalid(image.astype(np.float32, copy=False), mask), levels)
        seam_pyramid = gaussian_pyramid(seam, levels)
        if not accum:
            accum = [np.zeros_like(band) for band in bands]
            weights = [np.zeros_like(level) for level in seam_pyramid]
        for level in range(levels):
            accum[level] += bands[level] * seam_pyramid[level][..., None]
            weights[level] += seam_pyramid[level]

    normalised = [band / np.maximum(weight, 1e-6)[..., None] for band, weight in zip(accum, weights)]
    blended = collapse_pyramid(normalised)
    blended[~covered] = 0.0
    return np.clip(blended + 0.5, 0, 255).astype(np.uint8), covered
