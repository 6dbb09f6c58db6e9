"""Planar homography estimation with a seeded RANSAC consensus."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from ..errors import HomographyEstimationFailed

MIN_CORRESPONDENCES = 4


@dataclass(slots=True, frozen=True)
class HomographyResult:
    """Best-supported homography and the correspondences agreeing with it."""

    matrix: np.ndarray
    inlier_mask: np.ndarray
    iterations: int

    @property
    def inlier_count(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))


def fit_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Homography for ``dst ~ H @ src`` from N >= 4 correspondences.

    Four points are solved exactly; more are fitted by least squares with
    OpenCV's Levenberg-Marquardt refinement.
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    if len(src) < MIN_CORRESPONDENCES or len(src) != len(dst):
        raise ValueError(f"Need at least {MIN_CORRESPONDENCES} paired points, got {len(src)}/{len(dst)}")

    if len(src) == MIN_CORRESPONDENCES:
        matrix = cv2.getPerspectiveTransform(src.astype(np.float32), dst.astype(np.float32))
    else:
        matrix, _ = cv2.findHomography(
            src.reshape(-1, 1, 2).astype(np.float32), dst.reshape(-1, 1, 2).astype(np.float32), 0
        )
    if matrix is None:
        raise ValueError("Correspondences do not determine a homography")
    if abs(matrix[2, 2]) > 1e-12:
        matrix = matrix / matrix[2, 2]
    return matrix


def project_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a homography to Nx2 points."""
    mapped = cv2.perspectiveTransform(np.asarray(points, dtype=np.float64).reshape(-1, 1, 2), matrix)
    return mapped.reshape(-1, 2)


def is_degenerate(matrix: np.ndarray, max_area_change: float = 1e4) -> bool:
    """True for non-finite or singular transforms, or ones that collapse or
    blow up image area by more than ``max_area_change``."""
    if matrix.shape != (3, 3) or not np.all(np.isfinite(matrix)):
        return True
    if abs(float(matrix[2, 2])) < 1e-12:
        return True
    area_change = abs(float(np.linalg.det(matrix / matrix[2, 2])))
    return not (1.0 / max_area_change) < area_change < max_area_change


def _collinear(points: np.ndarray, tolerance: float = 1e-6) -> bool:
    for i in range(4):
        a, b, c = np.delete(points, i, axis=0)
        area = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if abs(area) < tolerance:
            return True
    return False


def estimate_homography_ransac(
    src: np.ndarray,
    dst: np.ndarray,
    *,
    threshold_px: float = 3.0,
    max_iterations: int = 2000,
    min_inliers: int = 12,
    confidence: float = 0.995,
    rng: Optional[np.random.Generator] = None,
) -> HomographyResult:
    """Robustly fit ``dst ~ H @ src``.

    Each iteration samples four correspondences, solves them exactly and
    counts points whose reprojection error is below ``threshold_px``. The
    iteration budget shrinks adaptively once a model with a high inlier ratio
    is found. The winner is refit on all of its inliers. With the same ``rng``
    seed the result is reproducible.

    Raises
    ------
    HomographyEstimationFailed
        When fewer than ``min_inliers`` correspondences support the best model
        or the refit transform is degenerate.
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    total = len(src)
    required = max(min_inliers, MIN_CORRESPONDENCES)
    if total < required:
        raise HomographyEstimationFailed(
            f"Only {total} matches available, need {required}", inliers=total, required=required
        )

    rng = rng if rng is not None else np.random.default_rng(0)
    best_mask: Optional[np.ndarray] = None
    best_count = 0
    budget = max_iterations
    iteration = 0

    while iteration < budget:
        iteration += 1
        sample = rng.choice(total, MIN_CORRESPONDENCES, replace=False)
        if _collinear(src[sample]) or _collinear(dst[sample]):
            continue
        try:
            candidate = fit_homography(src[sample], dst[sample])
        except (ValueError, cv2.error):
            continue
        if not np.all(np.isfinite(candidate)):
            continue

        errors = np.linalg.norm(project_points(candidate, src) - dst, axis=1)
        mask = errors < threshold_px
        count = int(np.count_nonzero(mask))
        if count > best_count:
            best_count = count
            best_mask = mask
            ratio = count / total
            if ratio >= 1.0:
                break
            needed = math.log(1.0 - confidence) / math.log(1.0 - ratio**MIN_CORRESPONDENCES)
            budget = min(budget, max(iteration, int(math.ceil(needed))))

    if best_mask is None or best_count < required:
        raise HomographyEstimationFailed(
            f"Only {best_count} of {total} matches agree on a homography, need {required}",
            inliers=best_count,
            required=required,
        )

    try:
        refined = fit_homography(src[best_mask], dst[best_mask])
    except (ValueError, cv2.error) as exc:
        raise HomographyEstimationFailed("Inlier refit did not converge", inliers=best_count, required=required) from exc
    if is_degenerate(refined):
        raise HomographyEstimationFailed("Estimated homography is degenerate", inliers=best_count, required=required)

    errors = np.linalg.norm(project_points(refined, src) - dst, axis=1)
    refined_mask = errors < threshold_px
    if int(np.count_nonzero(refined_mask)) >= best_count:
        best_mask = refined_mask
    return HomographyResult(matrix=refined, inlier_mask=best_mask, iterations=iteration)
