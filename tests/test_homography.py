import numpy as np
import pytest

from panocapture.errors import HomographyEstimationFailed
from panocapture.stitching.homography import (
    estimate_homography_ransac,
    fit_homography,
    is_degenerate,
    project_points,
)

TRUE_H = np.array(
    [
        [1.02, 0.03, -180.0],
        [-0.01, 0.99, 4.0],
        [2e-5, -1e-5, 1.0],
    ]
)


def _correspondences(count: int = 120, outliers: int = 40, seed: int = 0):
    rng = np.random.default_rng(seed)
    src = rng.uniform(0, 640, size=(count, 2))
    dst = project_points(TRUE_H, src)
    bad = rng.choice(count, outliers, replace=False)
    dst[bad] = rng.uniform(0, 640, size=(outliers, 2))
    return src, dst, bad


def test_four_points_are_solved_exactly():
    src = np.array([[0.0, 0.0], [300.0, 0.0], [300.0, 200.0], [0.0, 200.0]])
    estimated = fit_homography(src, project_points(TRUE_H, src))
    assert estimated[2, 2] == pytest.approx(1.0)
    assert np.allclose(project_points(estimated, src), project_points(TRUE_H, src), atol=1e-2)


def test_least_squares_fit_recovers_homography():
    src = np.array([[0.0, 0.0], [300.0, 0.0], [300.0, 200.0], [0.0, 200.0], [150.0, 90.0]])
    estimated = fit_homography(src, project_points(TRUE_H, src))
    interior = np.array([[50.0, 40.0], [250.0, 160.0]])
    assert np.allclose(project_points(estimated, interior), project_points(TRUE_H, interior), atol=1e-2)


def test_fit_requires_four_points():
    with pytest.raises(ValueError):
        fit_homography(np.zeros((3, 2)), np.zeros((3, 2)))


def test_ransac_rejects_outliers():
    src, dst, bad = _correspondences()
    result = estimate_homography_ransac(src, dst, rng=np.random.default_rng(1))

    assert result.inlier_count == len(src) - len(bad)
    assert not result.inlier_mask[bad].any()
    assert np.allclose(project_points(result.matrix, src[:5]), project_points(TRUE_H, src[:5]), atol=0.5)


def test_ransac_is_reproducible_with_same_seed():
    src, dst, _ = _correspondences(seed=4)
    first = estimate_homography_ransac(src, dst, rng=np.random.default_rng(9))
    second = estimate_homography_ransac(src, dst, rng=np.random.default_rng(9))
    assert np.array_equal(first.matrix, second.matrix)
    assert np.array_equal(first.inlier_mask, second.inlier_mask)
    assert first.iterations == second.iterations


def test_ransac_fails_without_consensus():
    rng = np.random.default_rng(2)
    src = rng.uniform(0, 500, size=(40, 2))
    dst = rng.uniform(0, 500, size=(40, 2))
    with pytest.raises(HomographyEstimationFailed) as excinfo:
        estimate_homography_ransac(src, dst, min_inliers=12, max_iterations=500, rng=rng)
    assert excinfo.value.required == 12
    assert excinfo.value.inliers < 12


def test_ransac_fails_with_too_few_matches():
    src, dst, _ = _correspondences(count=8, outliers=0)
    with pytest.raises(HomographyEstimationFailed):
        estimate_homography_ransac(src, dst, min_inliers=12)


def test_degenerate_transforms_are_detected():
    assert not is_degenerate(np.eye(3))
    assert not is_degenerate(TRUE_H)
    assert is_degenerate(np.zeros((3, 3)))
    assert is_degenerate(np.array([[1.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 0.0, 1.0]]))
    assert is_degenerate(np.full((3, 3), np.nan))
