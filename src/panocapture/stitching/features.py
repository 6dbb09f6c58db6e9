"""Feature-based registration, warping and blending of a frame sequence."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
from loguru import logger

from ..config import StitchConfig
from ..errors import FeatureDetectionFailed, HomographyEstimationFailed
from ..models.progress import ProgressEvent, StitchStage
from .base import Composite, StitchSteps, Stitcher
from .blending import compensate_gains, multi_band_blend
from .homography import estimate_homography_ransac, is_degenerate
from .warping import canvas_geometry, cylindrical_warp, estimate_focal

_REQUIRED_CV2 = ("BFMatcher", "warpPerspective", "remap", "distanceTransform", "pyrDown", "pyrUp")


@dataclass(slots=True)
class FrameFeatures:
    """Keypoint coordinates (full resolution) and descriptors of one frame."""

    points: np.ndarray
    descriptors: Optional[np.ndarray]

    def __len__(self) -> int:
        return len(self.points)


class FeatureStitcher(Stitcher):
    """Registers neighbouring frames with homographies and blends them.

    Frames are optionally projected onto a cylinder first, so a pure pan
    becomes close to a translation. Each frame is registered to its
    predecessor; the chained transforms are expressed relative to the middle
    frame, and the warped frames are blended with a Laplacian pyramid.
    """

    name = "features"

    def __init__(self, config: Optional[StitchConfig] = None) -> None:
        self.config = config or StitchConfig()

    # ------------------------------------------------------------------
    def is_available(self) -> bool:
        return not self._missing_capabilities()

    def unavailable_reason(self) -> str:
        missing = self._missing_capabilities()
        return f"OpenCV build lacks {', '.join(missing)}" if missing else "available"

    @staticmethod
    def _missing_capabilities() -> List[str]:
        missing = [name for name in _REQUIRED_CV2 if not hasattr(cv2, name)]
        if not (hasattr(cv2, "SIFT_create") or hasattr(cv2, "ORB_create")):
            missing.append("a keypoint detector")
        return missing

    def _create_detector(self):
        if hasattr(cv2, "SIFT_create"):
            return cv2.SIFT_create(), cv2.NORM_L2
        return cv2.ORB_create(nfeatures=4000), cv2.NORM_HAMMING

    # ------------------------------------------------------------------
    def stitch(self, images: Sequence[np.ndarray]) -> StitchSteps:
        if len(images) < 2:
            raise FeatureDetectionFailed(f"Feature stitching needs 2 valid frames, got {len(images)}")
        try:
            composite = yield from self._stitch(images)
        except cv2.error as exc:
            raise FeatureDetectionFailed(f"OpenCV failed while stitching: {exc}") from exc
        except MemoryError as exc:
            raise FeatureDetectionFailed(f"Not enough memory to stitch the aligned frames: {exc}") from exc
        return composite

    def _stitch(self, images: Sequence[np.ndarray]) -> StitchSteps:
        config = self.config
        total = len(images)
        has_alpha = images[0].ndim == 3 and images[0].shape[2] == 4
        frames = [np.ascontiguousarray(image[..., :3]) for image in images]

        focal: Optional[float] = None
        if config.cylindrical_warp:
            focal = config.focal_px or estimate_focal(frames[0].shape[1], config.horizontal_fov_deg)
            projected = [cylindrical_warp(frame, focal) for frame in frames]
            frames = [warped for warped, _ in projected]
            masks = [mask for _, mask in projected]
            logger.debug("Cylindrical pre-warp with focal {:.1f} px", focal)
        else:
            masks = [np.full(frame.shape[:2], 255, dtype=np.uint8) for frame in frames]

        detector, norm = self._create_detector()
        features: List[FrameFeatures] = []
        for index, (frame, mask) in enumerate(zip(frames, masks)):
            found = self._detect(detector, frame, mask)
            if len(found) < config.min_keypoints:
                raise FeatureDetectionFailed(
                    f"Frame {index + 1} has only {len(found)} keypoints, need {config.min_keypoints}",
                    frame_index=index,
                )
            features.append(found)
            yield ProgressEvent(
                StitchStage.DETECTING,
                30.0 + (index + 1) / total * 10.0,
                f"Detecting features in frame {index + 1}/{total}...",
            )

        matcher = cv2.BFMatcher(norm)
        pair_transforms: List[np.ndarray] = []
        inlier_counts: List[int] = []
        for index in range(1, total):
            matrix, inliers = self._register(matcher, features[index], features[index - 1], (index - 1, index))
            pair_transforms.append(matrix)
            inlier_counts.append(inliers)
            yield ProgressEvent(
                StitchStage.MATCHING,
                40.0 + index / (total - 1) * 10.0,
                f"Matched frames {index}/{index + 1} with {inliers} inliers",
            )

        transforms = self._chain(pair_transforms, reference=total // 2)
        sizes = [(frame.shape[1], frame.shape[0]) for frame in frames]
        try:
            offset, (canvas_w, canvas_h) = canvas_geometry(transforms, sizes)
        except ValueError as exc:
            raise HomographyEstimationFailed(f"Global alignment is degenerate: {exc}") from exc

        input_area = sum(width * height for width, height in sizes)
        if canvas_w <= 0 or canvas_h <= 0 or canvas_w * canvas_h > config.max_canvas_scale * input_area:
            raise HomographyEstimationFailed(
                f"Global alignment produced an implausible {canvas_w}x{canvas_h} canvas"
            )

        warped_frames: List[np.ndarray] = []
        warped_masks: List[np.ndarray] = []
        for index, (frame, mask, matrix) in enumerate(zip(frames, masks, transforms)):
            placement = offset @ matrix
            warped_frames.append(
                cv2.warpPerspective(frame, placement, (canvas_w, canvas_h), flags=cv2.INTER_LINEAR)
            )
            warped_masks.append(
                cv2.warpPerspective(mask, placement, (canvas_w, canvas_h), flags=cv2.INTER_NEAREST)
            )
            yield ProgressEvent(
                StitchStage.WARPING,
                50.0 + (index + 1) / total * 30.0,
                f"Warping frame {index + 1}/{total}...",
            )

        yield ProgressEvent(StitchStage.BLENDING, 80.0, "Blending seams...")
        layers = compensate_gains(warped_frames, warped_masks) if config.compensate_exposure else warped_frames
        blended, covered = multi_band_blend(layers, warped_masks, levels=config.blend_levels)
        blended, covered = _crop_to_coverage(blended, covered)
        if has_alpha:
            alpha = np.where(covered, 255, 0).astype(np.uint8)
            blended = np.dstack([blended, alpha])

        logger.info(
            "Feature stitch: {} frames onto {}x{} canvas, inliers per pair {}",
            total,
            blended.shape[1],
            blended.shape[0],
            inlier_counts,
        )
        return Composite(image=blended, method=self.name, focal_px=focal, inlier_counts=tuple(inlier_counts))

    # ------------------------------------------------------------------
    def _detect(self, detector, frame: np.ndarray, mask: np.ndarray) -> FrameFeatures:
        gray = cv2.cvtColor(frame, cv2.COLOR_RGB2GRAY)
        height, width = gray.shape
        scale = min(1.0, self.config.max_detection_dim / float(max(height, width)))
        if scale < 1.0:
            size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
            gray = cv2.resize(gray, size, interpolation=cv2.INTER_AREA)
            mask = cv2.resize(mask, size, interpolation=cv2.INTER_NEAREST)
        # Shrink the mask so the warped border does not produce keypoints.
        mask = cv2.erode(mask, np.ones((5, 5), dtype=np.uint8))

        keypoints, descriptors = detector.detectAndCompute(gray, mask)
        if not keypoints or descriptors is None:
            return FrameFeatures(points=np.empty((0, 2), dtype=np.float64), descriptors=None)
        points = np.array([kp.pt for kp in keypoints], dtype=np.float64) / scale
        return FrameFeatures(points=points, descriptors=descriptors)

    def _register(
        self,
        matcher,
        current: FrameFeatures,
        previous: FrameFeatures,
        pair: Tuple[int, int],
    ) -> Tuple[np.ndarray, int]:
        """Homography mapping ``current`` frame coordinates into ``previous``."""
        config = self.config
        knn = matcher.knnMatch(current.descriptors, previous.descriptors, k=2)
        good = [
            candidates[0]
            for candidates in knn
            if len(candidates) == 2 and candidates[0].distance < config.ratio_test * candidates[1].distance
        ]
        if len(good) < config.min_inliers:
            raise HomographyEstimationFailed(
                f"Frames {pair[0] + 1} and {pair[1] + 1} share only {len(good)} matches",
                pair=pair,
                inliers=len(good),
                required=config.min_inliers,
            )

        src = current.points[[match.queryIdx for match in good]]
        dst = previous.points[[match.trainIdx for match in good]]
        rng = np.random.default_rng([config.ransac_seed, pair[1]])
        try:
            result = estimate_homography_ransac(
                src,
                dst,
                threshold_px=config.ransac_threshold_px,
                max_iterations=config.ransac_iterations,
                min_inliers=config.min_inliers,
                rng=rng,
            )
        except HomographyEstimationFailed as exc:
            raise HomographyEstimationFailed(
                f"Frames {pair[0] + 1} and {pair[1] + 1}: {exc.message}",
                pair=pair,
                inliers=exc.inliers,
                required=exc.required,
            ) from exc

        logger.debug(
            "Pair {}: {} matches, {} inliers after {} RANSAC iterations",
            pair,
            len(good),
            result.inlier_count,
            result.iterations,
        )
        return result.matrix, result.inlier_count

    @staticmethod
    def _chain(pair_transforms: Sequence[np.ndarray], reference: int) -> List[np.ndarray]:
        """Express every frame in the coordinates of frame ``reference``."""
        to_first = [np.eye(3, dtype=np.float64)]
        for matrix in pair_transforms:
            to_first.append(to_first[-1] @ matrix)

        anchor = to_first[reference]
        if is_degenerate(anchor):
            raise HomographyEstimationFailed("Reference frame transform is not invertible")
        anchor_inv = np.linalg.inv(anchor)

        transforms = []
        for index, matrix in enumerate(to_first):
            relative = anchor_inv @ matrix
            relative = relative / relative[2, 2] if abs(relative[2, 2]) > 1e-12 else relative
            if is_degenerate(relative):
                raise HomographyEstimationFailed(f"Chained transform for frame {index + 1} is degenerate")
            transforms.append(relative)
        return transforms


def _crop_to_coverage(image: np.ndarray, covered: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Trim canvas rows and columns that no frame reaches.

    Canvas bounds are rounded outwards from sub-pixel corners, which leaves
    empty margins of up to a pixel on each side.
    """
    rows = np.flatnonzero(covered.any(axis=1))
    cols = np.flatnonzero(covered.any(axis=0))
    if rows.size == 0 or cols.size == 0:
        return image, covered
    window = (slice(rows[0], rows[-1] + 1), slice(cols[0], cols[-1] + 1))
    return np.ascontiguousarray(image[window]), covered[window]
