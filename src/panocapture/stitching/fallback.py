"""Registration-free left-to-right placement of frames."""
from __future__ import annotations

from typing import Sequence

import numpy as np
from loguru import logger

from ..errors import FeatureDetectionFailed
from ..models.progress import ProgressEvent, StitchStage
from .base import Composite, StitchSteps, Stitcher


class FallbackStitcher(Stitcher):
    """Concatenates frames horizontally in capture order.

    The canvas is as wide as all frames together and as tall as the tallest
    one; frames are top-aligned and copied verbatim. Seams and parallax are
    left as they are.
    """

    name = "fallback"

    def is_available(self) -> bool:
        return True

    def stitch(self, images: Sequence[np.ndarray]) -> StitchSteps:
        if len(images) < 2:
            raise FeatureDetectionFailed(f"Fallback stitching needs 2 valid frames, got {len(images)}")

        total = len(images)
        channels = images[0].shape[2] if images[0].ndim == 3 else 1
        total_width = sum(int(image.shape[1]) for image in images)
        max_height = max(int(image.shape[0]) for image in images)

        yield ProgressEvent(StitchStage.WARPING, 50.0, "Arranging frames...")
        canvas = np.zeros((max_height, total_width, channels), dtype=np.uint8)
        if channels == 4:
            canvas[..., 3] = 255

        x_offset = 0
        for index, image in enumerate(images):
            height, width = image.shape[:2]
            canvas[:height, x_offset : x_offset + width] = image.reshape(height, width, channels)
            x_offset += width
            yield ProgressEvent(
                StitchStage.WARPING,
                50.0 + (index + 1) / total * 30.0,
                f"Stitching frame {index + 1}/{total}...",
            )

        logger.debug("Fallback canvas {}x{} from {} frames", total_width, max_height, total)
        return Composite(image=canvas, method=self.name)
