"""Strategy interface shared by the stitching implementations."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generator, Optional, Sequence, Tuple

import numpy as np

from ..models.progress import ProgressEvent

StitchSteps = Generator[ProgressEvent, None, "Composite"]


@dataclass(slots=True, frozen=True)
class Composite:
    """Wide image produced by a stitcher, before equirectangular projection.

    ``focal_px`` is set when the composite lies on a cylinder of that radius,
    which lets the projection step remap it instead of merely resizing it.
    """

    image: np.ndarray
    method: str
    focal_px: Optional[float] = None
    inlier_counts: Tuple[int, ...] = ()

    @property
    def is_cylindrical(self) -> bool:
        return self.focal_px is not None


class Stitcher(ABC):
    """One way of turning an ordered frame list into a composite.

    ``stitch`` is a generator: it yields progress checkpoints and returns the
    composite, so callers use ``composite = yield from stitcher.stitch(...)``.
    Failures are raised as :class:`~panocapture.errors.StitchError`.
    """

    name = "stitcher"

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the capabilities this strategy needs are present."""

    def unavailable_reason(self) -> str:
        return "required capability missing"

    @abstractmethod
    def stitch(self, images: Sequence[np.ndarray]) -> StitchSteps:
        """Compose RGB or RGBA frames given in capture order."""
