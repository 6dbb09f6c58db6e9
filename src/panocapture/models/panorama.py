"""Panorama result model."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Tuple

import numpy as np


@dataclass(slots=True, frozen=True)
class Panorama:
    """Equirectangular panorama produced by one successful stitch."""

    image: np.ndarray
    frame_count: int
    method: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    inlier_counts: Tuple[int, ...] = ()

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def used_fallback(self) -> bool:
        return self.method == "fallback"

    def to_dict(self) -> Dict[str, object]:
        """Return metadata suitable for JSON export."""
        return {
            "width": self.width,
            "height": self.height,
            "frames": self.frame_count,
            "method": self.method,
            "timestamp": self.created_at.isoformat(),
            "inlier_counts": list(self.inlier_counts),
        }
