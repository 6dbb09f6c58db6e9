"""Stitching strategies and the engine that selects between them."""

from .base import Composite, Stitcher
from .engine import StitchEngine, StitchRun
from .fallback import FallbackStitcher
from .features import FeatureStitcher

__all__ = [
    "Composite",
    "FallbackStitcher",
    "FeatureStitcher",
    "StitchEngine",
    "StitchRun",
    "Stitcher",
]
