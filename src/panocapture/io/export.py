"""PNG and JSON export of finished panoramas."""
from __future__ import annotations

import base64
import json
import time
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from ..errors import EncodingFailed
from ..models.panorama import Panorama

EXPORT_VERSION = "1.0.0"


def encode_png(image: np.ndarray) -> bytes:
    """Losslessly encode an RGB, RGBA or gray uint8 raster as PNG."""
    if not isinstance(image, np.ndarray) or image.dtype != np.uint8 or image.size == 0:
        raise EncodingFailed("PNG export needs a non-empty uint8 raster")
    if image.ndim == 3 and image.shape[2] == 4:
        bgr = cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA)
    elif image.ndim == 3 and image.shape[2] == 3:
        bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
    else:
        bgr = image
    try:
        ok, buffer = cv2.imencode(".png", bgr)
    except (cv2.error, MemoryError) as exc:
        raise EncodingFailed(f"PNG encoding failed: {exc}") from exc
    if not ok:
        raise EncodingFailed("PNG encoder reported failure")
    return buffer.tobytes()


def to_data_url(image: np.ndarray) -> str:
    """Return ``data:image/png;base64,...`` for viewers that take URLs."""
    return "data:image/png;base64," + base64.b64encode(encode_png(image)).decode("ascii")


def default_export_name(suffix: str, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"panorama-{stamp}.{suffix}"


def write_png(panorama: Panorama, path: Path) -> Path:
    path = Path(path)
    path.write_bytes(encode_png(panorama.image))
    logger.info("Wrote {}x{} panorama to {}", panorama.width, panorama.height, path)
    return path


def write_json(panorama: Panorama, path: Path) -> Path:
    """Write the panorama as an embedded PNG data URL plus capture metadata."""
    payload = {
        "panorama": to_data_url(panorama.image),
        "frames": panorama.frame_count,
        "timestamp": panorama.created_at.isoformat(),
        "version": EXPORT_VERSION,
        "metadata": panorama.to_dict(),
    }
    path = Path(path)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("Wrote panorama bundle to {}", path)
    return path
