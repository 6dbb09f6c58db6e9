"""Frame sources feeding the capture scheduler, plus frame decoding helpers."""
from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

import cv2
import numpy as np
from loguru import logger

_DATA_URL_PREFIX = "data:"


@runtime_checkable
class FrameSource(Protocol):
    """Pull-based supplier of live frames.

    ``capture_frame`` must not block: it returns ``None`` when no fresh frame
    is ready, and the scheduler skips that slot.
    """

    def capture_frame(self) -> Optional[np.ndarray]:
        ...


def _to_rgb(image: np.ndarray) -> np.ndarray:
    """Convert an OpenCV BGR/BGRA/gray decode to RGB(A)."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def _normalise_depth(image: np.ndarray) -> np.ndarray:
    if image.dtype == np.uint8:
        return image
    if image.dtype == np.uint16:
        return (image // 257).astype(np.uint8)
    return np.clip(image, 0, 255).astype(np.uint8)


def load_frame(path: Path) -> np.ndarray:
    """Load an image file as an RGB or RGBA uint8 array."""
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise FileNotFoundError(f"Unable to read frame image: {path}")
    image = _to_rgb(_normalise_depth(image))
    logger.debug("Loaded frame {} with shape {}", path, image.shape)
    return image


def decode_frame(payload: bytes | str) -> np.ndarray:
    """Decode encoded image bytes or a ``data:image/...;base64,`` URL."""
    if isinstance(payload, str):
        if not payload.startswith(_DATA_URL_PREFIX) or "," not in payload:
            raise ValueError("Expected a base64 data URL")
        header, encoded = payload.split(",", 1)
        if ";base64" not in header:
            raise ValueError(f"Unsupported data URL encoding: {header}")
        try:
            payload = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise ValueError("Data URL payload is not valid base64") from exc

    buffer = np.frombuffer(payload, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED) if buffer.size else None
    if image is None:
        raise ValueError("Unable to decode frame payload")
    return _to_rgb(_normalise_depth(image))


def load_frames(paths: Iterable[Path]) -> list[np.ndarray]:
    """Load frame files in the given order."""
    return [load_frame(Path(path)) for path in paths]


class ImageFileFrameSource:
    """Replays frames from image files, one per capture attempt.

    Paths set to ``None`` simulate a camera that had no frame ready.
    """

    def __init__(self, paths: Sequence[Optional[Path]]) -> None:
        self._paths = list(paths)
        self._cursor = 0

    def capture_frame(self) -> Optional[np.ndarray]:
        if self._cursor >= len(self._paths):
            return None
        path = self._paths[self._cursor]
        self._cursor += 1
        if path is None:
            return None
        return load_frame(Path(path))


class VideoDeviceFrameSource:
    """Live camera frames through ``cv2.VideoCapture``."""

    def __init__(self, device: int | str = 0, width: int = 1280, height: int = 720) -> None:
        self.device = device
        self.width = width
        self.height = height
        self._capture: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        capture = cv2.VideoCapture(self.device)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Unable to open camera device {self.device!r}")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture
        logger.info(
            "Camera {} opened at {}x{}",
            self.device,
            int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def __enter__(self) -> "VideoDeviceFrameSource":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def capture_frame(self) -> Optional[np.ndarray]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        if not ok or frame is None:
            logger.debug("Camera {} had no frame ready", self.device)
            return None
        return _to_rgb(frame)
