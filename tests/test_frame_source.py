from pathlib import Path

import cv2
import numpy as np
import pytest

from panocapture.io.frame_source import (
    FrameSource,
    ImageFileFrameSource,
    VideoDeviceFrameSource,
    decode_frame,
    load_frame,
    load_frames,
)
from panocapture.models.frames import FrameSequence, validate_raster


def _write_bgr(path: Path, bgr: np.ndarray) -> Path:
    assert cv2.imwrite(str(path), bgr)
    return path


def test_load_frame_converts_to_rgb(tmp_path: Path):
    bgr = np.zeros((10, 12, 3), dtype=np.uint8)
    bgr[..., 0] = 255  # blue in OpenCV order
    frame = load_frame(_write_bgr(tmp_path / "blue.png", bgr))
    assert frame.shape == (10, 12, 3)
    assert tuple(frame[0, 0]) == (0, 0, 255)


def test_load_frame_expands_grayscale(tmp_path: Path):
    gray = np.full((8, 8), 77, dtype=np.uint8)
    frame = load_frame(_write_bgr(tmp_path / "gray.png", gray))
    assert frame.shape == (8, 8, 3)
    assert (frame == 77).all()


def test_load_frame_scales_sixteen_bit_input(tmp_path: Path):
    deep = np.full((4, 4, 3), 65535, dtype=np.uint16)
    frame = load_frame(_write_bgr(tmp_path / "deep.png", deep))
    assert frame.dtype == np.uint8
    assert (frame == 255).all()


def test_load_frame_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_frame(tmp_path / "missing.png")


def test_load_frames_keeps_order(tmp_path: Path):
    paths = [
        _write_bgr(tmp_path / f"frame_{index}.png", np.full((6, 6, 3), index * 20, dtype=np.uint8))
        for index in range(3)
    ]
    frames = load_frames(paths)
    assert [int(frame[0, 0, 0]) for frame in frames] == [0, 20, 40]


@pytest.mark.parametrize(
    "payload",
    [b"", b"not an image", "plain text", "data:image/png,abc", "data:image/png;base64,@@@"],
)
def test_decode_frame_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        decode_frame(payload)


def test_image_file_source_replays_files_and_gaps(tmp_path: Path):
    first = _write_bgr(tmp_path / "a.png", np.full((5, 5, 3), 10, dtype=np.uint8))
    second = _write_bgr(tmp_path / "b.png", np.full((5, 5, 3), 30, dtype=np.uint8))
    source = ImageFileFrameSource([first, None, second])

    assert isinstance(source, FrameSource)
    assert source.capture_frame()[0, 0, 0] == 10
    assert source.capture_frame() is None
    assert source.capture_frame()[0, 0, 0] == 30
    assert source.capture_frame() is None


def test_unopened_video_device_yields_no_frame():
    source = VideoDeviceFrameSource(device=0)
    assert isinstance(source, FrameSource)
    assert source.capture_frame() is None
    source.close()


def test_frame_sequence_freezes_copies():
    image = np.full((4, 4, 3), 9, dtype=np.uint8)
    sequence = FrameSequence.from_images([image, image], timestamps_ms=[0, 666.7])
    image[:] = 0

    assert len(sequence) == 2
    assert sequence.is_stitchable
    assert sequence.timestamps_ms == (0.0, 666.7)
    assert (sequence[0] == 9).all()
    assert not sequence[1].flags.writeable


@pytest.mark.parametrize(
    "image",
    [
        np.zeros((4, 4), dtype=np.float32),
        np.zeros((4, 4, 2), dtype=np.uint8),
        np.zeros((4,), dtype=np.uint8),
        np.zeros((0, 4, 3), dtype=np.uint8),
        "pixels",
    ],
)
def test_validate_raster_rejects_unusable_input(image):
    with pytest.raises(ValueError):
        validate_raster(image)
