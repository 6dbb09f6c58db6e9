"""Input/output helpers for frame sources, projection and panorama export."""

from .export import encode_png, to_data_url, write_json, write_png
from .frame_source import (
    FrameSource,
    ImageFileFrameSource,
    VideoDeviceFrameSource,
    decode_frame,
    load_frame,
    load_frames,
)
from .projection import ProjectionConverter

__all__ = [
    "FrameSource",
    "ImageFileFrameSource",
    "ProjectionConverter",
    "VideoDeviceFrameSource",
    "decode_frame",
    "encode_png",
    "load_frame",
    "load_frames",
    "to_data_url",
    "write_json",
    "write_png",
]
