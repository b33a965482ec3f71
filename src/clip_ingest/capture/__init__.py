"""Capture sources producing a MediaAsset: file selection and live recording."""

from .capture_base import CaptureSource
from .capture_device import (
    CaptureDevice,
    DeviceStream,
    DeviceUnavailableError,
    FfmpegCaptureDevice,
    MediaTrack,
)
from .capture_file import DroppedItem, FileCaptureSource
from .capture_live import ChunkedRecorder, LiveCaptureSource

__all__ = [
    "CaptureDevice",
    "CaptureSource",
    "ChunkedRecorder",
    "DeviceStream",
    "DeviceUnavailableError",
    "DroppedItem",
    "FfmpegCaptureDevice",
    "FileCaptureSource",
    "LiveCaptureSource",
    "MediaTrack",
]
