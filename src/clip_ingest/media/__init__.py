"""Media helpers: temp handles, duration probing and transcoding."""

from .duration_probe import DurationProbe
from .temp_media_store import TempMediaHandle, TempMediaStore
from .transcoder_runtime import (
    FfmpegRuntime,
    RuntimeArtifacts,
    SharedTranscoderRuntime,
    TranscoderRuntime,
    TranscoderRuntimeError,
)
from .transcoding import TranscodingEngine

__all__ = [
    "DurationProbe",
    "FfmpegRuntime",
    "RuntimeArtifacts",
    "SharedTranscoderRuntime",
    "TempMediaHandle",
    "TempMediaStore",
    "TranscoderRuntime",
    "TranscoderRuntimeError",
    "TranscodingEngine",
]
