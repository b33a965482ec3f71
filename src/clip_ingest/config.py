"""Configuration for the clip ingestion pipeline.

Settings are read from ``CLIP_INGEST_*`` environment variables. Components
never touch the environment directly: they receive the small dataclasses
built by the helpers on :class:`IngestSettings`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


@dataclass(slots=True)
class IngestLimits:
    """Gate values applied before a clip enters the pipeline."""

    accepted_type_prefix: str
    max_file_bytes: int
    size_limit_label: str
    max_duration_seconds: float
    chunk_size_bytes: int = 1 * MIB


@dataclass(slots=True)
class BackendEndpoints:
    base_url: str
    signature_path: str
    persistence_path: str
    status_path: str
    auth_token: str | None = None
    timeout_seconds: float = 30.0

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def auth_headers(self) -> dict[str, str]:
        if not self.auth_token:
            return {}
        return {"Authorization": f"Bearer {self.auth_token}"}


@dataclass(slots=True)
class CredentialShape:
    """Field names used by the signature backend response."""

    api_key_field: str = "apiKey"
    signature_field: str = "signature"
    timestamp_field: str = "timestamp"
    error_field: str = "error"


@dataclass(slots=True)
class StorageTarget:
    upload_base_url: str
    cloud_name: str
    resource_type: str = "video"
    folder: str | None = None
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class CaptureConstraints:
    """Constraints requested from the capture device.

    Low resolution, low frame rate and a portrait aspect hint keep the
    intermediate recording small; it is always transcoded afterwards.
    """

    ideal_width: int = 180
    max_width: int = 240
    ideal_height: int = 320
    max_height: int = 360
    ideal_frame_rate: int = 10
    max_frame_rate: int = 15
    aspect_ratio: float = 9 / 16
    facing_mode: str = "user"
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    recording_mime_type: str = "video/webm;codecs=vp9"
    video_bits_per_second: int = 250_000


@dataclass(slots=True)
class TranscodeProfile:
    """Fixed transcode command: H.264 fast preset, AAC audio, fast-start."""

    video_codec: str = "libx264"
    preset: str = "ultrafast"
    crf: int = 28
    audio_codec: str = "aac"
    audio_bitrate: str = "64k"
    output_name: str = "output.mov"
    output_mime: str = "video/quicktime"
    output_prefix: str = "first-impression"

    def command(self, input_name: str) -> list[str]:
        return [
            "-i",
            input_name,
            "-c:v",
            self.video_codec,
            "-preset",
            self.preset,
            "-crf",
            str(self.crf),
            "-c:a",
            self.audio_codec,
            "-b:a",
            self.audio_bitrate,
            "-movflags",
            "+faststart",
            self.output_name,
        ]


def _default_temp_root() -> Path:
    return Path("./var/tmp")


def _default_runtime_cache() -> Path:
    return Path("./var/runtime")


class IngestSettings(BaseSettings):
    """Pydantic settings container for the ingestion pipeline."""

    model_config = cast(Any, SettingsConfigDict(env_prefix="CLIP_INGEST_"))

    backend_base_url: str = Field(
        default="http://localhost:5000",
        description="Base URL of the application backend (signature + persistence).",
    )
    backend_auth_token: str | None = Field(
        default=None,
        description="Bearer token forwarded to the application backend.",
    )
    signature_path: str = Field(
        default="/api/cloudinary/signature-request-no-preset",
        description="Backend path issuing single-use upload credentials.",
    )
    persistence_path: str = Field(
        default="/api/first-impression",
        description="Backend path committing or removing the stored reference.",
    )
    status_path: str = Field(
        default="/api/first-impression/status",
        description="Backend path refetched after a successful commit.",
    )
    backend_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for backend requests in seconds.",
    )
    storage_upload_base_url: str = Field(
        default="https://api.cloudinary.com/v1_1",
        description="Object storage upload API base.",
    )
    storage_cloud_name: str = Field(
        default="cv-cloud",
        min_length=1,
        description="Destination cloud the credentials are valid for.",
    )
    storage_resource_type: str = Field(default="video")
    storage_folder: str | None = Field(
        default=None,
        description="Optional destination folder sent with the upload form.",
    )
    storage_timeout_seconds: float = Field(default=120.0, gt=0)
    credential_api_key_field: str = Field(default="apiKey")
    credential_signature_field: str = Field(default="signature")
    credential_timestamp_field: str = Field(default="timestamp")
    max_duration_seconds: float = Field(
        default=31,
        gt=0,
        description="Longest clip accepted by the validation gate.",
    )
    max_file_bytes: int = Field(
        default=100 * MIB,
        ge=1,
        description="Byte ceiling enforced on selected files.",
    )
    size_limit_label: str = Field(
        default="30MB",
        description="Size limit shown to users. Does not match max_file_bytes.",
    )
    accepted_type_prefix: str = Field(default="video/")
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    transcoder_artifact_base_url: str | None = Field(
        default=None,
        description="When set, the transcoder runtime is fetched from this location once.",
    )
    transcoder_cache_dir: Path = Field(default_factory=_default_runtime_cache)
    transcode_fallback_enabled: bool = Field(
        default=True,
        description="Re-label the original clip when transcoding fails.",
    )
    temp_root: Path = Field(default_factory=_default_temp_root)
    narration_interval_seconds: float = Field(default=1.0, gt=0)
    max_recording_seconds: float = Field(default=30.0, gt=0)
    capture_video_format: str = Field(default="v4l2")
    capture_video_device: str = Field(default="/dev/video0")
    capture_audio_format: str = Field(default="alsa")
    capture_audio_device: str = Field(default="default")
    auto_upload_live: bool = Field(
        default=True,
        description="Start the upload as soon as a live recording validates.",
    )

    def ingest_limits(self) -> IngestLimits:
        return IngestLimits(
            accepted_type_prefix=self.accepted_type_prefix,
            max_file_bytes=self.max_file_bytes,
            size_limit_label=self.size_limit_label,
            max_duration_seconds=self.max_duration_seconds,
        )

    def backend_endpoints(self) -> BackendEndpoints:
        return BackendEndpoints(
            base_url=self.backend_base_url,
            signature_path=self.signature_path,
            persistence_path=self.persistence_path,
            status_path=self.status_path,
            auth_token=self.backend_auth_token,
            timeout_seconds=self.backend_timeout_seconds,
        )

    def storage_target(self) -> StorageTarget:
        return StorageTarget(
            upload_base_url=self.storage_upload_base_url,
            cloud_name=self.storage_cloud_name,
            resource_type=self.storage_resource_type,
            folder=self.storage_folder,
            timeout_seconds=self.storage_timeout_seconds,
        )

    def credential_shape(self) -> CredentialShape:
        return CredentialShape(
            api_key_field=self.credential_api_key_field,
            signature_field=self.credential_signature_field,
            timestamp_field=self.credential_timestamp_field,
        )


def load_settings() -> IngestSettings:
    """Load settings from the environment."""
    return IngestSettings()


__all__ = [
    "BackendEndpoints",
    "CaptureConstraints",
    "CredentialShape",
    "IngestLimits",
    "IngestSettings",
    "StorageTarget",
    "TranscodeProfile",
    "load_settings",
]
