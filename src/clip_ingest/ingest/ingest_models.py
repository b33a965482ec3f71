"""Data structures shared across the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum


class SourceKind(StrEnum):
    FILE_SELECT = "file_select"
    LIVE_RECORDING = "live_recording"


class PipelineState(StrEnum):
    """Stages of a single ingestion attempt."""

    IDLE = "idle"
    SELECTING = "selecting"
    VALIDATING = "validating"
    REJECTED = "rejected"
    CONVERTING = "converting"
    REQUESTING_SIGNATURE = "requesting_signature"
    UPLOADING = "uploading"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    ERRORED = "errored"


class FailureReason(StrEnum):
    """Failure reasons reported to presentation layers."""

    INVALID_SOURCE_TYPE = "invalid_source_type"
    SOURCE_TOO_LARGE = "source_too_large"
    DURATION_UNAVAILABLE = "duration_unavailable"
    DURATION_EXCEEDED = "duration_exceeded"
    TRANSCODE_FAILED = "transcode_failed"
    SIGNATURE_DENIED = "signature_denied"
    UPLOAD_REJECTED = "upload_rejected"
    PERSIST_FAILED = "persist_failed"
    CAMERA_ACCESS_DENIED = "camera_access_denied"
    PIPELINE_BUSY = "pipeline_busy"
    NO_MEDIA_SELECTED = "no_media_selected"
    INTERNAL_ERROR = "internal_error"


@dataclass(slots=True, frozen=True)
class MediaAsset:
    """Raw clip produced by a capture source, before transcoding."""

    raw_blob: bytes = field(repr=False)
    mime_type: str
    size_bytes: int
    source_kind: SourceKind
    filename: str = "upload"
    duration_seconds: float | None = None

    def with_duration(self, duration_seconds: float) -> "MediaAsset":
        return replace(self, duration_seconds=duration_seconds)


@dataclass(slots=True, frozen=True)
class ValidationResult:
    ok: bool
    max_allowed_seconds: float
    max_allowed_bytes: int
    reason_code: FailureReason | None = None
    message: str | None = None
    duration_seconds: float | None = None


@dataclass(slots=True)
class TranscodeResult:
    """Output of one conversion attempt; may be uploaded exactly once."""

    output_blob: bytes = field(repr=False)
    output_mime: str
    used_fallback: bool
    filename: str
    consumed: bool = False

    def take(self) -> bytes:
        """Hand the blob over to the uploader."""
        if self.consumed:
            raise RuntimeError("TranscodeResult has already been uploaded")
        self.consumed = True
        return self.output_blob


@dataclass(slots=True)
class UploadCredentials:
    """Short-lived signed credentials authorising a single upload."""

    api_key: str
    signature: str = field(repr=False)
    timestamp: str
    destination_cloud: str
    folder: str | None = None
    resource_type: str = "video"
    expires_implicitly_after_use: bool = True
    consumed: bool = False

    def consume(self) -> None:
        if self.consumed and self.expires_implicitly_after_use:
            raise RuntimeError("UploadCredentials are single-use")
        self.consumed = True


@dataclass(slots=True, frozen=True)
class RemoteReference:
    url: str
    public_id: str


@dataclass(slots=True, frozen=True)
class PipelineFailure:
    reason: FailureReason
    message: str
    state: PipelineState


__all__ = [
    "FailureReason",
    "MediaAsset",
    "PipelineFailure",
    "PipelineState",
    "RemoteReference",
    "SourceKind",
    "TranscodeResult",
    "UploadCredentials",
    "ValidationResult",
]
