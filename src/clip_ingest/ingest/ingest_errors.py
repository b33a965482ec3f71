"""Domain-specific exceptions for the ingestion pipeline."""

from __future__ import annotations

from .ingest_models import FailureReason


class IngestError(Exception):
    """Base class for ingestion errors.

    ``user_message`` is the single human-readable line shown to the user;
    ``str(exc)`` keeps the diagnostic detail for logs.
    """

    reason: FailureReason = FailureReason.INTERNAL_ERROR
    default_message = "Something went wrong. Please try again."

    def __init__(self, detail: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(detail or self.default_message)
        self.user_message = user_message or self.default_message


class InvalidSourceType(IngestError):
    """Raised when the declared content type is not a video kind."""

    reason = FailureReason.INVALID_SOURCE_TYPE
    default_message = "Please select a valid video file."


class SourceTooLarge(IngestError):
    """Raised when the selected file exceeds the byte ceiling."""

    reason = FailureReason.SOURCE_TOO_LARGE
    default_message = "File is too large."

    def __init__(self, size_bytes: int, limit_bytes: int, *, user_message: str | None = None) -> None:
        super().__init__(
            f"source is {size_bytes} bytes, limit is {limit_bytes}",
            user_message=user_message,
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class DurationUnavailable(IngestError):
    """Raised when media metadata cannot be read."""

    reason = FailureReason.DURATION_UNAVAILABLE
    default_message = "Could not verify video duration. Please try another file."


class DurationExceeded(IngestError):
    """Raised when the clip is longer than the configured ceiling."""

    reason = FailureReason.DURATION_EXCEEDED
    default_message = "Video is too long."


class TranscodeFailed(IngestError):
    """Raised only when fallback substitution is disabled."""

    reason = FailureReason.TRANSCODE_FAILED
    default_message = "Failed to convert video format."


class SignatureDenied(IngestError):
    """Raised when upload credentials cannot be obtained."""

    reason = FailureReason.SIGNATURE_DENIED
    default_message = "Failed to prepare upload. Please try again."


class UploadRejected(IngestError):
    """Raised when object storage refuses the upload."""

    reason = FailureReason.UPLOAD_REJECTED
    default_message = "Failed to upload video. Please try again."

    def __init__(self, status: int | None, body: str) -> None:
        label = status if status is not None else "network"
        super().__init__(f"upload failed: {label} {body}")
        self.status = status
        self.body = body


class PersistFailed(IngestError):
    """Raised when the backend does not store the remote reference."""

    reason = FailureReason.PERSIST_FAILED
    default_message = "Failed to save video. Please try again."


class CameraAccessDenied(IngestError):
    """Raised when the capture device cannot be opened."""

    reason = FailureReason.CAMERA_ACCESS_DENIED
    default_message = "Failed to access camera. Please check permissions."


class PipelineBusyError(IngestError):
    """Raised when a new attempt is requested while one is in progress."""

    reason = FailureReason.PIPELINE_BUSY
    default_message = "An upload is already in progress."


class NoMediaSelectedError(IngestError):
    """Raised when an upload is started without a validated clip."""

    reason = FailureReason.NO_MEDIA_SELECTED
    default_message = "Please select a video file first."


class InvalidTransitionError(RuntimeError):
    """Raised when the state machine is asked for an illegal transition."""


__all__ = [
    "CameraAccessDenied",
    "DurationExceeded",
    "DurationUnavailable",
    "IngestError",
    "InvalidSourceType",
    "InvalidTransitionError",
    "NoMediaSelectedError",
    "PersistFailed",
    "PipelineBusyError",
    "SignatureDenied",
    "SourceTooLarge",
    "TranscodeFailed",
    "UploadRejected",
]
