"""Source checks and the duration gate."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from ..config import IngestLimits
from .ingest_errors import InvalidSourceType, SourceTooLarge
from .ingest_models import FailureReason, ValidationResult

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Render seconds as ``M:SS`` (both parts floored)."""
    if not math.isfinite(seconds) or seconds < 0:
        seconds = 0
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


@dataclass(slots=True)
class SourceValidator:
    """Checks a candidate before any probe, transcode or network call."""

    limits: IngestLimits

    def check_content_type(self, content_type: str | None) -> None:
        if not content_type or not content_type.startswith(self.limits.accepted_type_prefix):
            logger.warning(
                "ingest.source.unsupported_media",
                extra={"content_type": content_type},
            )
            raise InvalidSourceType(f"content type {content_type!r} is not a video")

    def check_size(self, size_bytes: int) -> None:
        if size_bytes > self.limits.max_file_bytes:
            logger.warning(
                "ingest.source.too_large",
                extra={"size_bytes": size_bytes, "limit_bytes": self.limits.max_file_bytes},
            )
            raise SourceTooLarge(
                size_bytes,
                self.limits.max_file_bytes,
                user_message=f"File size must be less than {self.limits.size_limit_label}.",
            )

    def validate_duration(self, duration_seconds: float) -> ValidationResult:
        return validate_duration(
            duration_seconds,
            max_seconds=self.limits.max_duration_seconds,
            max_bytes=self.limits.max_file_bytes,
        )


def validate_duration(
    duration_seconds: float,
    *,
    max_seconds: float,
    max_bytes: int,
) -> ValidationResult:
    """Pure duration gate; no side effects beyond the returned result."""
    if duration_seconds > max_seconds:
        message = (
            f"Video is too long. Maximum duration is {format_duration(max_seconds)}. "
            f"Your video is {format_duration(duration_seconds)}."
        )
        return ValidationResult(
            ok=False,
            max_allowed_seconds=max_seconds,
            max_allowed_bytes=max_bytes,
            reason_code=FailureReason.DURATION_EXCEEDED,
            message=message,
            duration_seconds=duration_seconds,
        )
    return ValidationResult(
        ok=True,
        max_allowed_seconds=max_seconds,
        max_allowed_bytes=max_bytes,
        duration_seconds=duration_seconds,
    )
