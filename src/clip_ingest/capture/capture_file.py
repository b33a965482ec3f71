"""File selection / drag-and-drop capture source."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from fastapi import UploadFile

from ..ingest.ingest_errors import InvalidSourceType
from ..ingest.ingest_models import MediaAsset, SourceKind
from ..ingest.validation import SourceValidator
from .capture_base import CaptureSource

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DroppedItem:
    """One entry of a drag-and-drop payload."""

    content: bytes = field(repr=False)
    content_type: str | None
    filename: str | None = None


@dataclass(slots=True)
class FileCaptureSource(CaptureSource):
    """Accepts a user-chosen file; rejects before any probe or network call."""

    validator: SourceValidator
    log: logging.Logger = field(default_factory=lambda: logger)
    source_kind: SourceKind = SourceKind.FILE_SELECT

    def accept(
        self,
        content: bytes,
        *,
        content_type: str | None,
        filename: str | None = None,
    ) -> MediaAsset:
        self.validator.check_content_type(content_type)
        self.validator.check_size(len(content))
        asset = MediaAsset(
            raw_blob=content,
            mime_type=content_type or "application/octet-stream",
            size_bytes=len(content),
            source_kind=SourceKind.FILE_SELECT,
            filename=filename or "upload",
        )
        self.log.info(
            "capture.file.accepted",
            extra={
                "filename": asset.filename,
                "size_bytes": asset.size_bytes,
                "content_type": asset.mime_type,
            },
        )
        return asset

    def accept_drop(self, items: Sequence[DroppedItem]) -> MediaAsset:
        """Only the first dropped item is considered."""
        if not items:
            raise InvalidSourceType("nothing was dropped")
        first = items[0]
        if len(items) > 1:
            self.log.info("capture.file.drop_extra_ignored", extra={"ignored": len(items) - 1})
        return self.accept(first.content, content_type=first.content_type, filename=first.filename)

    async def accept_upload(self, upload: UploadFile) -> MediaAsset:
        """Read a multipart upload in chunks, stopping at the byte ceiling."""
        self.validator.check_content_type(upload.content_type)
        limits = self.validator.limits
        chunks: list[bytes] = []
        size = 0
        try:
            while True:
                chunk = await upload.read(limits.chunk_size_bytes)
                if not chunk:
                    break
                size += len(chunk)
                if size > limits.max_file_bytes:
                    self.validator.check_size(size)
                chunks.append(chunk)
        finally:
            await upload.close()
        return self.accept(b"".join(chunks), content_type=upload.content_type, filename=upload.filename)

    def release(self) -> None:
        return None
