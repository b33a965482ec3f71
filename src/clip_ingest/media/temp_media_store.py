"""Temporary, revocable file handles backing in-memory clips."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class TempMediaHandle:
    """Descriptor of one leased temp file."""

    media_id: str
    path: Path


@dataclass(slots=True)
class TempMediaStore:
    """Owns every temp file it hands out until the handle is revoked."""

    root: Path
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _outstanding: dict[str, TempMediaHandle] = field(default_factory=dict, init=False)

    def ensure_structure(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def lease(self, data: bytes, *, suffix: str = ".bin") -> TempMediaHandle:
        """Write ``data`` to a fresh temp file and register the handle."""
        directory = self.ensure_structure()
        media_id = uuid.uuid4().hex
        target = directory / f"{media_id}{suffix}"
        target.write_bytes(data)
        handle = TempMediaHandle(media_id=media_id, path=target)
        self._outstanding[media_id] = handle
        self.log.debug(
            "media.temp.leased",
            extra={"media_id": media_id, "path": str(target), "size_bytes": len(data)},
        )
        return handle

    def revoke(self, handle: TempMediaHandle) -> None:
        self._outstanding.pop(handle.media_id, None)
        self._remove_single_path(handle.path)
        self.log.debug("media.temp.revoked", extra={"media_id": handle.media_id})

    def revoke_all(self) -> int:
        """Revoke every outstanding handle; used on teardown."""
        handles = list(self._outstanding.values())
        for handle in handles:
            self.revoke(handle)
        if handles:
            self.log.info("media.temp.revoked_all", extra={"count": len(handles)})
        return len(handles)

    @contextmanager
    def leased(self, data: bytes, *, suffix: str = ".bin") -> Iterator[TempMediaHandle]:
        handle = self.lease(data, suffix=suffix)
        try:
            yield handle
        finally:
            self.revoke(handle)

    @property
    def outstanding(self) -> list[TempMediaHandle]:
        return list(self._outstanding.values())

    def _remove_single_path(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            self.log.warning("media.temp.remove_failed", extra={"path": str(path)}, exc_info=True)


_SUFFIXES = {
    "video/webm": ".webm",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/x-matroska": ".mkv",
}


def suffix_for_mime(mime_type: str | None, default: str = ".webm") -> str:
    """Return a file suffix for a (possibly parameterised) video MIME type."""
    if not mime_type:
        return default
    base = mime_type.split(";", 1)[0].strip().lower()
    return _SUFFIXES.get(base, default)
