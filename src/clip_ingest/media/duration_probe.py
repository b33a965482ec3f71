"""Read a clip's playback duration with ``ffprobe``."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field

from ..ingest.ingest_errors import DurationUnavailable
from ..ingest.ingest_models import MediaAsset
from .temp_media_store import TempMediaStore, suffix_for_mime

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DurationProbe:
    """Loads only container metadata; the temp handle is always revoked."""

    temp_store: TempMediaStore
    ffprobe_binary: str = "ffprobe"
    log: logging.Logger = field(default_factory=lambda: logger)

    async def probe(self, asset: MediaAsset) -> float:
        """Return the duration in seconds or raise :class:`DurationUnavailable`.

        Live recordings streamed in chunks often carry no duration in their
        container header; for those the recorder's own measurement, already
        stored on the asset, is used instead.
        """
        with self.temp_store.leased(asset.raw_blob, suffix=suffix_for_mime(asset.mime_type)) as handle:
            try:
                duration = await self._read_duration(str(handle.path))
            except DurationUnavailable:
                if asset.duration_seconds is not None:
                    self.log.info(
                        "media.probe.using_recorded_duration",
                        extra={"duration_seconds": asset.duration_seconds},
                    )
                    return asset.duration_seconds
                raise
        self.log.info(
            "media.probe.done",
            extra={"duration_seconds": duration, "mime_type": asset.mime_type},
        )
        return duration

    async def _read_duration(self, path: str) -> float:
        cmd = [
            self.ffprobe_binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            path,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as exc:
            self.log.error("media.probe.spawn_failed", extra={"binary": self.ffprobe_binary})
            raise DurationUnavailable(f"cannot run {self.ffprobe_binary}: {exc}") from exc

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            self.log.warning(
                "media.probe.failed",
                extra={"returncode": process.returncode, "stderr": message[-500:]},
            )
            raise DurationUnavailable(f"ffprobe exited with {process.returncode}: {message}")

        return parse_probe_duration(stdout)


def parse_probe_duration(raw: bytes | str) -> float:
    """Extract ``format.duration`` from ffprobe JSON output."""
    try:
        payload = json.loads(raw)
        value = float(payload["format"]["duration"])
    except (ValueError, KeyError, TypeError) as exc:
        raise DurationUnavailable("ffprobe reported no usable duration") from exc
    if not math.isfinite(value) or value < 0:
        raise DurationUnavailable(f"ffprobe reported invalid duration {value}")
    return value
