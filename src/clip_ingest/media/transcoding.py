"""Client-side transcoding to the delivery container, with fallback."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..config import TranscodeProfile
from ..ingest.ingest_errors import TranscodeFailed
from ..ingest.ingest_models import MediaAsset, TranscodeResult
from .temp_media_store import suffix_for_mime
from .transcoder_runtime import SharedTranscoderRuntime, TranscoderRuntime, TranscoderRuntimeError

logger = logging.getLogger(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class TranscodingEngine:
    """Converts a raw clip to H.264/AAC QuickTime.

    Any failure while loading the runtime or during the write / exec / read
    cycle falls back to re-labelling the original bytes with the target
    type. ``TranscodeResult.used_fallback`` tells the caller this happened.
    With ``fallback_enabled=False`` the failure is raised as
    :class:`TranscodeFailed` instead.
    """

    shared_runtime: SharedTranscoderRuntime
    profile: TranscodeProfile = field(default_factory=TranscodeProfile)
    fallback_enabled: bool = True
    clock_ms: Callable[[], int] = _epoch_ms
    log: logging.Logger = field(default_factory=lambda: logger)

    async def convert(self, asset: MediaAsset) -> TranscodeResult:
        filename = f"{self.profile.output_prefix}-{self.clock_ms()}.mov"
        input_name = f"input{suffix_for_mime(asset.mime_type)}"
        started = time.monotonic()
        try:
            async with self.shared_runtime.session() as runtime:
                try:
                    await runtime.write_file(input_name, asset.raw_blob)
                    await runtime.exec(self.profile.command(input_name))
                    output = await runtime.read_file(self.profile.output_name)
                finally:
                    await self._cleanup(runtime, input_name)
            if not output:
                raise TranscoderRuntimeError("transcoder produced an empty file")
        except Exception as exc:
            if not self.fallback_enabled:
                self.log.error("transcode.failed", extra={"error": str(exc)})
                raise TranscodeFailed(str(exc)) from exc
            self.log.warning(
                "transcode.fallback",
                extra={
                    "error": str(exc),
                    "input_mime": asset.mime_type,
                    "size_bytes": asset.size_bytes,
                },
            )
            return TranscodeResult(
                output_blob=asset.raw_blob,
                output_mime=self.profile.output_mime,
                used_fallback=True,
                filename=filename,
            )

        self.log.info(
            "transcode.done",
            extra={
                "input_bytes": asset.size_bytes,
                "output_bytes": len(output),
                "duration_seconds": round(time.monotonic() - started, 3),
            },
        )
        return TranscodeResult(
            output_blob=output,
            output_mime=self.profile.output_mime,
            used_fallback=False,
            filename=filename,
        )

    async def _cleanup(self, runtime: TranscoderRuntime, input_name: str) -> None:
        for name in (input_name, self.profile.output_name):
            try:
                await runtime.delete_file(name)
            except (TranscoderRuntimeError, OSError):
                self.log.warning("transcode.cleanup_failed", extra={"file": name}, exc_info=True)
