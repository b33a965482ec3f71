"""Live camera recording capture source."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..config import CaptureConstraints
from ..ingest.ingest_errors import CameraAccessDenied, NoMediaSelectedError
from ..ingest.ingest_models import MediaAsset, SourceKind
from .capture_base import CaptureSource
from .capture_device import CaptureDevice, DeviceStream, DeviceUnavailableError

logger = logging.getLogger(__name__)

RECORDED_MIME_TYPE = "video/webm"


@dataclass(slots=True)
class ChunkedRecorder:
    """Collects encoded chunks from a stream until stopped."""

    stream: DeviceStream
    mime_type: str
    video_bits_per_second: int
    chunks: list[bytes] = field(default_factory=list)
    _task: asyncio.Task[None] | None = field(default=None, init=False)

    @property
    def recording(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.chunks.clear()
        self._task = asyncio.create_task(self._collect())

    async def _collect(self) -> None:
        async for chunk in self.stream.encode(
            mime_type=self.mime_type,
            video_bits_per_second=self.video_bits_per_second,
        ):
            if chunk:
                self.chunks.append(chunk)

    async def stop(self) -> bytes:
        await self.stream.stop_encoding()
        if self._task is not None:
            await self._task
        return b"".join(self.chunks)


@dataclass(slots=True)
class LiveCaptureSource(CaptureSource):
    """Owns the device stream exclusively while it is active.

    A recording stops on request or automatically after
    ``max_recording_seconds``. The stream is stopped when superseded by a
    new one and on :meth:`release`.
    """

    device: CaptureDevice
    constraints: CaptureConstraints = field(default_factory=CaptureConstraints)
    max_recording_seconds: float = 30.0
    clock: Callable[[], float] = time.monotonic
    log: logging.Logger = field(default_factory=lambda: logger)
    source_kind: SourceKind = SourceKind.LIVE_RECORDING
    _stream: DeviceStream | None = field(default=None, init=False)
    _recorder: ChunkedRecorder | None = field(default=None, init=False)
    _recording_started_at: float | None = field(default=None, init=False)
    _countdown: asyncio.Task[None] | None = field(default=None, init=False)
    _finishing: asyncio.Future[MediaAsset] | None = field(default=None, init=False)
    _recorded: MediaAsset | None = field(default=None, init=False)
    _recorded_event: asyncio.Event = field(default_factory=asyncio.Event, init=False)

    @property
    def stream(self) -> DeviceStream | None:
        return self._stream

    @property
    def stream_active(self) -> bool:
        return self._stream is not None and self._stream.active

    @property
    def is_recording(self) -> bool:
        return self._recorder is not None

    @property
    def recorded(self) -> MediaAsset | None:
        return self._recorded

    @property
    def remaining_seconds(self) -> int:
        if self._recording_started_at is None or self._recorder is None:
            return 0
        elapsed = self.clock() - self._recording_started_at
        return max(0, int(self.max_recording_seconds - elapsed))

    async def start_camera(self) -> DeviceStream:
        self._stop_stream()
        try:
            stream = await self.device.open_stream(self.constraints)
        except (DeviceUnavailableError, OSError) as exc:
            self.log.warning("capture.camera.denied", extra={"error": str(exc)})
            raise CameraAccessDenied(str(exc)) from exc
        self._stream = stream
        self.log.info("capture.camera.started", extra={"tracks": [t.kind for t in stream.tracks]})
        return stream

    def start_recording(self) -> None:
        if self._stream is None or not self._stream.active:
            raise CameraAccessDenied("camera is not started")
        if self._recorder is not None:
            return
        self._recorded = None
        self._recorded_event.clear()
        recorder = ChunkedRecorder(
            stream=self._stream,
            mime_type=self.constraints.recording_mime_type,
            video_bits_per_second=self.constraints.video_bits_per_second,
        )
        recorder.start()
        self._recorder = recorder
        self._recording_started_at = self.clock()
        self._countdown = asyncio.create_task(self._auto_stop())
        self.log.info(
            "capture.recording.started",
            extra={"max_seconds": self.max_recording_seconds},
        )

    async def stop_recording(self) -> MediaAsset:
        if self._finishing is None:
            if self._recorder is None:
                if self._recorded is not None:
                    return self._recorded
                raise NoMediaSelectedError("no recording in progress")
            self._finishing = asyncio.ensure_future(self._finish())
        return await asyncio.shield(self._finishing)

    async def wait_for_recording(self) -> MediaAsset:
        await self._recorded_event.wait()
        if self._recorded is None:
            raise NoMediaSelectedError("recording was discarded")
        return self._recorded

    async def reset_recording(self) -> None:
        """Discard the take; reacquire the camera if the stream has ended.

        A take still in progress is stopped first and thrown away.
        """
        if self._recorder is not None or self._finishing is not None:
            await self.stop_recording()
            self.log.info("capture.recording.discarded")
        self._recorded = None
        self._recorded_event.clear()
        if not self.stream_active:
            await self.start_camera()

    def release(self) -> None:
        self._cancel_countdown()
        self._recorder = None
        self._recording_started_at = None
        self._recorded = None
        self._stop_stream()
        self._recorded_event.set()

    async def _auto_stop(self) -> None:
        await asyncio.sleep(self.max_recording_seconds)
        self.log.info("capture.recording.countdown_elapsed")
        await self.stop_recording()

    async def _finish(self) -> MediaAsset:
        recorder = self._recorder
        if recorder is None:
            raise NoMediaSelectedError("no recording in progress")
        started_at = self._recording_started_at
        if started_at is None:
            started_at = self.clock()
        self._cancel_countdown()
        try:
            blob = await recorder.stop()
        except Exception:
            self._recorded_event.set()
            raise
        finally:
            self._recorder = None
            self._recording_started_at = None
            self._finishing = None
        elapsed = min(self.clock() - started_at, self.max_recording_seconds)
        asset = MediaAsset(
            raw_blob=blob,
            mime_type=RECORDED_MIME_TYPE,
            size_bytes=len(blob),
            source_kind=SourceKind.LIVE_RECORDING,
            filename="recording.webm",
            duration_seconds=elapsed,
        )
        self._recorded = asset
        self._recorded_event.set()
        self.log.info(
            "capture.recording.stopped",
            extra={"size_bytes": asset.size_bytes, "chunks": len(recorder.chunks)},
        )
        return asset

    def _cancel_countdown(self) -> None:
        countdown = self._countdown
        self._countdown = None
        if countdown is not None and not countdown.done() and countdown is not asyncio.current_task():
            countdown.cancel()

    def _stop_stream(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self.log.info("capture.camera.released")
        self._stream = None
