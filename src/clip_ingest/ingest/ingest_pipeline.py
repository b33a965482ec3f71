"""Orchestrator owning the ingestion state machine."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import structlog
from fastapi import UploadFile

from ..capture.capture_file import DroppedItem, FileCaptureSource
from ..capture.capture_live import LiveCaptureSource
from ..logging import bind_attempt, clear_attempt
from ..media.duration_probe import DurationProbe
from ..media.temp_media_store import TempMediaStore
from ..media.transcoder_runtime import SharedTranscoderRuntime
from ..media.transcoding import TranscodingEngine
from ..progress.progress_narrator import Narration, ProgressNarrator
from ..storage.persistence_client import PersistenceClient
from ..storage.storage_signature import SignatureClient
from ..storage.storage_upload import RemoteUploader
from .ingest_errors import (
    CameraAccessDenied,
    DurationExceeded,
    IngestError,
    InvalidTransitionError,
    NoMediaSelectedError,
    PersistFailed,
    PipelineBusyError,
)
from .ingest_models import (
    FailureReason,
    MediaAsset,
    PipelineFailure,
    PipelineState,
    RemoteReference,
    SourceKind,
    ValidationResult,
)
from .validation import SourceValidator

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.SELECTING}),
    PipelineState.SELECTING: frozenset(
        {PipelineState.VALIDATING, PipelineState.CONVERTING, PipelineState.IDLE}
    ),
    PipelineState.VALIDATING: frozenset(
        {PipelineState.SELECTING, PipelineState.REJECTED, PipelineState.ERRORED}
    ),
    PipelineState.REJECTED: frozenset({PipelineState.IDLE}),
    PipelineState.CONVERTING: frozenset(
        {PipelineState.REQUESTING_SIGNATURE, PipelineState.ERRORED}
    ),
    PipelineState.REQUESTING_SIGNATURE: frozenset(
        {PipelineState.UPLOADING, PipelineState.ERRORED}
    ),
    PipelineState.UPLOADING: frozenset({PipelineState.PERSISTING, PipelineState.ERRORED}),
    PipelineState.PERSISTING: frozenset({PipelineState.SUCCEEDED, PipelineState.ERRORED}),
    PipelineState.SUCCEEDED: frozenset({PipelineState.IDLE}),
    PipelineState.ERRORED: frozenset({PipelineState.IDLE}),
}

BUSY_STATES = frozenset(
    {
        PipelineState.VALIDATING,
        PipelineState.CONVERTING,
        PipelineState.REQUESTING_SIGNATURE,
        PipelineState.UPLOADING,
        PipelineState.PERSISTING,
    }
)

# The narrator runs only inside this window.
NARRATED_STATES = frozenset(
    {
        PipelineState.CONVERTING,
        PipelineState.REQUESTING_SIGNATURE,
        PipelineState.UPLOADING,
        PipelineState.PERSISTING,
    }
)


@dataclass(slots=True, frozen=True)
class PipelineSnapshot:
    """Read-only view handed to presentation layers."""

    state: PipelineState
    attempt_started_at: float | None
    asset: MediaAsset | None
    validation: ValidationResult | None
    error: PipelineFailure | None
    narration: Narration | None
    reference: RemoteReference | None
    used_fallback: bool | None
    camera_active: bool
    recording: bool
    recording_remaining_seconds: int


Listener = Callable[[PipelineSnapshot], None]


@dataclass(slots=True)
class IngestionPipeline:
    """Sequences capture, validation, transcoding, upload and persistence.

    Only one attempt runs at a time. Every step is awaited in order; a
    failure is terminal for the attempt and needs an explicit ``retry`` or
    ``clear``. ``teardown`` releases the device stream, temp handles and the
    transcoder reference without aborting in-flight network calls: their
    results are discarded when they settle.
    """

    file_source: FileCaptureSource
    probe: DurationProbe
    validator: SourceValidator
    transcoder: TranscodingEngine
    signature_client: SignatureClient
    uploader: RemoteUploader
    persistence: PersistenceClient
    temp_store: TempMediaStore
    shared_runtime: SharedTranscoderRuntime
    live_source: LiveCaptureSource | None = None
    auto_upload_live: bool = True
    narration_interval_seconds: float = 1.0
    clock: Callable[[], float] = time.monotonic
    _state: PipelineState = field(default=PipelineState.IDLE, init=False)
    _asset: MediaAsset | None = field(default=None, init=False)
    _validation: ValidationResult | None = field(default=None, init=False)
    _error: PipelineFailure | None = field(default=None, init=False)
    _reference: RemoteReference | None = field(default=None, init=False)
    _used_fallback: bool | None = field(default=None, init=False)
    _attempt_started_at: float | None = field(default=None, init=False)
    _attempt_id: str = field(default="", init=False)
    _narrator: ProgressNarrator = field(init=False)
    _watcher: asyncio.Task[None] | None = field(default=None, init=False)
    _listeners: list[Listener] = field(default_factory=list, init=False)
    _closed: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self._narrator = ProgressNarrator(
            interval_seconds=self.narration_interval_seconds,
            clock=self.clock,
            on_update=self._on_narration,
        )
        self._attempt_id = uuid.uuid4().hex
        self.shared_runtime.acquire()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def asset(self) -> MediaAsset | None:
        return self._asset

    @property
    def narrator(self) -> ProgressNarrator:
        return self._narrator

    def snapshot(self) -> PipelineSnapshot:
        live = self.live_source
        return PipelineSnapshot(
            state=self._state,
            attempt_started_at=self._attempt_started_at,
            asset=self._asset,
            validation=self._validation,
            error=self._error,
            narration=self._narrator.current,
            reference=self._reference,
            used_fallback=self._used_fallback,
            camera_active=bool(live and live.stream_active),
            recording=bool(live and live.is_recording),
            recording_remaining_seconds=live.remaining_seconds if live else 0,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    async def select_file(
        self,
        content: bytes,
        *,
        content_type: str | None,
        filename: str | None = None,
    ) -> ValidationResult:
        self._ensure_selectable()
        asset = self.file_source.accept(content, content_type=content_type, filename=filename)
        return await self._validate(asset)

    async def select_drop(self, items: Sequence[DroppedItem]) -> ValidationResult:
        self._ensure_selectable()
        asset = self.file_source.accept_drop(items)
        return await self._validate(asset)

    async def select_upload(self, upload: UploadFile) -> ValidationResult:
        self._ensure_selectable()
        asset = await self.file_source.accept_upload(upload)
        return await self._validate(asset)

    # ------------------------------------------------------------------
    # Live recording
    # ------------------------------------------------------------------
    async def start_camera(self) -> None:
        self._ensure_selectable()
        live = self._require_live()
        await live.start_camera()
        self._notify()

    async def start_recording(self) -> None:
        self._ensure_selectable()
        live = self._require_live()
        if live.is_recording:
            return
        if not live.stream_active:
            await live.start_camera()
        live.start_recording()
        self._cancel_watcher()
        self._watcher = asyncio.create_task(self._watch_recording(live, self._attempt_id))
        self._notify()

    async def stop_recording(self) -> PipelineSnapshot:
        """Stop the take and wait until it has been validated (and uploaded)."""
        live = self._require_live()
        await live.stop_recording()
        watcher = self._watcher
        if watcher is not None:
            await asyncio.wait({watcher})
        return self.snapshot()

    async def reset_recording(self) -> None:
        """Discard a recorded take; safe to call repeatedly."""
        self._ensure_selectable()
        live = self._require_live()
        self._cancel_watcher()
        await live.reset_recording()
        if self._asset is not None and self._asset.source_kind is SourceKind.LIVE_RECORDING:
            self._drop_asset()
            if self._state is PipelineState.SELECTING:
                await self._enter(PipelineState.IDLE)
        self._notify()

    async def _watch_recording(self, live: LiveCaptureSource, attempt_id: str) -> None:
        try:
            asset = await live.wait_for_recording()
        except NoMediaSelectedError:
            return
        if attempt_id != self._attempt_id:
            return
        try:
            self._ensure_selectable()
            result = await self._validate(asset)
            if result.ok and self.auto_upload_live:
                await self.start_upload()
        except IngestError as exc:
            # Already recorded on the snapshot.
            logger.info("ingest.pipeline.live_attempt_failed", reason=exc.reason.value)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    async def _validate(self, asset: MediaAsset) -> ValidationResult:
        self._attempt_id = uuid.uuid4().hex
        attempt_id = self._attempt_id
        self._error = None
        self._reference = None
        self._used_fallback = None
        if self._state in (PipelineState.SUCCEEDED, PipelineState.ERRORED):
            await self._enter(PipelineState.IDLE)
        if self._state is PipelineState.IDLE:
            await self._enter(PipelineState.SELECTING)
        self._asset = asset
        self._validation = None
        await self._enter(PipelineState.VALIDATING)

        try:
            duration = await self.probe.probe(asset)
        except IngestError as exc:
            if attempt_id == self._attempt_id:
                await self._reject(exc, exc.user_message)
            raise
        except Exception as exc:
            if attempt_id == self._attempt_id:
                await self._fail(exc)
            raise

        if attempt_id != self._attempt_id:
            logger.info("ingest.pipeline.stale_result", step="validate")
            return self.validator.validate_duration(duration)

        result = self.validator.validate_duration(duration)
        if not result.ok:
            message = result.message or DurationExceeded.default_message
            self._validation = result
            exc = DurationExceeded(message, user_message=message)
            await self._reject(exc, message)
            raise exc

        self._asset = asset.with_duration(duration)
        self._validation = result
        await self._enter(PipelineState.SELECTING)
        logger.info(
            "ingest.pipeline.validated",
            duration_seconds=duration,
            source_kind=asset.source_kind.value,
        )
        return result

    async def _reject(self, exc: IngestError, message: str) -> None:
        """Validation failures return to the pre-selection display."""
        self._error = PipelineFailure(
            reason=exc.reason,
            message=message,
            state=PipelineState.VALIDATING,
        )
        self._asset = None
        await self._enter(PipelineState.REJECTED)
        await self._enter(PipelineState.IDLE)
        logger.warning("ingest.pipeline.rejected", reason=exc.reason.value, detail=str(exc))

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------
    async def start_upload(self) -> RemoteReference | None:
        """Run one attempt from conversion to persistence.

        Returns ``None`` when the attempt was superseded by ``clear`` or
        ``teardown`` while a step was in flight.
        """
        if self._state in BUSY_STATES:
            raise PipelineBusyError(f"pipeline is {self._state.value}")
        asset = self._asset
        if self._state is not PipelineState.SELECTING or asset is None or self._validation is None:
            raise NoMediaSelectedError("no validated clip is selected")

        attempt_id = self._attempt_id
        bind_attempt(attempt_id)
        self._error = None
        self._reference = None
        self._used_fallback = None
        self._attempt_started_at = self.clock()
        logger.info(
            "ingest.pipeline.attempt.start",
            size_bytes=asset.size_bytes,
            source_kind=asset.source_kind.value,
        )
        try:
            await self._enter(PipelineState.CONVERTING)
            result = await self.transcoder.convert(asset)
            if attempt_id != self._attempt_id:
                return self._discard("convert")
            self._used_fallback = result.used_fallback

            await self._enter(PipelineState.REQUESTING_SIGNATURE)
            credentials = await self.signature_client.request_credentials()
            if attempt_id != self._attempt_id:
                return self._discard("signature")

            await self._enter(PipelineState.UPLOADING)
            reference = await self.uploader.upload(result, credentials)
            if attempt_id != self._attempt_id:
                return self._discard("upload")

            await self._enter(PipelineState.PERSISTING)
            await self.persistence.commit(reference)
            if attempt_id != self._attempt_id:
                return self._discard("persist")
            await self._refresh_status()
            if attempt_id != self._attempt_id:
                return self._discard("status")
        except Exception as exc:
            if attempt_id == self._attempt_id:
                await self._fail(exc)
            raise
        finally:
            clear_attempt()

        self._reference = reference
        self._drop_asset()
        await self._enter(PipelineState.SUCCEEDED)
        logger.info(
            "ingest.pipeline.attempt.succeeded",
            public_id=reference.public_id,
            used_fallback=self._used_fallback,
        )
        return reference

    async def _refresh_status(self) -> None:
        try:
            await self.persistence.refresh_status()
        except PersistFailed as exc:
            # The reference is committed; a stale status view is not an attempt failure.
            logger.warning("ingest.pipeline.status_refresh_failed", detail=str(exc))

    def _discard(self, step: str) -> None:
        logger.info("ingest.pipeline.stale_result", step=step)
        return None

    async def _fail(self, exc: Exception) -> None:
        if isinstance(exc, IngestError):
            reason, message = exc.reason, exc.user_message
        else:
            reason, message = FailureReason.INTERNAL_ERROR, IngestError.default_message
        failed_in = self._state
        self._error = PipelineFailure(reason=reason, message=message, state=failed_in)
        if failed_in in BUSY_STATES:
            await self._enter(PipelineState.ERRORED)
        logger.warning(
            "ingest.pipeline.attempt.failed",
            reason=reason.value,
            state=failed_in.value,
            detail=str(exc),
            exc_info=not isinstance(exc, IngestError),
        )

    # ------------------------------------------------------------------
    # Acknowledgement / cancellation
    # ------------------------------------------------------------------
    async def retry(self) -> PipelineSnapshot:
        """Acknowledge a failure; the held clip is re-armed for a new attempt."""
        if self._state is not PipelineState.ERRORED:
            raise InvalidTransitionError(f"cannot retry from {self._state.value}")
        self._error = None
        await self._enter(PipelineState.IDLE)
        if self._asset is not None and self._validation is not None:
            await self._enter(PipelineState.SELECTING)
        else:
            self._drop_asset()
        return self.snapshot()

    async def clear(self) -> PipelineSnapshot:
        """Return to Idle with nothing held; in-flight results are discarded."""
        self._attempt_id = uuid.uuid4().hex
        self._cancel_watcher()
        if self.live_source is not None:
            self.live_source.release()
        self.file_source.release()
        self._drop_asset()
        self._error = None
        self._reference = None
        self._used_fallback = None
        await self._reset_state()
        logger.info("ingest.pipeline.cleared")
        return self.snapshot()

    async def teardown(self) -> None:
        """Release every held resource; safe to call more than once."""
        self._attempt_id = uuid.uuid4().hex
        self._cancel_watcher()
        if self.live_source is not None:
            self.live_source.release()
        self.file_source.release()
        revoked = self.temp_store.revoke_all()
        self._drop_asset()
        await self._reset_state()
        if not self._closed:
            self._closed = True
            await self.shared_runtime.release()
        logger.info("ingest.pipeline.teardown", revoked_handles=revoked)

    async def remove_reference(self, record_id: str, video_url: str) -> None:
        await self.persistence.remove_stored(record_id, video_url)
        await self._refresh_status()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _enter(self, target: PipelineState) -> None:
        current = self._state
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"{current.value} -> {target.value}")
        self._state = target
        logger.info("ingest.pipeline.transition", source=current.value, target=target.value)
        await self._sync_narrator()
        self._notify()

    async def _reset_state(self) -> None:
        previous = self._state
        self._state = PipelineState.IDLE
        self._attempt_started_at = None
        await self._narrator.stop()
        if previous is not PipelineState.IDLE:
            logger.info("ingest.pipeline.transition", source=previous.value, target="idle")
        self._notify()

    async def _sync_narrator(self) -> None:
        if self._state in NARRATED_STATES:
            if not self._narrator.active and self._attempt_started_at is not None:
                self._narrator.start(self._attempt_started_at)
        elif self._narrator.active or self._narrator.current is not None:
            await self._narrator.stop()

    def _ensure_selectable(self) -> None:
        if self._closed:
            raise InvalidTransitionError("pipeline has been torn down")
        if self._state in BUSY_STATES:
            raise PipelineBusyError(f"pipeline is {self._state.value}")

    def _require_live(self) -> LiveCaptureSource:
        if self.live_source is None:
            raise CameraAccessDenied("live capture is not configured")
        return self.live_source

    def _drop_asset(self) -> None:
        self._asset = None
        self._validation = None

    def _cancel_watcher(self) -> None:
        watcher = self._watcher
        self._watcher = None
        if watcher is not None and not watcher.done() and watcher is not asyncio.current_task():
            watcher.cancel()

    def _on_narration(self, narration: Narration) -> None:
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "BUSY_STATES",
    "IngestionPipeline",
    "NARRATED_STATES",
    "PipelineSnapshot",
]
