"""Dependency wiring helpers."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import FastAPI

from .capture.capture_device import CaptureDevice, FfmpegCaptureDevice
from .capture.capture_file import FileCaptureSource
from .capture.capture_live import LiveCaptureSource
from .config import CaptureConstraints, IngestSettings, TranscodeProfile
from .ingest.ingest_api import router as ingest_router
from .ingest.ingest_pipeline import IngestionPipeline
from .ingest.validation import SourceValidator
from .media.duration_probe import DurationProbe
from .media.temp_media_store import TempMediaStore
from .media.transcoder_runtime import (
    FfmpegRuntime,
    RuntimeArtifacts,
    SharedTranscoderRuntime,
    TranscoderRuntime,
)
from .media.transcoding import TranscodingEngine
from .storage.persistence_client import PersistenceClient
from .storage.storage_signature import SignatureClient
from .storage.storage_upload import RemoteUploader


def runtime_factory_from_settings(settings: IngestSettings) -> Callable[[], TranscoderRuntime]:
    artifacts = None
    if settings.transcoder_artifact_base_url:
        artifacts = RuntimeArtifacts(
            base_url=settings.transcoder_artifact_base_url,
            cache_dir=settings.transcoder_cache_dir,
        )

    def factory() -> TranscoderRuntime:
        return FfmpegRuntime(binary=settings.ffmpeg_binary, artifacts=artifacts)

    return factory


def build_pipeline(
    settings: IngestSettings,
    *,
    capture_device: CaptureDevice | None = None,
    shared_runtime: SharedTranscoderRuntime | None = None,
) -> IngestionPipeline:
    """Construct every pipeline component from settings."""
    limits = settings.ingest_limits()
    endpoints = settings.backend_endpoints()
    target = settings.storage_target()
    validator = SourceValidator(limits)
    temp_store = TempMediaStore(root=settings.temp_root)
    runtime = shared_runtime or SharedTranscoderRuntime(runtime_factory_from_settings(settings))
    device = capture_device or FfmpegCaptureDevice(
        binary=settings.ffmpeg_binary,
        video_format=settings.capture_video_format,
        video_device=settings.capture_video_device,
        audio_format=settings.capture_audio_format,
        audio_device=settings.capture_audio_device,
    )

    return IngestionPipeline(
        file_source=FileCaptureSource(validator=validator),
        probe=DurationProbe(temp_store=temp_store, ffprobe_binary=settings.ffprobe_binary),
        validator=validator,
        transcoder=TranscodingEngine(
            shared_runtime=runtime,
            profile=TranscodeProfile(),
            fallback_enabled=settings.transcode_fallback_enabled,
        ),
        signature_client=SignatureClient(
            endpoints=endpoints,
            target=target,
            shape=settings.credential_shape(),
        ),
        uploader=RemoteUploader(target=target),
        persistence=PersistenceClient(endpoints=endpoints),
        temp_store=temp_store,
        shared_runtime=runtime,
        live_source=LiveCaptureSource(
            device=device,
            constraints=CaptureConstraints(),
            max_recording_seconds=settings.max_recording_seconds,
        ),
        auto_upload_live=settings.auto_upload_live,
        narration_interval_seconds=settings.narration_interval_seconds,
    )


def include_routers(app: FastAPI, settings: IngestSettings, pipeline: IngestionPipeline) -> None:
    """Mount routers and attach the pipeline."""
    app.state.settings = settings
    app.state.ingest_pipeline = pipeline
    app.include_router(ingest_router)
