from __future__ import annotations

from pathlib import Path

import pytest

from clip_ingest.config import IngestSettings
from clip_ingest.dependencies import build_pipeline
from clip_ingest.ingest.ingest_pipeline import IngestionPipeline
from clip_ingest.media.transcoder_runtime import SharedTranscoderRuntime
from tests.mocks.ffprobe_process import FakeFfprobe, install_ffprobe
from tests.mocks.http_client import DummyAsyncClient, DummyHTTPResponse, install_client
from tests.mocks.media import FakeCaptureDevice, FakeTranscoderRuntime

BACKEND_URL = "https://backend.test"
STORAGE_URL = "https://storage.test/v1_1"
SECURE_URL = "https://res.storage.test/cv-cloud/video/upload/v1700000000/first-impressions/clip.mov"

SIGNATURE_KEY = "POST /api/cloudinary/signature-request-no-preset"
UPLOAD_KEY = "POST /video/upload"
COMMIT_KEY = "POST /api/first-impression"
REMOVE_KEY = "DELETE /api/first-impression"
STATUS_KEY = "GET /api/first-impression/status"


def signature_ok() -> DummyHTTPResponse:
    return DummyHTTPResponse(
        200,
        json_data={"apiKey": "api-key-1", "signature": "sig-abc", "timestamp": 1700000000},
    )


def upload_ok() -> DummyHTTPResponse:
    return DummyHTTPResponse(
        200,
        json_data={"secure_url": SECURE_URL, "public_id": "first-impressions/clip"},
    )


def commit_ok() -> DummyHTTPResponse:
    return DummyHTTPResponse(201, json_data={"ok": True})


def status_ok() -> DummyHTTPResponse:
    return DummyHTTPResponse(200, json_data={"hasFirstImpression": True})


@pytest.fixture
def settings(tmp_path: Path) -> IngestSettings:
    return IngestSettings(
        backend_base_url=BACKEND_URL,
        backend_auth_token="session-token",
        storage_upload_base_url=STORAGE_URL,
        temp_root=tmp_path / "tmp",
        transcoder_cache_dir=tmp_path / "runtime",
        narration_interval_seconds=0.01,
    )


@pytest.fixture
def fake_runtime() -> FakeTranscoderRuntime:
    return FakeTranscoderRuntime()


@pytest.fixture
def shared_runtime(fake_runtime: FakeTranscoderRuntime) -> SharedTranscoderRuntime:
    return SharedTranscoderRuntime(lambda: fake_runtime)


@pytest.fixture
def capture_device() -> FakeCaptureDevice:
    return FakeCaptureDevice()


@pytest.fixture
def http_client(monkeypatch: pytest.MonkeyPatch) -> DummyAsyncClient:
    return install_client(monkeypatch, DummyAsyncClient())


@pytest.fixture
def ffprobe(monkeypatch: pytest.MonkeyPatch) -> FakeFfprobe:
    return install_ffprobe(monkeypatch, FakeFfprobe(duration=10.0))


@pytest.fixture
def pipeline(
    settings: IngestSettings,
    capture_device: FakeCaptureDevice,
    shared_runtime: SharedTranscoderRuntime,
) -> IngestionPipeline:
    return build_pipeline(
        settings,
        capture_device=capture_device,
        shared_runtime=shared_runtime,
    )


def queue_happy_path(client: DummyAsyncClient) -> DummyAsyncClient:
    return (
        client.queue(SIGNATURE_KEY, signature_ok())
        .queue(UPLOAD_KEY, upload_ok())
        .queue(COMMIT_KEY, commit_ok())
        .queue(STATUS_KEY, status_ok())
    )
