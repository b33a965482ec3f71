import asyncio

import pytest

from clip_ingest.capture.capture_live import LiveCaptureSource
from clip_ingest.config import CaptureConstraints
from clip_ingest.ingest.ingest_errors import CameraAccessDenied, NoMediaSelectedError
from clip_ingest.ingest.ingest_models import SourceKind
from tests.mocks.media import FakeCaptureDevice


class ManualClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def build_source(device: FakeCaptureDevice, *, max_seconds: float = 30, clock=None) -> LiveCaptureSource:
    return LiveCaptureSource(
        device=device,
        constraints=CaptureConstraints(),
        max_recording_seconds=max_seconds,
        clock=clock or ManualClock(),
    )


@pytest.mark.asyncio
async def test_start_camera_requests_constrained_stream() -> None:
    device = FakeCaptureDevice()
    source = build_source(device)

    await source.start_camera()

    constraints = device.constraints[0]
    assert constraints.ideal_width == 180
    assert constraints.max_frame_rate == 15
    assert constraints.aspect_ratio == pytest.approx(9 / 16)
    assert constraints.noise_suppression is True
    assert source.stream_active is True


@pytest.mark.asyncio
async def test_new_stream_stops_the_previous_one() -> None:
    device = FakeCaptureDevice()
    source = build_source(device)

    await source.start_camera()
    await source.start_camera()

    first, second = device.streams
    assert first.stopped is True
    assert all(track.ended for track in first.tracks)
    assert second.stopped is False


@pytest.mark.asyncio
async def test_denied_device_maps_to_camera_access_denied() -> None:
    source = build_source(FakeCaptureDevice(denied=True))

    with pytest.raises(CameraAccessDenied) as exc_info:
        await source.start_camera()

    assert exc_info.value.user_message == "Failed to access camera. Please check permissions."
    assert source.stream is None


def test_recording_requires_an_active_stream() -> None:
    source = build_source(FakeCaptureDevice())

    with pytest.raises(CameraAccessDenied):
        source.start_recording()


@pytest.mark.asyncio
async def test_stop_concatenates_chunks_into_one_webm_asset() -> None:
    clock = ManualClock(100.0)
    device = FakeCaptureDevice(chunks=[b"aa", b"bb", b"cc"])
    source = build_source(device, clock=clock)
    await source.start_camera()

    source.start_recording()
    assert source.is_recording is True
    clock.now = 112.5
    asset = await source.stop_recording()

    assert asset.raw_blob == b"aabbcc"
    assert asset.mime_type == "video/webm"
    assert asset.source_kind is SourceKind.LIVE_RECORDING
    assert asset.duration_seconds == pytest.approx(12.5)
    assert device.streams[0].encode_kwargs == {
        "mime_type": "video/webm;codecs=vp9",
        "video_bits_per_second": 250_000,
    }
    assert source.is_recording is False
    assert source.recorded is asset


@pytest.mark.asyncio
async def test_concurrent_stops_share_one_result() -> None:
    source = build_source(FakeCaptureDevice())
    await source.start_camera()
    source.start_recording()

    first, second = await asyncio.gather(source.stop_recording(), source.stop_recording())

    assert first is second


@pytest.mark.asyncio
async def test_countdown_stops_recording_automatically() -> None:
    clock = ManualClock(0.0)
    source = build_source(FakeCaptureDevice(), max_seconds=0.05, clock=clock)
    await source.start_camera()
    source.start_recording()
    clock.now = 90.0

    asset = await asyncio.wait_for(source.wait_for_recording(), timeout=2)

    assert asset.duration_seconds == pytest.approx(0.05)
    assert source.is_recording is False


@pytest.mark.asyncio
async def test_remaining_seconds_counts_down() -> None:
    clock = ManualClock(0.0)
    source = build_source(FakeCaptureDevice(), max_seconds=30, clock=clock)
    await source.start_camera()

    assert source.remaining_seconds == 0
    source.start_recording()
    clock.now = 12.4
    assert source.remaining_seconds == 17

    await source.stop_recording()
    assert source.remaining_seconds == 0


@pytest.mark.asyncio
async def test_reset_recording_reuses_active_stream() -> None:
    device = FakeCaptureDevice()
    source = build_source(device)
    await source.start_camera()
    source.start_recording()
    await source.stop_recording()

    await source.reset_recording()

    assert source.recorded is None
    assert len(device.streams) == 1


@pytest.mark.asyncio
async def test_reset_recording_discards_a_take_in_progress() -> None:
    device = FakeCaptureDevice()
    source = build_source(device)
    await source.start_camera()
    source.start_recording()

    await source.reset_recording()

    assert source.is_recording is False
    assert source.recorded is None
    assert source.remaining_seconds == 0
    assert source.stream_active is True
    assert len(device.streams) == 1
    with pytest.raises(NoMediaSelectedError):
        await source.stop_recording()


@pytest.mark.asyncio
async def test_reset_recording_reacquires_ended_stream() -> None:
    device = FakeCaptureDevice()
    source = build_source(device)
    await source.start_camera()
    device.streams[0].stop()

    await source.reset_recording()

    assert len(device.streams) == 2
    assert source.stream_active is True


@pytest.mark.asyncio
async def test_release_stops_stream_and_wakes_waiters() -> None:
    device = FakeCaptureDevice()
    source = build_source(device)
    await source.start_camera()
    source.start_recording()
    waiter = asyncio.create_task(source.wait_for_recording())
    await asyncio.sleep(0)

    source.release()

    with pytest.raises(NoMediaSelectedError):
        await asyncio.wait_for(waiter, timeout=2)
    assert device.streams[0].stopped is True
    assert source.stream is None
    assert source.is_recording is False


@pytest.mark.asyncio
async def test_stop_without_recording_raises() -> None:
    source = build_source(FakeCaptureDevice())

    with pytest.raises(NoMediaSelectedError):
        await source.stop_recording()
