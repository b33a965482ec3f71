import asyncio

import pytest

from clip_ingest.config import TranscodeProfile
from clip_ingest.ingest.ingest_errors import TranscodeFailed
from clip_ingest.ingest.ingest_models import MediaAsset, SourceKind
from clip_ingest.media.transcoder_runtime import SharedTranscoderRuntime
from clip_ingest.media.transcoding import TranscodingEngine
from tests.mocks.media import TRANSCODED_BYTES, FakeTranscoderRuntime

RAW = b"\x1aE\xdf\xa3webm-recording-bytes"


def make_asset(mime: str = "video/webm") -> MediaAsset:
    return MediaAsset(
        raw_blob=RAW,
        mime_type=mime,
        size_bytes=len(RAW),
        source_kind=SourceKind.LIVE_RECORDING,
    )


def build_engine(runtime: FakeTranscoderRuntime, *, fallback_enabled: bool = True) -> TranscodingEngine:
    return TranscodingEngine(
        shared_runtime=SharedTranscoderRuntime(lambda: runtime),
        profile=TranscodeProfile(),
        fallback_enabled=fallback_enabled,
        clock_ms=lambda: 1700000000123,
    )


@pytest.mark.asyncio
async def test_successful_conversion_returns_quicktime_output() -> None:
    runtime = FakeTranscoderRuntime()
    engine = build_engine(runtime)

    result = await engine.convert(make_asset())

    assert result.used_fallback is False
    assert result.output_blob == TRANSCODED_BYTES
    assert result.output_mime == "video/quicktime"
    assert result.filename == "first-impression-1700000000123.mov"
    assert runtime.exec_calls == [
        [
            "-i",
            "input.webm",
            "-c:v",
            "libx264",
            "-preset",
            "ultrafast",
            "-crf",
            "28",
            "-c:a",
            "aac",
            "-b:a",
            "64k",
            "-movflags",
            "+faststart",
            "output.mov",
        ]
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("step", ["load", "write", "exec", "read"])
async def test_failure_at_any_step_falls_back_to_original_bytes(step: str) -> None:
    runtime = FakeTranscoderRuntime(fail_at=step)
    engine = build_engine(runtime)

    result = await engine.convert(make_asset())

    assert result.used_fallback is True
    assert result.output_blob == RAW
    assert result.output_mime == "video/quicktime"


@pytest.mark.asyncio
async def test_empty_output_falls_back() -> None:
    runtime = FakeTranscoderRuntime(output=b"")
    engine = build_engine(runtime)

    result = await engine.convert(make_asset())

    assert result.used_fallback is True
    assert result.output_blob == RAW


@pytest.mark.asyncio
@pytest.mark.parametrize("step", [None, "write", "exec", "read"])
async def test_runtime_files_are_removed_after_every_attempt(step) -> None:
    runtime = FakeTranscoderRuntime(fail_at=step)
    engine = build_engine(runtime)

    await engine.convert(make_asset("video/mp4"))

    assert runtime.files == {}
    assert set(runtime.deleted) == {"input.mp4", "output.mov"}


@pytest.mark.asyncio
async def test_runtime_is_loaded_once_across_attempts() -> None:
    runtime = FakeTranscoderRuntime()
    engine = build_engine(runtime)

    await asyncio.gather(engine.convert(make_asset()), engine.convert(make_asset()))
    await engine.convert(make_asset())

    assert runtime.load_calls == 1
    assert len(runtime.exec_calls) == 3


@pytest.mark.asyncio
async def test_disabled_fallback_escalates_to_transcode_failed() -> None:
    runtime = FakeTranscoderRuntime(fail_at="exec")
    engine = build_engine(runtime, fallback_enabled=False)

    with pytest.raises(TranscodeFailed):
        await engine.convert(make_asset())

    assert runtime.files == {}
