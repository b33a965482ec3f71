import asyncio
import hashlib
import json
from pathlib import Path

import pytest

from clip_ingest.media.transcoder_runtime import (
    FfmpegRuntime,
    RuntimeArtifacts,
    SharedTranscoderRuntime,
    TranscoderRuntimeError,
)
from tests.mocks.ffprobe_process import FakeProcess
from tests.mocks.http_client import DummyAsyncClient, DummyHTTPResponse, install_client
from tests.mocks.media import FakeTranscoderRuntime

BINARY = b"\x7fELF fake ffmpeg build"


def manifest_for(payload: bytes) -> DummyHTTPResponse:
    body = json.dumps({"sha256": hashlib.sha256(payload).hexdigest()}).encode()
    return DummyHTTPResponse(200, content=body)


@pytest.mark.asyncio
async def test_load_fetches_both_artifacts_once(tmp_path: Path, monkeypatch) -> None:
    client = install_client(monkeypatch, DummyAsyncClient())
    client.queue("GET /ffmpeg-core.json", manifest_for(BINARY))
    client.queue("GET /ffmpeg-core", DummyHTTPResponse(200, content=BINARY))
    artifacts = RuntimeArtifacts(base_url="https://cdn.test/runtime/", cache_dir=tmp_path / "cache")
    runtime = FfmpegRuntime(artifacts=artifacts)

    await runtime.load()
    await runtime.load()

    assert runtime.loaded is True
    assert [call.url for call in client.calls] == [
        "https://cdn.test/runtime/ffmpeg-core.json",
        "https://cdn.test/runtime/ffmpeg-core",
    ]
    executable = tmp_path / "cache" / "ffmpeg-core"
    assert executable.read_bytes() == BINARY
    assert executable.stat().st_mode & 0o100
    await runtime.close()


@pytest.mark.asyncio
async def test_checksum_mismatch_fails_load(tmp_path: Path, monkeypatch) -> None:
    client = install_client(monkeypatch, DummyAsyncClient())
    client.queue("GET /ffmpeg-core.json", manifest_for(b"something else"))
    client.queue("GET /ffmpeg-core", DummyHTTPResponse(200, content=BINARY))
    runtime = FfmpegRuntime(
        artifacts=RuntimeArtifacts(base_url="https://cdn.test", cache_dir=tmp_path)
    )

    with pytest.raises(TranscoderRuntimeError, match="checksum"):
        await runtime.load()

    assert runtime.loaded is False


@pytest.mark.asyncio
async def test_missing_artifact_fails_load(tmp_path: Path, monkeypatch) -> None:
    client = install_client(monkeypatch, DummyAsyncClient())
    client.queue("GET /ffmpeg-core.json", DummyHTTPResponse(404, text="not found"))
    client.queue("GET /ffmpeg-core", DummyHTTPResponse(200, content=BINARY))
    runtime = FfmpegRuntime(
        artifacts=RuntimeArtifacts(base_url="https://cdn.test", cache_dir=tmp_path)
    )

    with pytest.raises(TranscoderRuntimeError, match="404"):
        await runtime.load()


@pytest.mark.asyncio
async def test_load_without_artifacts_uses_installed_binary(monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: None)
    runtime = FfmpegRuntime(binary="ffmpeg-missing")

    with pytest.raises(TranscoderRuntimeError, match="not installed"):
        await runtime.load()


@pytest.mark.asyncio
async def test_write_exec_read_cycle_in_private_directory(monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: "/usr/bin/ffmpeg")
    seen: dict[str, object] = {}

    async def fake_exec(*cmd, **kwargs):
        seen["cmd"] = list(cmd)
        seen["cwd"] = kwargs["cwd"]
        (Path(kwargs["cwd"]) / "output.mov").write_bytes(b"mov")
        return FakeProcess()

    monkeypatch.setattr("asyncio.create_subprocess_exec", fake_exec)
    runtime = FfmpegRuntime()
    await runtime.load()
    workdir = runtime.workdir

    await runtime.write_file("input.webm", b"webm")
    await runtime.exec(["-i", "input.webm", "output.mov"])
    output = await runtime.read_file("output.mov")

    assert output == b"mov"
    assert seen["cmd"][:5] == ["/usr/bin/ffmpeg", "-y", "-hide_banner", "-loglevel", "error"]
    assert seen["cwd"] == str(workdir)

    await runtime.close()
    assert workdir is not None and not workdir.exists()


@pytest.mark.asyncio
async def test_nonzero_exit_raises(monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: "/usr/bin/ffmpeg")

    async def failing_exec(*cmd, **kwargs):
        return FakeProcess(stderr=b"Unknown encoder 'libx264'", returncode=1)

    monkeypatch.setattr("asyncio.create_subprocess_exec", failing_exec)
    runtime = FfmpegRuntime()
    await runtime.load()

    with pytest.raises(TranscoderRuntimeError, match="libx264"):
        await runtime.exec(["-i", "input.webm", "output.mov"])
    await runtime.close()


@pytest.mark.asyncio
async def test_paths_outside_private_directory_are_refused(monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: "/usr/bin/ffmpeg")
    runtime = FfmpegRuntime()
    await runtime.load()

    with pytest.raises(TranscoderRuntimeError):
        await runtime.write_file("../escape.webm", b"x")
    await runtime.close()


@pytest.mark.asyncio
async def test_shared_runtime_closes_on_last_release() -> None:
    runtime = FakeTranscoderRuntime()
    created: list[FakeTranscoderRuntime] = []

    def factory() -> FakeTranscoderRuntime:
        created.append(runtime)
        return runtime

    shared = SharedTranscoderRuntime(factory)
    shared.acquire()
    shared.acquire()
    assert await shared.ensure_loaded() is runtime
    assert await shared.ensure_loaded() is runtime

    await shared.release()
    assert runtime.closed is False
    await shared.release()
    assert runtime.closed is True
    assert shared.references == 0
    assert len(created) == 1

    await shared.release()
    assert shared.references == 0


@pytest.mark.asyncio
async def test_sessions_hold_the_runtime_one_at_a_time() -> None:
    runtime = FakeTranscoderRuntime()
    shared = SharedTranscoderRuntime(lambda: runtime)
    order: list[str] = []
    first_inside = asyncio.Event()
    release_first = asyncio.Event()

    async def first() -> None:
        async with shared.session() as held:
            assert held is runtime
            order.append("first:enter")
            first_inside.set()
            await release_first.wait()
            order.append("first:exit")

    async def second() -> None:
        async with shared.session():
            order.append("second:enter")

    first_task = asyncio.create_task(first())
    await first_inside.wait()
    second_task = asyncio.create_task(second())
    for _ in range(5):
        await asyncio.sleep(0)
    assert order == ["first:enter"]

    release_first.set()
    await asyncio.gather(first_task, second_task)

    assert order == ["first:enter", "first:exit", "second:enter"]
    assert runtime.load_calls == 1
