"""Transcoder runtime boundary.

The runtime owns a private working directory (its virtual filesystem) and
an ``ffmpeg`` executable. Conversions are a write / exec / read cycle
against that directory. :class:`SharedTranscoderRuntime` makes sure the
runtime is initialised at most once and is shared by every pipeline that
holds a reference.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import shutil
import stat
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePath

import httpx

logger = logging.getLogger(__name__)

MANIFEST_NAME = "ffmpeg-core.json"
BINARY_NAME = "ffmpeg-core"


class TranscoderRuntimeError(Exception):
    """Raised by any runtime step (load, write, exec, read)."""


class TranscoderRuntime(ABC):
    """Narrow interface used by :class:`TranscodingEngine`."""

    @property
    @abstractmethod
    def loaded(self) -> bool: ...

    @abstractmethod
    async def load(self) -> None:
        """Initialise the runtime; must be idempotent."""

    @abstractmethod
    async def write_file(self, name: str, data: bytes) -> None: ...

    @abstractmethod
    async def exec(self, args: Sequence[str]) -> None: ...

    @abstractmethod
    async def read_file(self, name: str) -> bytes: ...

    @abstractmethod
    async def delete_file(self, name: str) -> None: ...

    @abstractmethod
    async def close(self) -> None:
        """Release the private filesystem."""


@dataclass(slots=True)
class RuntimeArtifacts:
    """Fixed location of the two runtime artifacts.

    The manifest lists the binary's sha256; the binary is the ffmpeg build.
    """

    base_url: str
    cache_dir: Path
    manifest_name: str = MANIFEST_NAME
    binary_name: str = BINARY_NAME
    timeout_seconds: float = 60.0

    def url(self, name: str) -> str:
        return f"{self.base_url.rstrip('/')}/{name}"


@dataclass(slots=True)
class FfmpegRuntime(TranscoderRuntime):
    """ffmpeg executed in a private temp directory."""

    binary: str = "ffmpeg"
    artifacts: RuntimeArtifacts | None = None
    log: logging.Logger = field(default_factory=lambda: logger)
    _executable: str | None = field(default=None, init=False)
    _workdir: Path | None = field(default=None, init=False)

    @property
    def loaded(self) -> bool:
        return self._executable is not None and self._workdir is not None

    @property
    def workdir(self) -> Path | None:
        return self._workdir

    async def load(self) -> None:
        if self._executable is None:
            if self.artifacts is not None:
                self._executable = await self._fetch_artifacts(self.artifacts)
            else:
                resolved = shutil.which(self.binary)
                if resolved is None:
                    raise TranscoderRuntimeError(f"{self.binary} is not installed")
                self._executable = resolved
            self.log.info("transcode.runtime.loaded", extra={"executable": self._executable})
        if self._workdir is None:
            self._workdir = Path(tempfile.mkdtemp(prefix="clip-ingest-runtime-"))

    async def write_file(self, name: str, data: bytes) -> None:
        path = self._resolve(name)
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise TranscoderRuntimeError(f"write {name} failed: {exc}") from exc

    async def exec(self, args: Sequence[str]) -> None:
        if not self.loaded:
            raise TranscoderRuntimeError("runtime is not loaded")
        cmd = [str(self._executable), "-y", "-hide_banner", "-loglevel", "error", *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self._workdir),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as exc:
            raise TranscoderRuntimeError(f"cannot start {self._executable}: {exc}") from exc
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TranscoderRuntimeError(f"ffmpeg exited with {process.returncode}: {message[-500:]}")

    async def read_file(self, name: str) -> bytes:
        path = self._resolve(name)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise TranscoderRuntimeError(f"read {name} failed: {exc}") from exc

    async def delete_file(self, name: str) -> None:
        self._resolve(name).unlink(missing_ok=True)

    async def close(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None

    def _resolve(self, name: str) -> Path:
        if self._workdir is None:
            raise TranscoderRuntimeError("runtime is not loaded")
        if PurePath(name).name != name:
            raise TranscoderRuntimeError(f"invalid runtime file name {name!r}")
        return self._workdir / name

    async def _fetch_artifacts(self, artifacts: RuntimeArtifacts) -> str:
        artifacts.cache_dir.mkdir(parents=True, exist_ok=True)
        async with httpx.AsyncClient(timeout=artifacts.timeout_seconds) as client:
            manifest_response = await client.get(artifacts.url(artifacts.manifest_name))
            binary_response = await client.get(artifacts.url(artifacts.binary_name))
        for name, response in (
            (artifacts.manifest_name, manifest_response),
            (artifacts.binary_name, binary_response),
        ):
            if response.status_code != 200:
                raise TranscoderRuntimeError(
                    f"runtime artifact {name} download failed with status {response.status_code}"
                )

        try:
            expected = str(json.loads(manifest_response.content)["sha256"]).lower()
        except (ValueError, KeyError, TypeError) as exc:
            raise TranscoderRuntimeError("runtime manifest is malformed") from exc
        payload = binary_response.content
        actual = hashlib.sha256(payload).hexdigest()
        if actual != expected:
            raise TranscoderRuntimeError(
                f"runtime binary checksum mismatch: expected {expected}, got {actual}"
            )

        target = artifacts.cache_dir / artifacts.binary_name
        target.write_bytes(payload)
        target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.log.info(
            "transcode.runtime.fetched",
            extra={"path": str(target), "size_bytes": len(payload)},
        )
        return str(target)


class SharedTranscoderRuntime:
    """Lazily constructed, reference-counted holder of one runtime.

    ``ensure_loaded`` serialises initialisation so concurrent callers never
    load twice. ``session`` hands the runtime to one caller at a time for a
    whole write / exec / read cycle. When the last reference is released
    the private filesystem is closed; the resolved executable is kept, so a
    later load does not fetch artifacts again.
    """

    def __init__(self, factory: Callable[[], TranscoderRuntime]) -> None:
        self._factory = factory
        self._runtime: TranscoderRuntime | None = None
        self._refs = 0
        self._lock = asyncio.Lock()
        self._session_lock = asyncio.Lock()

    @property
    def references(self) -> int:
        return self._refs

    @property
    def runtime(self) -> TranscoderRuntime | None:
        return self._runtime

    def acquire(self) -> "SharedTranscoderRuntime":
        self._refs += 1
        return self

    async def release(self) -> None:
        if self._refs == 0:
            return
        self._refs -= 1
        if self._refs == 0 and self._runtime is not None:
            await self._runtime.close()
            logger.info("transcode.runtime.closed")

    async def ensure_loaded(self) -> TranscoderRuntime:
        async with self._lock:
            if self._runtime is None:
                self._runtime = self._factory()
            if not self._runtime.loaded:
                await self._runtime.load()
            return self._runtime

    @asynccontextmanager
    async def session(self) -> AsyncIterator[TranscoderRuntime]:
        """Exclusive, loaded runtime for one conversion cycle."""
        async with self._session_lock:
            yield await self.ensure_loaded()
