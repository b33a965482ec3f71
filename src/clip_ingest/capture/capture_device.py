"""Capture device boundary and the ffmpeg-backed implementation."""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from ..config import CaptureConstraints

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024


class DeviceUnavailableError(Exception):
    """Raised by a device when the stream cannot be acquired."""


@dataclass(slots=True)
class MediaTrack:
    kind: str
    label: str
    ended: bool = False

    def stop(self) -> None:
        self.ended = True


class DeviceStream(ABC):
    """A live audio/video stream held until :meth:`stop` is called."""

    @property
    @abstractmethod
    def tracks(self) -> list[MediaTrack]: ...

    @property
    def active(self) -> bool:
        return any(not track.ended for track in self.tracks)

    @abstractmethod
    def encode(self, *, mime_type: str, video_bits_per_second: int) -> AsyncIterator[bytes]:
        """Yield encoded chunks until :meth:`stop_encoding` is called."""

    @abstractmethod
    async def stop_encoding(self) -> None: ...

    @abstractmethod
    def stop(self) -> None:
        """Stop every track and release the device."""


class CaptureDevice(ABC):
    @abstractmethod
    async def open_stream(self, constraints: CaptureConstraints) -> DeviceStream: ...


def _ffmpeg_input_args(
    constraints: CaptureConstraints,
    *,
    video_format: str,
    video_device: str,
    audio_format: str,
    audio_device: str,
) -> list[str]:
    return [
        "-f",
        video_format,
        "-framerate",
        str(constraints.max_frame_rate),
        "-i",
        video_device,
        "-f",
        audio_format,
        "-i",
        audio_device,
    ]


def _ffmpeg_filter_args(constraints: CaptureConstraints) -> list[str]:
    # Portrait crop to the aspect hint, then scale to the ideal size.
    video_filter = (
        f"crop=ih*{constraints.aspect_ratio:.4f}:ih,"
        f"scale={constraints.ideal_width}:{constraints.ideal_height},"
        f"fps={constraints.ideal_frame_rate}"
    )
    audio_filters = []
    if constraints.noise_suppression:
        audio_filters.append("afftdn")
    if constraints.auto_gain_control:
        audio_filters.append("dynaudnorm")
    args = ["-vf", video_filter]
    if audio_filters:
        args += ["-af", ",".join(audio_filters)]
    return args


@dataclass(slots=True)
class FfmpegDeviceStream(DeviceStream):
    """Stream over a local camera + microphone, encoded by ffmpeg on demand."""

    binary: str
    input_args: list[str]
    filter_args: list[str]
    media_tracks: list[MediaTrack] = field(default_factory=list)
    _process: asyncio.subprocess.Process | None = field(default=None, init=False)

    @property
    def tracks(self) -> list[MediaTrack]:
        return self.media_tracks

    async def encode(self, *, mime_type: str, video_bits_per_second: int) -> AsyncIterator[bytes]:
        if not self.active:
            raise DeviceUnavailableError("stream is no longer active")
        codec = "libvpx-vp9" if "vp9" in mime_type else "libvpx"
        cmd = [
            self.binary,
            "-hide_banner",
            "-loglevel",
            "error",
            *self.input_args,
            *self.filter_args,
            "-c:v",
            codec,
            "-b:v",
            str(video_bits_per_second),
            "-deadline",
            "realtime",
            "-c:a",
            "libopus",
            "-f",
            "webm",
            "pipe:1",
        ]
        self._process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        if self._process.stdout is None:
            raise DeviceUnavailableError("encoder has no output pipe")
        try:
            while True:
                chunk = await self._process.stdout.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                yield chunk
        finally:
            await self._process.wait()
            self._process = None

    async def stop_encoding(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        # "q" lets ffmpeg flush the container trailer before exiting.
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.write(b"q")
            await process.stdin.drain()
            process.stdin.close()

    def stop(self) -> None:
        for track in self.media_tracks:
            track.stop()
        process = self._process
        if process is not None and process.returncode is None:
            process.terminate()


@dataclass(slots=True)
class FfmpegCaptureDevice(CaptureDevice):
    """Local camera/microphone read through ffmpeg's device demuxers."""

    binary: str = "ffmpeg"
    video_format: str = "v4l2"
    video_device: str = "/dev/video0"
    audio_format: str = "alsa"
    audio_device: str = "default"

    async def open_stream(self, constraints: CaptureConstraints) -> DeviceStream:
        if self.video_device.startswith("/dev/") and not os.access(self.video_device, os.R_OK):
            raise DeviceUnavailableError(f"cannot read {self.video_device}")
        logger.info(
            "capture.device.opened",
            extra={"video_device": self.video_device, "audio_device": self.audio_device},
        )
        return FfmpegDeviceStream(
            binary=self.binary,
            input_args=_ffmpeg_input_args(
                constraints,
                video_format=self.video_format,
                video_device=self.video_device,
                audio_format=self.audio_format,
                audio_device=self.audio_device,
            ),
            filter_args=_ffmpeg_filter_args(constraints),
            media_tracks=[
                MediaTrack(kind="video", label=self.video_device),
                MediaTrack(kind="audio", label=self.audio_device),
            ],
        )
