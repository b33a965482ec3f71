"""Time-driven narration of an upload attempt.

The narrator maps wall-clock time since the attempt started to a stage
label. It is approximate UX: the label is not tied to the real pipeline
step and may say "uploading" while conversion is still running.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class NarrationStage(StrEnum):
    PREPARING = "preparing"
    CONVERTING = "converting"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    FINALIZING = "finalizing"


# Upper bounds (exclusive, whole seconds) for each stage.
STAGE_BREAKPOINTS: tuple[tuple[int, NarrationStage], ...] = (
    (5, NarrationStage.PREPARING),
    (15, NarrationStage.CONVERTING),
    (30, NarrationStage.UPLOADING),
    (45, NarrationStage.PROCESSING),
)

STAGE_MESSAGES: dict[NarrationStage, str] = {
    NarrationStage.PREPARING: "Preparing your video...",
    NarrationStage.CONVERTING: "Converting your video for every device...",
    NarrationStage.UPLOADING: "Uploading your video to the cloud...",
    NarrationStage.PROCESSING: "Processing your video, almost there...",
    NarrationStage.FINALIZING: "Finalizing, this can take a few more moments...",
}


@dataclass(slots=True, frozen=True)
class Narration:
    stage: NarrationStage
    message: str
    elapsed_seconds: int


def stage_for_elapsed(elapsed_seconds: float) -> NarrationStage:
    seconds = math.floor(max(0.0, elapsed_seconds))
    for upper_bound, stage in STAGE_BREAKPOINTS:
        if seconds < upper_bound:
            return stage
    return NarrationStage.FINALIZING


def narrate(elapsed_seconds: float) -> Narration:
    stage = stage_for_elapsed(elapsed_seconds)
    return Narration(
        stage=stage,
        message=STAGE_MESSAGES[stage],
        elapsed_seconds=math.floor(max(0.0, elapsed_seconds)),
    )


class ProgressNarrator:
    """One-second ticker that only ever writes narration state."""

    def __init__(
        self,
        *,
        interval_seconds: float = 1.0,
        clock: Callable[[], float] | None = None,
        on_update: Callable[[Narration], None] | None = None,
    ) -> None:
        self.interval_seconds = interval_seconds
        self._clock = clock or time.monotonic
        self._on_update = on_update
        self._started_at: float | None = None
        self._current: Narration | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current(self) -> Narration | None:
        return self._current

    @property
    def started_at(self) -> float | None:
        return self._started_at

    def start(self, started_at: float) -> None:
        if self.active:
            return
        self._started_at = started_at
        self._stop_event = asyncio.Event()
        self._publish()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        self._started_at = None
        self._current = None
        if task is None:
            return
        self._stop_event.set()
        await task

    def tick(self) -> Narration | None:
        """Recompute the narration from the clock; used by the timer loop."""
        if self._started_at is None:
            return None
        return self._publish()

    async def _run(self) -> None:
        interval = max(0.01, float(self.interval_seconds))
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.tick()

    def _publish(self) -> Narration:
        assert self._started_at is not None
        narration = narrate(self._clock() - self._started_at)
        changed = self._current is None or narration.stage != self._current.stage
        self._current = narration
        if changed:
            logger.debug("progress.stage", extra={"stage": narration.stage.value})
        if self._on_update is not None:
            self._on_update(narration)
        return narration
