import asyncio

import pytest

from clip_ingest.progress.progress_narrator import (
    STAGE_MESSAGES,
    NarrationStage,
    ProgressNarrator,
    narrate,
    stage_for_elapsed,
)


@pytest.mark.parametrize(
    ("elapsed", "stage"),
    [
        (0, NarrationStage.PREPARING),
        (4.99, NarrationStage.PREPARING),
        (5, NarrationStage.CONVERTING),
        (14.9, NarrationStage.CONVERTING),
        (15, NarrationStage.UPLOADING),
        (29, NarrationStage.UPLOADING),
        (30, NarrationStage.PROCESSING),
        (44.999, NarrationStage.PROCESSING),
        (45, NarrationStage.FINALIZING),
        (3600, NarrationStage.FINALIZING),
        (-2, NarrationStage.PREPARING),
    ],
)
def test_stage_breakpoints(elapsed, stage) -> None:
    assert stage_for_elapsed(elapsed) is stage


def test_every_stage_has_a_message() -> None:
    assert set(STAGE_MESSAGES) == set(NarrationStage)
    narration = narrate(16.7)
    assert narration.stage is NarrationStage.UPLOADING
    assert narration.message == STAGE_MESSAGES[NarrationStage.UPLOADING]
    assert narration.elapsed_seconds == 16


@pytest.mark.asyncio
async def test_narrator_follows_the_clock_until_stopped() -> None:
    now = [0.0]
    updates = []
    narrator = ProgressNarrator(
        interval_seconds=0.01,
        clock=lambda: now[0],
        on_update=updates.append,
    )

    narrator.start(started_at=0.0)
    assert narrator.active is True
    assert narrator.current.stage is NarrationStage.PREPARING

    now[0] = 20.0
    for _ in range(100):
        await asyncio.sleep(0.01)
        if narrator.current.stage is NarrationStage.UPLOADING:
            break
    assert narrator.current.stage is NarrationStage.UPLOADING

    await narrator.stop()
    assert narrator.active is False
    assert narrator.current is None
    count = len(updates)
    await asyncio.sleep(0.05)
    assert len(updates) == count


@pytest.mark.asyncio
async def test_start_is_ignored_while_running_and_stop_is_idempotent() -> None:
    narrator = ProgressNarrator(interval_seconds=0.01, clock=lambda: 10.0)

    narrator.start(started_at=0.0)
    narrator.start(started_at=9.0)
    assert narrator.started_at == 0.0
    assert narrator.current.stage is NarrationStage.CONVERTING

    await narrator.stop()
    await narrator.stop()
    assert narrator.tick() is None
