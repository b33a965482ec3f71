"""Approximate, time-driven progress narration."""

from .progress_narrator import (
    STAGE_MESSAGES,
    Narration,
    NarrationStage,
    ProgressNarrator,
    narrate,
    stage_for_elapsed,
)

__all__ = [
    "STAGE_MESSAGES",
    "Narration",
    "NarrationStage",
    "ProgressNarrator",
    "narrate",
    "stage_for_elapsed",
]
