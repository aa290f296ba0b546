from __future__ import annotations

from typing import Iterable

from reel2recipe.services.types import ConsolidatedNarrative, FrameObservation

NO_CONTENT_NARRATIVE = "No cooking content detected in video frames."
NARRATIVE_HEADER = "COOKING VIDEO ANALYSIS - FRAME BY FRAME OBSERVATIONS:"
# Interpolation window for frames without a real timestamp
ASSUMED_DURATION_SECONDS = 60

CONSOLIDATION_NOTE = (
    "CONSOLIDATION NOTE: These are observations from different moments in the same cooking video. "
    "Some ingredients or cooking actions may appear multiple times as the cooking progresses. "
    "Please consolidate duplicate ingredients and create a coherent recipe flow from these "
    "sequential observations."
)


def is_narrative(text: str) -> bool:
    return "FRAME " in text and "OBSERVATIONS" in text


def _timestamp(observation: FrameObservation, position: int, total: int) -> int:
    if observation.timestamp is not None:
        return round(observation.timestamp)
    return round(position / total * ASSUMED_DURATION_SECONDS)


def consolidate(observations: Iterable[FrameObservation]) -> ConsolidatedNarrative:
    """Merges per-frame observations into one chronological narrative.

    Invalid observations (empty, the no-content sentinel, or too short) are
    dropped. Running the result's observations through again yields the same
    narrative.
    """
    valid = [observation for observation in observations if observation.is_valid]
    if not valid:
        return ConsolidatedNarrative(observations=[], text=NO_CONTENT_NARRATIVE)

    sections = [
        f"FRAME {position + 1} (timestamp ~{_timestamp(observation, position, len(valid))}s):\n"
        f"{observation.text.strip()}"
        for position, observation in enumerate(valid)
    ]
    text = "\n\n".join([
        NARRATIVE_HEADER,
        f"This is an analysis of {len(valid)} frames from a cooking video, in chronological order:",
        *sections,
        CONSOLIDATION_NOTE,
    ])
    return ConsolidatedNarrative(observations=valid, text=text)
