from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

Platform = Literal["tiktok", "instagram", "youtube", "facebook", "pinterest", "unknown"]
RecipeSource = Literal["captions", "audio_transcript", "video_analysis", "video_analysis_fallback"]

NO_CONTENT_SENTINEL = "No cooking content visible."
INGREDIENTS_NOT_FOUND = "Ingredients not found"
INSTRUCTIONS_NOT_FOUND = "Instructions not found"
MIN_OBSERVATION_CHARS = 10


class Mode(str, Enum):
    FAST = "fast"
    FULL = "full"


class StageName(str, Enum):
    CAPTIONS = "captions"
    AUDIO = "audio"
    VIDEO = "video"


class StageStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceRequest:
    url: str
    mode: Mode
    platform: Platform


@dataclass
class StageAttempt:
    """Timing and outcome of one pipeline stage, reported to the caller."""
    stage: StageName
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)


def stage_label(index: int) -> str:
    if index == 0:
        return "ingredient preparation"
    if index <= 2:
        return "early cooking"
    if index >= 4:
        return "final dish/plating"
    return "mid cooking"


@dataclass(frozen=True)
class Frame:
    index: int
    timestamp: Optional[float]
    image: bytes = field(repr=False)

    @property
    def stage_label(self) -> str:
        return stage_label(self.index)


@dataclass(frozen=True)
class FrameObservation:
    frame_index: int
    text: str
    timestamp: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        stripped = self.text.strip()
        if not stripped:
            return False
        if "no cooking content" in stripped.lower():
            return False
        return len(stripped) > MIN_OBSERVATION_CHARS


@dataclass(frozen=True)
class ConsolidatedNarrative:
    observations: list[FrameObservation]
    text: str

    @property
    def has_content(self) -> bool:
        return bool(self.observations)


@dataclass(frozen=True)
class CaptionResult:
    text: str
    strategy: str
    title: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class RecipeDraft:
    ingredients: list[str] = field(default_factory=list)
    instructions: list[str] = field(default_factory=list)
    title: Optional[str] = None
    strategy: Optional[str] = None
    placeholder: bool = False

    @property
    def usable_ingredients(self) -> list[str]:
        return [
            item for item in self.ingredients
            if item.strip() and item.strip() != INGREDIENTS_NOT_FOUND
        ]

    @property
    def has_ingredients(self) -> bool:
        return not self.placeholder and bool(self.usable_ingredients)


def placeholder_draft() -> RecipeDraft:
    return RecipeDraft(
        ingredients=[INGREDIENTS_NOT_FOUND],
        instructions=[INSTRUCTIONS_NOT_FOUND],
        strategy="placeholder",
        placeholder=True,
    )


@dataclass
class Recipe:
    title: str
    ingredients: list[str]
    instructions: list[str]
    platform: Platform
    source: RecipeSource
    thumbnail: Optional[str] = None
    attempts: list[StageAttempt] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "thumbnail": self.thumbnail,
            "platform": self.platform,
            "source": self.source,
        }
