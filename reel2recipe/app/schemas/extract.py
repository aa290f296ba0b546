from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from reel2recipe.services.types import Recipe, StageAttempt


class ExtractRequest(BaseModel):
    url: str
    mode: Literal["fast", "full"] = "full"


class StageAttemptOut(BaseModel):
    stage: Literal["captions", "audio", "video"]
    status: Literal["pending", "success", "failed"]
    durationMs: Optional[int] = None
    failureReason: Optional[str] = None

    @classmethod
    def from_attempt(cls, attempt: StageAttempt) -> "StageAttemptOut":
        return cls(
            stage=attempt.stage.value,
            status=attempt.status.value,
            durationMs=attempt.duration_ms,
            failureReason=attempt.failure_reason,
        )


class RecipeOut(BaseModel):
    title: str
    ingredients: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)
    thumbnail: Optional[str] = None
    platform: Literal["tiktok", "instagram", "youtube", "facebook", "pinterest", "unknown"]
    source: Literal["captions", "audio_transcript", "video_analysis", "video_analysis_fallback"]
    attempts: list[StageAttemptOut] = Field(default_factory=list)

    @classmethod
    def from_recipe(cls, recipe: Recipe) -> "RecipeOut":
        return cls(
            **recipe.to_dict(),
            attempts=[StageAttemptOut.from_attempt(attempt) for attempt in recipe.attempts],
        )


class ExtractResponse(BaseModel):
    recipe: RecipeOut


class ErrorResponse(BaseModel):
    kind: str
    message: str
    remediation: str
