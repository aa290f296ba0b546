from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    APP_ENV: str = "local"
    FRONTEND_CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    # Generative providers, tried in this order: Gemini, then OpenAI
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    VISION_PROVIDER: str = "auto"
    NORMALIZER_CLEANUP: bool = True
    MUSIC_DETECTION: bool = True

    WHISPER_MODEL: str = "small"
    WHISPER_DEVICE: str = "auto"
    WHISPER_BEAM_SIZE: int = 5
    WHISPER_LANGUAGE: Optional[str] = None

    TEMP_DIR: Optional[Path] = None
    YTDLP_TIMEOUT_SECONDS: float = 300
    PAGE_TIMEOUT_SECONDS: float = 15

    CAPTIONS_TIMEOUT_SECONDS: float = 30
    AUDIO_TIMEOUT_SECONDS: float = 150
    VIDEO_TIMEOUT_SECONDS: float = 600
    OVERALL_TIMEOUT_SECONDS: float = 720

    FRAME_TIMEOUT_SECONDS: float = Field(default=30, ge=15, le=60)
    MIN_FRAME_BYTES: int = 1000
    VISION_BATCH_SIZE: int = Field(default=3, ge=3, le=5)
    VISION_FRAME_DELAY_SECONDS: float = 0.5
    VISION_BATCH_DELAY_SECONDS: float = 1.0
    VISION_MAX_ATTEMPTS: int = 6
    VISION_RETRY_DELAY_SECONDS: float = 3.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
