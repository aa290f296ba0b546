# reel2recipe/app/deps.py (composition root: the only place settings are read)
from __future__ import annotations

import logging
from functools import lru_cache

from reel2recipe.app.config import Settings, get_settings
from reel2recipe.services.errors import ProviderConfigurationError
from reel2recipe.services.fetcher import CaptionExtractor, PageFetcher
from reel2recipe.services.frames import FrameSampler, SamplingPolicy
from reel2recipe.services.ingest import RecipePipeline, StageTimeouts
from reel2recipe.services.llm import GeminiProvider, GenerativeProvider, OpenAIProvider
from reel2recipe.services.media import MediaDownloader
from reel2recipe.services.normalizer import RecipeTextNormalizer
from reel2recipe.services.transcribe import AudioTranscriptionExtractor, MusicDetector, WhisperTranscriber
from reel2recipe.services.vision import (
    BatchPolicy,
    GeminiVisionModel,
    OpenAIVisionModel,
    RetryPolicy,
    VisionAnalysisBatcher,
    VisionModel,
    fixed_backoff,
)

log = logging.getLogger(__name__)


def build_providers(settings: Settings) -> list[GenerativeProvider]:
    providers: list[GenerativeProvider] = []
    if settings.GEMINI_API_KEY:
        providers.append(GeminiProvider(api_key=settings.GEMINI_API_KEY, model_name=settings.GEMINI_MODEL))
    if settings.OPENAI_API_KEY:
        providers.append(OpenAIProvider(api_key=settings.OPENAI_API_KEY, model_name=settings.OPENAI_MODEL))
    if not providers:
        log.warning("No generative provider configured; only deterministic parsing is available")
    return providers


def build_vision_model(settings: Settings, providers: list[GenerativeProvider]) -> VisionModel:
    by_name = {provider.name: provider for provider in providers}
    preference = settings.VISION_PROVIDER.lower()
    order = [preference] if preference in ("gemini", "openai") else ["gemini", "openai"]

    for name in order:
        provider = by_name.get(name)
        if isinstance(provider, GeminiProvider):
            return GeminiVisionModel(provider)
        if isinstance(provider, OpenAIProvider):
            return OpenAIVisionModel(provider)
    raise ProviderConfigurationError(f"Vision provider '{settings.VISION_PROVIDER}' is not configured")


class _UnconfiguredVision:
    async def describe_image(self, image: bytes, stage_label: str) -> str:
        raise ProviderConfigurationError("No vision provider configured")


def build_pipeline(settings: Settings) -> RecipePipeline:
    providers = build_providers(settings)
    downloader = MediaDownloader(timeout_seconds=settings.YTDLP_TIMEOUT_SECONDS)

    try:
        vision_model: VisionModel = build_vision_model(settings, providers)
    except ProviderConfigurationError as error:
        log.warning("%s; video analysis will fail", error)
        vision_model = _UnconfiguredVision()

    transcriber = WhisperTranscriber(
        model_name=settings.WHISPER_MODEL,
        device=settings.WHISPER_DEVICE,
        beam_size=settings.WHISPER_BEAM_SIZE,
        language=settings.WHISPER_LANGUAGE,
    )
    music_detector = MusicDetector(providers) if settings.MUSIC_DETECTION and providers else None

    return RecipePipeline(
        captions=CaptionExtractor(PageFetcher(timeout=settings.PAGE_TIMEOUT_SECONDS)),
        audio=AudioTranscriptionExtractor(downloader, transcriber, music_detector=music_detector),
        sampler=FrameSampler(
            downloader,
            policy=SamplingPolicy(
                frame_timeout_seconds=settings.FRAME_TIMEOUT_SECONDS,
                min_frame_bytes=settings.MIN_FRAME_BYTES,
            ),
        ),
        batcher=VisionAnalysisBatcher(
            vision_model,
            batch_policy=BatchPolicy(
                size=settings.VISION_BATCH_SIZE,
                frame_delay=settings.VISION_FRAME_DELAY_SECONDS,
                batch_delay=settings.VISION_BATCH_DELAY_SECONDS,
            ),
            retry_policy=RetryPolicy(
                max_attempts=settings.VISION_MAX_ATTEMPTS,
                backoff=fixed_backoff(settings.VISION_RETRY_DELAY_SECONDS),
            ),
        ),
        normalizer=RecipeTextNormalizer(providers, cleanup=settings.NORMALIZER_CLEANUP),
        downloader=downloader,
        timeouts=StageTimeouts(
            captions=settings.CAPTIONS_TIMEOUT_SECONDS,
            audio=settings.AUDIO_TIMEOUT_SECONDS,
            video=settings.VIDEO_TIMEOUT_SECONDS,
            overall=settings.OVERALL_TIMEOUT_SECONDS,
        ),
        temp_dir=settings.TEMP_DIR,
        title_providers=providers,
    )


@lru_cache
def get_pipeline() -> RecipePipeline:
    return build_pipeline(get_settings())
