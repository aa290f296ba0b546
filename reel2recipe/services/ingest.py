"""
Pipeline orchestrator: captions -> audio -> video, first stage with a recipe wins.

Each request gets a private workspace directory that is removed on every
exit path. Stages run strictly in sequence under their own timeouts, and the
whole request under an absolute ceiling; a timeout cancels in-flight work,
which kills any running subprocess.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from reel2recipe.services.errors import (
    DownloadError,
    NeedsFullAnalysisError,
    NoRecipeFoundError,
    NoUsableTextError,
    OverallTimeoutError,
    ServiceError,
    StageTimeoutError,
)
from reel2recipe.services.fetcher import CaptionExtractor
from reel2recipe.services.frames import FrameSampler
from reel2recipe.services.ids import classify, is_slideshow_url, validate_url
from reel2recipe.services.llm import GenerativeProvider
from reel2recipe.services.media import MediaDownloader, extract_thumbnail
from reel2recipe.services.narrative import consolidate
from reel2recipe.services.normalizer import RecipeTextNormalizer
from reel2recipe.services.titles import generate_title, smart_title
from reel2recipe.services.transcribe import AudioTranscriptionExtractor
from reel2recipe.services.types import (
    INSTRUCTIONS_NOT_FOUND,
    CaptionResult,
    Mode,
    Recipe,
    RecipeDraft,
    RecipeSource,
    SourceRequest,
    StageAttempt,
    StageName,
    StageStatus,
)
from reel2recipe.services.vision import VisionAnalysisBatcher

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[StageAttempt], None]


@dataclass(frozen=True)
class StageTimeouts:
    captions: float = 30
    audio: float = 150
    video: float = 600
    overall: float = 720

    def for_stage(self, stage: StageName) -> float:
        return getattr(self, stage.value)


@dataclass
class _RequestState:
    request: SourceRequest
    workspace: Path
    attempts: list[StageAttempt]
    on_progress: Optional[ProgressCallback] = None
    caption: Optional[CaptionResult] = None
    audio_errored: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecipePipeline:
    def __init__(
        self,
        captions: CaptionExtractor,
        audio: AudioTranscriptionExtractor,
        sampler: FrameSampler,
        batcher: VisionAnalysisBatcher,
        normalizer: RecipeTextNormalizer,
        downloader: Optional[MediaDownloader] = None,
        timeouts: StageTimeouts = StageTimeouts(),
        temp_dir: Optional[Path] = None,
        title_providers: Sequence[GenerativeProvider] = (),
    ) -> None:
        self.captions = captions
        self.audio = audio
        self.sampler = sampler
        self.batcher = batcher
        self.normalizer = normalizer
        self.downloader = downloader
        self.timeouts = timeouts
        self.temp_dir = temp_dir
        self.title_providers = list(title_providers)

    async def extract_recipe(
        self,
        url: str,
        mode: Mode | str = Mode.FULL,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Recipe:
        cleaned = validate_url(url)
        request = SourceRequest(url=cleaned, mode=Mode(mode), platform=classify(cleaned))
        if self.temp_dir is not None:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix="reel2recipe-", dir=self.temp_dir))

        t0 = time.monotonic()
        logger.info("extract.start url=%s platform=%s mode=%s", cleaned, request.platform, request.mode.value)
        state = _RequestState(request=request, workspace=workspace, attempts=[], on_progress=on_progress)
        try:
            recipe = await asyncio.wait_for(self._run(state), timeout=self.timeouts.overall)
        except asyncio.TimeoutError as error:
            logger.error("extract.timeout url=%s dt=%.2fs", cleaned, time.monotonic() - t0)
            raise OverallTimeoutError(self.timeouts.overall) from error
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

        logger.info(
            "extract.ok url=%s source=%s ingredients=%d dt=%.2fs",
            cleaned,
            recipe.source,
            len(recipe.ingredients),
            time.monotonic() - t0,
        )
        return recipe

    def _emit(self, state: _RequestState, attempt: StageAttempt) -> None:
        if state.on_progress is not None:
            state.on_progress(attempt)

    async def _run_stage(
        self,
        state: _RequestState,
        stage: StageName,
        work: Callable[[], Awaitable[RecipeDraft]],
    ) -> Optional[RecipeDraft]:
        """Runs one stage; returns the draft only when it has usable ingredients."""
        attempt = StageAttempt(stage=stage, started_at=_now())
        state.attempts.append(attempt)
        self._emit(state, attempt)

        timeout = self.timeouts.for_stage(stage)
        draft: Optional[RecipeDraft] = None
        try:
            draft = await asyncio.wait_for(work(), timeout=timeout)
        except asyncio.TimeoutError:
            timeout_error = StageTimeoutError(stage.value, timeout)
            attempt.failure_reason = str(timeout_error)
            logger.error("Stage %s failed: %s", stage.value, timeout_error)
            self._note_failure(state, stage, timeout_error)
        except ServiceError as error:
            attempt.failure_reason = str(error)
            logger.error("Stage %s failed: %s", stage.value, error)
            self._note_failure(state, stage, error)
        except Exception as error:
            attempt.failure_reason = f"{error.__class__.__name__}: {error}"
            logger.exception("Stage %s crashed", stage.value)
            self._note_failure(state, stage, error)

        attempt.ended_at = _now()
        if draft is not None and draft.has_ingredients:
            attempt.status = StageStatus.SUCCESS
        else:
            attempt.status = StageStatus.FAILED
            if attempt.failure_reason is None:
                attempt.failure_reason = "no ingredients found"
            draft = None

        logger.info("Stage %s %s in %sms", stage.value, attempt.status.value, attempt.duration_ms)
        self._emit(state, attempt)
        return draft

    @staticmethod
    def _note_failure(state: _RequestState, stage: StageName, error: Exception) -> None:
        # Empty or music-only audio counts as "no recipe", not as an audio failure
        if stage is StageName.AUDIO and not isinstance(error, NoUsableTextError):
            state.audio_errored = True

    async def _captions_stage(self, state: _RequestState) -> RecipeDraft:
        state.caption = await self.captions.extract(state.request.url)
        return await self.normalizer.normalize(state.caption.text)

    async def _audio_stage(self, state: _RequestState) -> RecipeDraft:
        transcript = await self.audio.extract(state.request.url, state.workspace)
        return await self.normalizer.normalize(transcript)

    async def _video_stage(self, state: _RequestState) -> RecipeDraft:
        if is_slideshow_url(state.request.url):
            frames = await self.sampler.sample_slideshow(state.request.url, state.workspace)
        else:
            frames = await self.sampler.sample(state.request.url, state.workspace)
        report = await self.batcher.analyze(frames)
        narrative = consolidate(report.observations)
        if not narrative.has_content:
            raise NoUsableTextError(narrative.text)
        return await self.normalizer.normalize(narrative.text)

    async def _run(self, state: _RequestState) -> Recipe:
        draft = await self._run_stage(state, StageName.CAPTIONS, lambda: self._captions_stage(state))
        if draft is not None:
            return await self._build_recipe(state, draft, "captions")

        if state.request.mode is Mode.FAST:
            raise NeedsFullAnalysisError("No recipe found in captions; full analysis required")

        draft = await self._run_stage(state, StageName.AUDIO, lambda: self._audio_stage(state))
        if draft is not None:
            return await self._build_recipe(state, draft, "audio_transcript")

        draft = await self._run_stage(state, StageName.VIDEO, lambda: self._video_stage(state))
        if draft is not None:
            source: RecipeSource = "video_analysis_fallback" if state.audio_errored else "video_analysis"
            return await self._build_recipe(state, draft, source)

        raise NoRecipeFoundError("No recipe found in captions, audio transcription, or video analysis")

    async def _thumbnail(self, state: _RequestState) -> Optional[str]:
        if state.caption is not None and state.caption.thumbnail:
            return state.caption.thumbnail
        if self.downloader is None:
            return None
        try:
            info = await self.downloader.fetch_info(state.request.url)
        except DownloadError as error:
            logger.warning("Thumbnail lookup failed: %s", error)
            return None
        return extract_thumbnail(info)

    async def _build_recipe(self, state: _RequestState, draft: RecipeDraft, source: RecipeSource) -> Recipe:
        ingredients = draft.usable_ingredients
        instructions = [step for step in draft.instructions if step.strip() and step != INSTRUCTIONS_NOT_FOUND]

        caption = state.caption
        title = (
            smart_title(caption.title if caption else None, caption.text if caption else None)
            or draft.title
            or await generate_title(ingredients, self.title_providers)
        )
        return Recipe(
            title=title,
            ingredients=ingredients,
            instructions=instructions,
            platform=state.request.platform,
            source=source,
            thumbnail=await self._thumbnail(state),
            attempts=list(state.attempts),
        )
