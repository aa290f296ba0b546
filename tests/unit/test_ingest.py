from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from reel2recipe.services.errors import (
    DownloadError,
    NeedsFullAnalysisError,
    NoFramesExtractedError,
    NoRecipeFoundError,
    NotFoundError,
    NoUsableTextError,
    OverallTimeoutError,
    PlatformUnsupportedError,
    TranscriptionError,
)
from reel2recipe.services.ingest import RecipePipeline, StageTimeouts
from reel2recipe.services.normalizer import RecipeTextNormalizer
from reel2recipe.services.types import (
    NO_CONTENT_SENTINEL,
    CaptionResult,
    Frame,
    FrameObservation,
    Mode,
    StageName,
    StageStatus,
)
from reel2recipe.services.vision import BatchReport

RECIPE_TEXT = "2 cups flour, 1 egg... Instructions: 1. Mix. 2. Bake."
VIDEO_URL = "https://www.tiktok.com/@chef/video/123"


class CaptionsStub:
    def __init__(self, result: CaptionResult | Exception) -> None:
        self.result = result
        self.calls = 0

    async def extract(self, url: str) -> CaptionResult:
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class AudioStub:
    def __init__(self, transcript: str | Exception = "", delay: float = 0) -> None:
        self.transcript = transcript
        self.delay = delay
        self.calls = 0

    async def extract(self, url: str, workdir: Path) -> str:
        self.calls += 1
        (workdir / "audio.mp3").write_bytes(b"ID3")
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.transcript, Exception):
            raise self.transcript
        return self.transcript


class SamplerStub:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[str] = []

    def _frames(self) -> list[Frame]:
        return [Frame(index=i, timestamp=float(i), image=b"x" * 2000) for i in range(3)]

    async def sample(self, url: str, workdir: Path) -> list[Frame]:
        self.calls.append("sample")
        if self.error is not None:
            raise self.error
        return self._frames()

    async def sample_slideshow(self, url: str, workdir: Path) -> list[Frame]:
        self.calls.append("slideshow")
        return self._frames()


class BatcherStub:
    def __init__(self, texts: list[str] | None = None) -> None:
        self.texts = texts if texts is not None else [
            "INGREDIENTS VISIBLE: flour and milk in glass bowls",
            "COOKING ACTIONS: whisking batter, frying in butter",
        ]
        self.calls = 0

    async def analyze(self, frames: list[Frame]) -> BatchReport:
        self.calls += 1
        return BatchReport(observations=[
            FrameObservation(frame_index=index, text=text, timestamp=float(index))
            for index, text in enumerate(self.texts)
        ])


class ProviderStub:
    name = "stub"

    async def complete_json(self, system: str, user: str) -> dict:
        return {
            "ingredients": ["2 cups flour", "1 cup milk", "1 tbsp butter"],
            "instructions": ["Whisk flour and milk.", "Fry in butter."],
        }


class UnreachableProviderStub:
    name = "unreachable"

    async def complete_json(self, system: str, user: str) -> dict:
        raise httpx.ConnectError("connection reset")


class DownloaderStub:
    async def fetch_info(self, url: str) -> dict:
        return {"thumbnails": [{"url": "https://cdn.example/small.jpg", "width": 100}, {"url": "https://cdn.example/big.jpg", "width": 720}]}


class FailingDownloaderStub:
    async def fetch_info(self, url: str) -> dict:
        raise DownloadError("metadata lookup failed")


def make_pipeline(
    tmp_path: Path,
    captions: CaptionsStub,
    audio: AudioStub | None = None,
    sampler: SamplerStub | None = None,
    batcher: BatcherStub | None = None,
    providers: tuple = (),
    downloader: object | None = None,
    timeouts: StageTimeouts = StageTimeouts(),
) -> RecipePipeline:
    return RecipePipeline(
        captions=captions,
        audio=audio or AudioStub(NoUsableTextError("silence")),
        sampler=sampler or SamplerStub(),
        batcher=batcher or BatcherStub(),
        normalizer=RecipeTextNormalizer(providers, cleanup=False),
        downloader=downloader,
        timeouts=timeouts,
        temp_dir=tmp_path,
    )


def run(pipeline: RecipePipeline, url: str = VIDEO_URL, mode: Mode = Mode.FULL, events: list | None = None):
    on_progress = None
    if events is not None:
        def on_progress(attempt):
            events.append((attempt.stage, attempt.status))
    return asyncio.run(pipeline.extract_recipe(url, mode, on_progress=on_progress))


class TestCaptionStage:
    def test_caption_recipe_short_circuits(self, tmp_path: Path) -> None:
        captions = CaptionsStub(CaptionResult(
            text=RECIPE_TEXT,
            strategy="og_description",
            title="Fluffy Pancakes | TikTok",
            thumbnail="https://cdn.example/thumb.jpg",
        ))
        audio, sampler = AudioStub("unused"), SamplerStub()
        events: list = []

        recipe = run(make_pipeline(tmp_path, captions, audio=audio, sampler=sampler), events=events)

        assert recipe.source == "captions"
        assert recipe.platform == "tiktok"
        assert recipe.title == "Fluffy Pancakes"
        assert recipe.ingredients == ["2 cups flour", "1 egg"]
        assert recipe.instructions == ["Mix.", "Bake."]
        assert recipe.thumbnail == "https://cdn.example/thumb.jpg"
        assert audio.calls == 0
        assert sampler.calls == []
        assert events == [(StageName.CAPTIONS, StageStatus.PENDING), (StageName.CAPTIONS, StageStatus.SUCCESS)]
        assert [attempt.status for attempt in recipe.attempts] == [StageStatus.SUCCESS]

    def test_fast_mode_stops_after_captions(self, tmp_path: Path) -> None:
        audio = AudioStub(RECIPE_TEXT)
        pipeline = make_pipeline(tmp_path, CaptionsStub(NotFoundError("no caption")), audio=audio)

        with pytest.raises(NeedsFullAnalysisError):
            run(pipeline, mode=Mode.FAST)
        assert audio.calls == 0
        assert list(tmp_path.iterdir()) == []


class TestAudioStage:
    def test_short_caption_falls_through_to_audio(self, tmp_path: Path) -> None:
        sampler = SamplerStub()
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("caption of 15 chars")),
            audio=AudioStub(RECIPE_TEXT),
            sampler=sampler,
            downloader=DownloaderStub(),
        )

        recipe = run(pipeline)

        assert recipe.source == "audio_transcript"
        assert recipe.ingredients == ["2 cups flour", "1 egg"]
        assert recipe.title == "Flour And Egg Recipe"
        assert recipe.thumbnail == "https://cdn.example/big.jpg"
        assert sampler.calls == []
        assert recipe.attempts[0].failure_reason == "caption of 15 chars"

    def test_caption_without_recipe_falls_through(self, tmp_path: Path) -> None:
        captions = CaptionsStub(CaptionResult(text="Best pasta of my life, you have to try it!", strategy="og_description"))
        pipeline = make_pipeline(tmp_path, captions, audio=AudioStub(RECIPE_TEXT), downloader=FailingDownloaderStub())

        recipe = run(pipeline)

        assert recipe.source == "audio_transcript"
        assert recipe.attempts[0].failure_reason == "no ingredients found"
        assert recipe.thumbnail is None

    def test_provider_connection_error_falls_through(self, tmp_path: Path) -> None:
        captions = CaptionsStub(CaptionResult(text="Best pasta of my life, you have to try it!", strategy="og_description"))
        pipeline = make_pipeline(
            tmp_path,
            captions,
            audio=AudioStub(RECIPE_TEXT),
            providers=(UnreachableProviderStub(),),
        )

        recipe = run(pipeline)

        assert recipe.source == "audio_transcript"
        assert recipe.ingredients == ["2 cups flour", "1 egg"]
        assert recipe.attempts[0].status is StageStatus.FAILED
        assert recipe.attempts[0].failure_reason.startswith("ConnectError")

    def test_unexpected_audio_crash_is_an_audio_error(self, tmp_path: Path) -> None:
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            audio=AudioStub(OSError("disk full")),
            providers=(ProviderStub(),),
        )

        recipe = run(pipeline)

        assert recipe.source == "video_analysis_fallback"
        assert recipe.attempts[1].failure_reason == "OSError: disk full"
        assert list(tmp_path.iterdir()) == []


class TestVideoStage:
    def test_video_analysis_after_empty_audio(self, tmp_path: Path) -> None:
        batcher = BatcherStub()
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            audio=AudioStub(NoUsableTextError("music only")),
            batcher=batcher,
            providers=(ProviderStub(),),
        )

        recipe = run(pipeline)

        assert recipe.source == "video_analysis"
        assert recipe.ingredients == ["2 cups flour", "1 cup milk", "1 tbsp butter"]
        assert batcher.calls == 1

    def test_video_analysis_fallback_after_audio_error(self, tmp_path: Path) -> None:
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            audio=AudioStub(TranscriptionError("decoder crashed")),
            providers=(ProviderStub(),),
        )

        assert run(pipeline).source == "video_analysis_fallback"

    def test_audio_stage_timeout_is_an_audio_error(self, tmp_path: Path) -> None:
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            audio=AudioStub(RECIPE_TEXT, delay=10),
            providers=(ProviderStub(),),
            timeouts=StageTimeouts(audio=0.05),
        )

        recipe = run(pipeline)

        assert recipe.source == "video_analysis_fallback"
        assert "timed out" in recipe.attempts[1].failure_reason

    def test_slideshow_uses_still_images(self, tmp_path: Path) -> None:
        sampler = SamplerStub()
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            sampler=sampler,
            providers=(ProviderStub(),),
        )

        run(pipeline, url="https://www.tiktok.com/@chef/photo/123")

        assert sampler.calls == ["slideshow"]


class TestExhaustion:
    def test_no_recipe_anywhere(self, tmp_path: Path) -> None:
        events: list = []
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            audio=AudioStub(NoUsableTextError("silence")),
            sampler=SamplerStub(NoFramesExtractedError("nothing decoded")),
        )

        with pytest.raises(NoRecipeFoundError):
            run(pipeline, events=events)

        assert [stage for stage, _ in events] == [
            StageName.CAPTIONS, StageName.CAPTIONS,
            StageName.AUDIO, StageName.AUDIO,
            StageName.VIDEO, StageName.VIDEO,
        ]
        assert [status for _, status in events][1::2] == [StageStatus.FAILED] * 3
        assert list(tmp_path.iterdir()) == []

    def test_frames_without_cooking_content(self, tmp_path: Path) -> None:
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            batcher=BatcherStub([NO_CONTENT_SENTINEL, NO_CONTENT_SENTINEL]),
            providers=(ProviderStub(),),
        )

        with pytest.raises(NoRecipeFoundError):
            run(pipeline)

    def test_overall_timeout(self, tmp_path: Path) -> None:
        pipeline = make_pipeline(
            tmp_path,
            CaptionsStub(NotFoundError("no caption")),
            audio=AudioStub(RECIPE_TEXT, delay=10),
            timeouts=StageTimeouts(overall=0.05),
        )

        with pytest.raises(OverallTimeoutError):
            run(pipeline)
        assert list(tmp_path.iterdir()) == []

    def test_invalid_url(self, tmp_path: Path) -> None:
        captions = CaptionsStub(NotFoundError("no caption"))

        with pytest.raises(PlatformUnsupportedError):
            run(make_pipeline(tmp_path, captions), url="not a link")
        assert captions.calls == 0
