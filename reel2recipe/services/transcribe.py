from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from starlette.concurrency import run_in_threadpool

from reel2recipe.services.errors import NoUsableTextError, ServiceError, TranscriptionError
from reel2recipe.services.prompts import MUSIC_DETECTION_SYSTEM

if TYPE_CHECKING:  # pragma: no cover - only for type-checkers
    from faster_whisper import WhisperModel
    from reel2recipe.services.llm import GenerativeProvider
    from reel2recipe.services.media import MediaDownloader

logger = logging.getLogger(__name__)

# Loaded models keyed by (model, device); loading is expensive and read-only after init
_models: dict[tuple[str, str], "WhisperModel"] = {}
_device_info: tuple[str, str] | None = None


def _detect_device(preference: str = "auto") -> tuple[str, str]:
    """Detects the best device and compute_type for the environment.

    Returns:
        Tuple (device, compute_type): float16 on GPU, int8 on CPU.
    """
    global _device_info

    if preference == "cuda":
        return "cuda", "float16"
    if preference == "cpu":
        return "cpu", "int8"

    if _device_info is not None:
        return _device_info

    try:
        import torch
        if torch.cuda.is_available():
            logger.info("CUDA detected (%s), using GPU with float16", torch.cuda.get_device_name(0))
            _device_info = ("cuda", "float16")
            return _device_info
    except ImportError:
        logger.debug("PyTorch not available for CUDA detection")
    except Exception as exc:
        logger.debug("Error detecting CUDA via PyTorch: %s", exc)

    try:
        import ctranslate2
        if "float16" in ctranslate2.get_supported_compute_types("cuda"):
            logger.info("CUDA detected via ctranslate2, using GPU with float16")
            _device_info = ("cuda", "float16")
            return _device_info
    except Exception as exc:
        logger.debug("Error detecting CUDA via ctranslate2: %s", exc)

    logger.info("GPU not available, using CPU with int8 (quantized)")
    _device_info = ("cpu", "int8")
    return _device_info


def _get_model(model_name: str, device_preference: str) -> "WhisperModel":
    device, compute_type = _detect_device(device_preference)
    key = (model_name, device)
    if key in _models:
        return _models[key]

    try:
        from faster_whisper import WhisperModel as _WhisperModel
    except ImportError as exc:
        raise TranscriptionError("faster-whisper is not installed; audio transcription disabled") from exc

    logger.info(
        "Initializing faster-whisper: model=%s, device=%s, compute_type=%s",
        model_name,
        device,
        compute_type,
    )
    try:
        model = _WhisperModel(model_name, device=device, compute_type=compute_type, num_workers=2)
    except Exception as exc:
        raise TranscriptionError(f"Failed to initialize faster-whisper: {exc}") from exc

    _models[key] = model
    return model


def _discard_result(future: "asyncio.Future[str]") -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug("Abandoned transcription ended: %s", future.exception())


class Transcriber(Protocol):
    async def transcribe(self, path: Path) -> str: ...


class WhisperTranscriber:
    def __init__(
        self,
        model_name: str = "small",
        device: str = "auto",
        beam_size: int = 5,
        language: Optional[str] = None,
    ) -> None:
        self.model_name = model_name
        self.device = device
        self.beam_size = beam_size
        self.language = language

    def _transcribe_sync(self, path: Path, cancelled: Optional[threading.Event] = None) -> str:
        model = _get_model(self.model_name, self.device)
        try:
            segments, info = model.transcribe(
                str(path),
                language=self.language,
                # VAD skips silences
                vad_filter=True,
                vad_parameters=dict(min_silence_duration_ms=500, speech_pad_ms=200),
                beam_size=self.beam_size,
                condition_on_previous_text=False,
                word_timestamps=False,
            )
            parts: list[str] = []
            # Segments decode lazily, so a cancelled request stops here
            for seg in segments:
                if cancelled is not None and cancelled.is_set():
                    raise TranscriptionError("Transcription cancelled")
                if seg.text.strip():
                    parts.append(seg.text.strip())
        except TranscriptionError:
            raise
        except Exception as exc:
            raise TranscriptionError(f"Transcription failed: {exc}") from exc

        text = " ".join(parts).strip()
        logger.info(
            "Transcription complete: duration=%.1fs, chars=%d, language=%s",
            getattr(info, "duration", 0.0),
            len(text),
            getattr(info, "language", self.language),
        )
        return text

    async def transcribe(self, path: Path) -> str:
        cancelled = threading.Event()
        work = asyncio.ensure_future(run_in_threadpool(self._transcribe_sync, path, cancelled))
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; it gives up at the next segment
            cancelled.set()
            work.add_done_callback(_discard_result)
            raise


class MusicDetector:
    """Asks the generative providers whether a transcript is music rather than cooking speech."""

    def __init__(self, providers: Sequence["GenerativeProvider"]) -> None:
        self.providers = list(providers)

    async def is_music(self, transcript: str) -> bool:
        for provider in self.providers:
            try:
                data = await provider.complete_json(MUSIC_DETECTION_SYSTEM, f"Transcript: {transcript}")
            except ServiceError as error:
                logger.warning("Music detection via %s failed: %s", provider.name, error)
                continue
            verdict = data.get("is_music")
            if isinstance(verdict, str):
                return verdict.strip().lower() == "true"
            return verdict is True
        # Undecided counts as cooking content
        return False


class AudioTranscriptionExtractor:
    """Downloads a post's audio track and turns it into text."""

    def __init__(
        self,
        downloader: "MediaDownloader",
        transcriber: Transcriber,
        music_detector: Optional[MusicDetector] = None,
    ) -> None:
        self.downloader = downloader
        self.transcriber = transcriber
        self.music_detector = music_detector

    async def extract(self, url: str, workdir: Path) -> str:
        audio_path: Path | None = None
        try:
            audio_path = await self.downloader.download_audio(url, workdir)
            transcript = await self.transcriber.transcribe(audio_path)
        finally:
            if audio_path is not None:
                audio_path.unlink(missing_ok=True)

        stripped = (transcript or "").strip()
        if not stripped:
            raise NoUsableTextError("Audio transcription produced no speech")
        logger.info("Transcript preview: %r", stripped[:150])

        if self.music_detector is not None and await self.music_detector.is_music(stripped):
            raise NoUsableTextError("Audio track is music or non-cooking speech")
        return stripped
