"""
Per-frame vision analysis with batching, pacing and rate-limit retries.

Frames are sent to the vision model in small batches. Inside a batch the
calls run concurrently with a staggered start; batches are separated by a
fixed delay. Rate-limited calls are retried according to an injected
``RetryPolicy``; any other failure drops only the affected frame.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from google.genai import types

from reel2recipe.services.errors import NoObservationsError, RateLimitExceeded
from reel2recipe.services.llm import GeminiProvider, OpenAIProvider
from reel2recipe.services.prompts import vision_prompt
from reel2recipe.services.types import Frame, FrameObservation

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

BATCH_SIZE = 3
FRAME_STAGGER_SECONDS = 0.5
BATCH_DELAY_SECONDS = 1.0
MAX_ATTEMPTS = 6
RETRY_DELAY_SECONDS = 3.0


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    def backoff(attempt: int) -> float:
        return seconds
    return backoff


def is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, RateLimitExceeded)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_ATTEMPTS
    backoff: Callable[[int], float] = fixed_backoff(RETRY_DELAY_SECONDS)
    retryable: Callable[[BaseException], bool] = is_rate_limited

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.retryable(error)


@dataclass(frozen=True)
class BatchPolicy:
    size: int = BATCH_SIZE
    frame_delay: float = FRAME_STAGGER_SECONDS
    batch_delay: float = BATCH_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError("batch size must be positive")


@dataclass
class BatchReport:
    observations: list[FrameObservation] = field(default_factory=list)
    failed_frames: list[int] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.observations)


def plan_batches(frames: list[Frame], size: int) -> list[list[Frame]]:
    return [frames[start:start + size] for start in range(0, len(frames), size)]


def sniff_image_mime(image: bytes) -> str:
    if image.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


class VisionModel(Protocol):
    async def describe_image(self, image: bytes, stage_label: str) -> str: ...


class GeminiVisionModel:
    def __init__(self, provider: GeminiProvider) -> None:
        self.provider = provider

    async def describe_image(self, image: bytes, stage_label: str) -> str:
        contents = [
            types.Part.from_bytes(data=image, mime_type=sniff_image_mime(image)),
            vision_prompt(stage_label),
        ]
        return await self.provider.generate(contents)


class OpenAIVisionModel:
    def __init__(self, provider: OpenAIProvider, max_tokens: int = 300) -> None:
        self.provider = provider
        self.max_tokens = max_tokens

    async def describe_image(self, image: bytes, stage_label: str) -> str:
        encoded = base64.b64encode(image).decode("ascii")
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": vision_prompt(stage_label)},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{sniff_image_mime(image)};base64,{encoded}"},
                },
            ],
        }]
        return await self.provider.chat(messages, max_tokens=self.max_tokens)


class VisionAnalysisBatcher:
    def __init__(
        self,
        model: VisionModel,
        batch_policy: BatchPolicy = BatchPolicy(),
        retry_policy: RetryPolicy = RetryPolicy(),
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.model = model
        self.batch_policy = batch_policy
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def _describe_with_retry(self, frame: Frame) -> str:
        attempt = 1
        while True:
            try:
                return await self.model.describe_image(frame.image, frame.stage_label)
            except Exception as error:
                if not self.retry_policy.should_retry(error, attempt):
                    raise
                delay = self.retry_policy.backoff(attempt)
                logger.warning(
                    "Frame %d rate limited (attempt %d/%d); retrying in %.1fs",
                    frame.index,
                    attempt,
                    self.retry_policy.max_attempts,
                    delay,
                )
                if delay > 0:
                    await self._sleep(delay)
                attempt += 1

    async def _analyze_frame(self, frame: Frame, start_delay: float) -> Optional[FrameObservation]:
        if start_delay > 0:
            await self._sleep(start_delay)
        try:
            text = await self._describe_with_retry(frame)
        except Exception as error:
            logger.warning("Frame %d analysis failed: %s", frame.index, error)
            return None
        return FrameObservation(frame_index=frame.index, text=text.strip(), timestamp=frame.timestamp)

    async def analyze(self, frames: list[Frame]) -> BatchReport:
        report = BatchReport()
        batches = plan_batches(frames, self.batch_policy.size)

        for number, batch in enumerate(batches, start=1):
            logger.info("Analyzing batch %d/%d (%d frames)", number, len(batches), len(batch))
            results = await asyncio.gather(*(
                self._analyze_frame(frame, offset * self.batch_policy.frame_delay)
                for offset, frame in enumerate(batch)
            ))
            for frame, observation in zip(batch, results):
                if observation is None:
                    report.failed_frames.append(frame.index)
                else:
                    report.observations.append(observation)

            if number < len(batches) and self.batch_policy.batch_delay > 0:
                await self._sleep(self.batch_policy.batch_delay)

        logger.info(
            "Vision analysis complete: %d/%d frames succeeded",
            report.success_count,
            len(frames),
        )
        if not report.observations:
            raise NoObservationsError("Vision analysis failed for every frame")
        return report
