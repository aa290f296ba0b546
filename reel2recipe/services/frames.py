"""
Adaptive still-frame sampling for cooking videos.

The video is downloaded once, probed for its duration and sampled at
timestamps whose density depends on the video length: short clips are
covered every couple of seconds, long ones are sampled more sparsely in the
middle where less changes on screen.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from reel2recipe.services.errors import (
    FrameCaptureError,
    FrameExtractionTimeout,
    NoFramesExtractedError,
    ProbeFallback,
)
from reel2recipe.services.media import MediaDownloader, capture_frame, probe_duration
from reel2recipe.services.types import Frame

logger = logging.getLogger(__name__)

ProbeFn = Callable[[Path], Awaitable[float]]
CaptureFn = Callable[[Path, float, float], Awaitable[bytes]]

MIN_FRAME_TIMEOUT_SECONDS = 15.0
MAX_FRAME_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class SamplingPolicy:
    """Duration bands and step sizes; tuned empirically, not derived."""
    short_max: float = 60
    short_start: float = 1
    short_step: float = 2

    medium_max: float = 180
    medium_start: float = 3
    medium_edge_step: float = 7
    medium_mid_start: float = 35
    medium_mid_step: float = 5

    long_max: float = 300
    long_start: float = 2
    long_edge_step: float = 5
    long_mid_start: float = 40
    long_mid_step: float = 10

    very_long_start: float = 5
    very_long_step: float = 15
    horizon: float = 300

    edge_window: float = 30
    tail_margin: float = 5
    end_buffer: float = 2

    default_duration: float = 60
    min_frame_bytes: int = 1000
    frame_timeout_seconds: float = 30

    @property
    def frame_timeout(self) -> float:
        return min(max(self.frame_timeout_seconds, MIN_FRAME_TIMEOUT_SECONDS), MAX_FRAME_TIMEOUT_SECONDS)


def _steps(start: float, stop: float, step: float, inclusive: bool = False) -> list[float]:
    values: list[float] = []
    t = start
    while t < stop or (inclusive and t == stop):
        values.append(t)
        t += step
    return values


def generate_timestamps(duration: float, policy: SamplingPolicy = SamplingPolicy()) -> list[float]:
    """Returns ascending, unique sample points with ``0 <= t < duration - end_buffer``."""
    d = duration
    window = policy.edge_window
    timestamps: list[float] = []

    if d <= policy.short_max:
        timestamps += _steps(policy.short_start, d, policy.short_step)
    elif d <= policy.medium_max:
        timestamps += [t for t in _steps(policy.medium_start, window, policy.medium_edge_step, inclusive=True) if t < d]
        timestamps += _steps(policy.medium_mid_start, d - window, policy.medium_mid_step)
        tail_start = max(d - window, policy.medium_mid_start)
        timestamps += _steps(tail_start, d - policy.tail_margin, policy.medium_edge_step)
    elif d <= policy.long_max:
        timestamps += [t for t in _steps(policy.long_start, window, policy.long_edge_step, inclusive=True) if t < d]
        timestamps += _steps(policy.long_mid_start, d - window, policy.long_mid_step)
        tail_start = max(d - window, policy.long_mid_start)
        timestamps += _steps(tail_start, d - policy.tail_margin, policy.long_edge_step)
    else:
        timestamps += _steps(policy.very_long_start, min(d, policy.horizon), policy.very_long_step)

    limit = d - policy.end_buffer
    return sorted({t for t in timestamps if 0 <= t < limit})


class FrameSampler:
    def __init__(
        self,
        downloader: MediaDownloader,
        policy: SamplingPolicy = SamplingPolicy(),
        probe: ProbeFn = probe_duration,
        capture: CaptureFn = capture_frame,
    ) -> None:
        self.downloader = downloader
        self.policy = policy
        self._probe = probe
        self._capture = capture

    async def probe(self, video_path: Path) -> float:
        try:
            return await self._probe(video_path)
        except ProbeFallback as error:
            logger.warning("%s; defaulting to %ss", error, self.policy.default_duration)
            return self.policy.default_duration

    async def capture_all(self, video_path: Path, timestamps: list[float]) -> list[Frame]:
        frames: list[Frame] = []
        timeout = self.policy.frame_timeout
        for timestamp in timestamps:
            try:
                image = await self._capture(video_path, timestamp, timeout)
            except (FrameExtractionTimeout, FrameCaptureError) as error:
                logger.warning("Skipping frame: %s", error)
                continue

            if len(image) < self.policy.min_frame_bytes:
                logger.debug("Discarding %d-byte frame at %ss", len(image), timestamp)
                continue
            frames.append(Frame(index=len(frames), timestamp=timestamp, image=image))
        return frames

    async def sample(self, url: str, workdir: Path) -> list[Frame]:
        video_path: Optional[Path] = None
        try:
            video_path = await self.downloader.download_video(url, workdir)
            duration = await self.probe(video_path)
            timestamps = generate_timestamps(duration, self.policy)
            logger.info("Sampling %d timestamps from %.0fs video", len(timestamps), duration)
            frames = await self.capture_all(video_path, timestamps)
        finally:
            if video_path is not None:
                video_path.unlink(missing_ok=True)

        if not frames:
            raise NoFramesExtractedError("No valid frames extracted from video")
        logger.info("Extracted %d frames", len(frames))
        return frames

    async def sample_slideshow(self, url: str, workdir: Path) -> list[Frame]:
        """Sources frames from the still images of a photo post instead of a video."""
        paths = await self.downloader.download_images(url, workdir)
        frames: list[Frame] = []
        try:
            for path in paths:
                image = path.read_bytes()
                if len(image) < self.policy.min_frame_bytes:
                    continue
                frames.append(Frame(index=len(frames), timestamp=None, image=image))
        finally:
            for path in paths:
                path.unlink(missing_ok=True)

        if not frames:
            raise NoFramesExtractedError("Photo post contained no usable images")
        return frames
