from __future__ import annotations

import asyncio
import json
import logging
import math
import sys
from pathlib import Path
from typing import Sequence

from reel2recipe.services.errors import (
    DownloadError,
    FrameCaptureError,
    FrameExtractionTimeout,
    ProbeFallback,
)

logger = logging.getLogger(__name__)

YTDLP_COMMAND: tuple[str, ...] = (sys.executable, "-m", "yt_dlp")
DOWNLOAD_TIMEOUT_SECONDS = 300
METADATA_TIMEOUT_SECONDS = 30
FFPROBE_TIMEOUT_SECONDS = 10
IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".webp")
MIN_IMAGE_BYTES = 1000

SLIDESHOW_REMEDIATION = """TikTok photo posts are protected by anti-bot measures and cannot be automatically analyzed.

Alternative options:
1. Try a regular TikTok video URL (not /photo/)
2. Screenshot the images and upload them directly
3. Copy any text/captions from the post manually"""

# yt-dlp argument sets tried in order for photo/slideshow posts
_SLIDESHOW_ATTEMPTS: tuple[tuple[str, ...], ...] = (
    ("--write-all-thumbnails", "--write-info-json", "--skip-download"),
    ("--force-extractor", "tiktok", "--write-all-thumbnails", "--skip-download"),
    ("--yes-playlist", "--write-thumbnail", "--skip-download"),
    ("--write-thumbnail", "--convert-thumbnails", "jpg", "--skip-download"),
)


class ProcessTimeout(Exception):
    def __init__(self, args: Sequence[str], timeout_seconds: float):
        super().__init__(f"{args[0]} timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def run_process(args: Sequence[str], timeout: float) -> tuple[int, bytes, bytes]:
    """Runs a subprocess to completion; the child is killed on timeout or cancellation."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as error:
        _kill(proc)
        await proc.wait()
        raise ProcessTimeout(args, timeout) from error
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        raise
    return proc.returncode or 0, stdout, stderr


def _clean_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _safe_numeric(value: object, default: int | float = 0) -> int | float:
    return value if isinstance(value, (int, float)) else default


def extract_thumbnail(info: dict | None) -> str | None:
    if not isinstance(info, dict):
        return None

    direct_url = _clean_string(info.get("thumbnail")) or _clean_string(info.get("thumbnail_url"))
    if direct_url:
        return direct_url

    thumbnails = info.get("thumbnails")
    if not isinstance(thumbnails, list):
        return None

    scored = [
        (
            (
                _safe_numeric(entry.get("preference")),
                _safe_numeric(entry.get("width")),
                _safe_numeric(entry.get("height")),
            ),
            _clean_string(entry.get("url")),
        )
        for entry in thumbnails
        if isinstance(entry, dict) and _clean_string(entry.get("url"))
    ]
    if not scored:
        return None

    scored.sort(reverse=True, key=lambda item: item[0])
    return scored[0][1]


def _stderr_tail(stderr: bytes, limit: int = 400) -> str:
    text = stderr.decode("utf-8", errors="replace").strip()
    return text[-limit:] if text else "no error output"


class MediaDownloader:
    """Downloads media for one request into a caller-owned directory via yt-dlp."""

    def __init__(
        self,
        command: Sequence[str] = YTDLP_COMMAND,
        timeout_seconds: float = DOWNLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self.command = tuple(command)
        self.timeout_seconds = timeout_seconds

    async def _run(self, args: Sequence[str], timeout: float | None = None) -> tuple[int, bytes, bytes]:
        full_args = [*self.command, "--no-warnings", *args]
        logger.debug("Running yt-dlp: %s", " ".join(full_args[:-1] + ["<URL>"]))
        try:
            return await run_process(full_args, timeout or self.timeout_seconds)
        except ProcessTimeout as error:
            raise DownloadError(f"yt-dlp timed out after {error.timeout_seconds:.0f}s") from error
        except OSError as error:
            raise DownloadError(f"Failed to start yt-dlp: {error}") from error

    @staticmethod
    def _find_output(target_dir: Path, stem: str) -> Path | None:
        candidates = sorted(
            path for path in target_dir.glob(f"{stem}.*")
            if path.is_file() and not path.name.endswith((".part", ".ytdl", ".json"))
        )
        return candidates[0] if candidates else None

    async def download_video(self, url: str, target_dir: Path) -> Path:
        template = target_dir / "video.%(ext)s"
        code, _stdout, stderr = await self._run([
            "--format", "best[ext=mp4]/best",
            "--no-playlist",
            "--force-overwrites",
            "--output", str(template),
            url,
        ])
        path = self._find_output(target_dir, "video")
        if code != 0 or path is None:
            raise DownloadError(f"Video download failed: {_stderr_tail(stderr)}")
        logger.info("Video downloaded: %s (%.2f MB)", path.name, path.stat().st_size / (1024 * 1024))
        return path

    async def download_audio(self, url: str, target_dir: Path) -> Path:
        template = target_dir / "audio.%(ext)s"
        code, _stdout, stderr = await self._run([
            "--format", "bestaudio/best",
            "--extract-audio",
            "--audio-format", "mp3",
            "--audio-quality", "192K",
            "--no-playlist",
            "--output", str(template),
            url,
        ])
        path = self._find_output(target_dir, "audio")
        if code != 0 or path is None:
            raise DownloadError(f"Audio download failed: {_stderr_tail(stderr)}")
        logger.info("Audio downloaded: %s (%.2f MB)", path.name, path.stat().st_size / (1024 * 1024))
        return path

    async def download_images(self, url: str, target_dir: Path) -> list[Path]:
        """Still-image variant for slideshow posts that expose no playable stream."""
        for index, extra_args in enumerate(_SLIDESHOW_ATTEMPTS, start=1):
            attempt_dir = target_dir / f"slides_{index}"
            attempt_dir.mkdir(parents=True, exist_ok=True)
            try:
                code, _stdout, stderr = await self._run([
                    *extra_args,
                    "--output", str(attempt_dir / "%(autonumber)03d_%(id)s.%(ext)s"),
                    url,
                ])
            except DownloadError as error:
                logger.warning("Slideshow attempt %d failed: %s", index, error)
                continue

            images = sorted(
                path for path in attempt_dir.iterdir()
                if path.suffix.lower() in IMAGE_SUFFIXES and path.stat().st_size > MIN_IMAGE_BYTES
            )
            if code == 0 and images:
                logger.info("Slideshow attempt %d produced %d images", index, len(images))
                return images
            logger.debug("Slideshow attempt %d produced no images: %s", index, _stderr_tail(stderr))

        raise DownloadError("No images could be downloaded from the photo post", remediation=SLIDESHOW_REMEDIATION)

    async def fetch_info(self, url: str) -> dict:
        code, stdout, stderr = await self._run(
            ["--dump-single-json", "--skip-download", "--no-playlist", url],
            timeout=METADATA_TIMEOUT_SECONDS,
        )
        if code != 0:
            raise DownloadError(f"Metadata lookup failed: {_stderr_tail(stderr)}")
        try:
            info = json.loads(stdout.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as error:
            raise DownloadError(f"Metadata lookup returned invalid JSON: {error}") from error
        return info if isinstance(info, dict) else {}


def format_timestamp(seconds: float) -> str:
    whole = int(seconds)
    hours, remainder = divmod(whole, 3600)
    minutes, secs = divmod(remainder, 60)
    millis = int(round((seconds - whole) * 1000))
    stamp = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{stamp}.{millis:03d}" if millis else stamp


async def probe_duration(path: Path, timeout: float = FFPROBE_TIMEOUT_SECONDS) -> float:
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "csv=p=0",
        str(path),
    ]
    try:
        code, stdout, stderr = await run_process(args, timeout)
    except (ProcessTimeout, OSError) as error:
        raise ProbeFallback(str(path), str(error)) from error

    output = stdout.decode("utf-8", errors="replace").strip()
    if code != 0 or not output:
        raise ProbeFallback(str(path), _stderr_tail(stderr))
    try:
        duration = float(output.splitlines()[0])
    except ValueError as error:
        raise ProbeFallback(str(path), f"unparseable duration {output!r}") from error
    if not math.isfinite(duration) or duration <= 0:
        raise ProbeFallback(str(path), f"invalid duration {duration}")
    return float(math.floor(duration))


async def capture_frame(path: Path, timestamp: float, timeout: float) -> bytes:
    """Seeks to ``timestamp`` and returns exactly one PNG still."""
    args = [
        "ffmpeg",
        "-ss", format_timestamp(timestamp),
        "-i", str(path),
        "-frames:v", "1",
        "-f", "image2pipe",
        "-vcodec", "png",
        "-q:v", "2",
        "-y",
        "pipe:1",
    ]
    try:
        code, stdout, stderr = await run_process(args, timeout)
    except ProcessTimeout as error:
        raise FrameExtractionTimeout(timestamp, timeout) from error
    except OSError as error:
        raise FrameCaptureError(timestamp, f"failed to start ffmpeg: {error}") from error

    if code != 0 or not stdout:
        raise FrameCaptureError(timestamp, _stderr_tail(stderr, limit=200))
    return stdout
