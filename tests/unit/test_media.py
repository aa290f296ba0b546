from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from reel2recipe.services.errors import DownloadError
from reel2recipe.services.media import (
    MediaDownloader,
    ProcessTimeout,
    extract_thumbnail,
    format_timestamp,
    run_process,
)


class TestExtractThumbnail:
    def test_direct_url(self) -> None:
        assert extract_thumbnail({"thumbnail": " https://cdn.example/a.jpg "}) == "https://cdn.example/a.jpg"

    def test_best_ranked_candidate(self) -> None:
        info = {
            "thumbnails": [
                {"url": "https://cdn.example/small.jpg", "width": 120, "height": 90},
                {"url": "https://cdn.example/preferred.jpg", "preference": 5, "width": 60},
                {"url": "", "width": 4000},
                "garbage",
            ],
        }
        assert extract_thumbnail(info) == "https://cdn.example/preferred.jpg"

    @pytest.mark.parametrize("info", [None, {}, {"thumbnails": "nope"}, {"thumbnails": [{"width": 10}]}])
    def test_missing(self, info: dict | None) -> None:
        assert extract_thumbnail(info) is None


class TestFormatTimestamp:
    @pytest.mark.parametrize(
        "seconds,expected",
        [(0, "00:00:00"), (61, "00:01:01"), (3725.5, "01:02:05.500")],
    )
    def test_format(self, seconds: float, expected: str) -> None:
        assert format_timestamp(seconds) == expected


class TestRunProcess:
    def test_collects_output(self) -> None:
        code, stdout, _ = asyncio.run(run_process([sys.executable, "-c", "print('ok')"], timeout=30))
        assert code == 0
        assert stdout.strip() == b"ok"

    def test_timeout_kills_child(self) -> None:
        with pytest.raises(ProcessTimeout):
            asyncio.run(run_process([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5))


class TestMediaDownloader:
    def test_failed_download_raises(self, tmp_path: Path) -> None:
        downloader = MediaDownloader(command=[sys.executable, "-c", "import sys; sys.exit(2)"])

        with pytest.raises(DownloadError):
            asyncio.run(downloader.download_video("https://example.com/v", tmp_path))

    def test_missing_binary_raises_download_error(self, tmp_path: Path) -> None:
        downloader = MediaDownloader(command=[str(tmp_path / "no-such-yt-dlp")])

        with pytest.raises(DownloadError):
            asyncio.run(downloader.download_audio("https://example.com/v", tmp_path))
