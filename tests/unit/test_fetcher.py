from __future__ import annotations

import asyncio
import json

import pytest

from reel2recipe.services.errors import FetchError, NotFoundError
from reel2recipe.services.fetcher import (
    ALTERNATE_USER_AGENT,
    DESKTOP_USER_AGENT,
    MOBILE_USER_AGENT,
    CaptionExtractor,
    clean_caption,
    find_caption_in_json,
    mobile_url,
)

CAPTION = "Creamy garlic pasta with 2 cups cream and parmesan"


class PageSourceStub:
    """Serves canned HTML per user agent; a FetchError entry simulates a blocked request."""

    def __init__(self, pages: dict[str, str | FetchError]) -> None:
        self.pages = pages
        self.calls: list[tuple[str, str]] = []

    async def fetch_page(self, url: str, user_agent: str) -> str:
        self.calls.append((url, user_agent))
        page = self.pages.get(user_agent, FetchError(url, "HTTP 403"))
        if isinstance(page, FetchError):
            raise page
        return page


def html(head: str = "", body: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


def extract(stub: PageSourceStub, url: str):
    return asyncio.run(CaptionExtractor(stub).extract(url))


class TestCaptionExtractor:
    def test_instagram_mobile_meta_description(self) -> None:
        page = html(
            '<meta name="description" content=\'1,234 likes, 56 comments - chef on May 1, 2024: "'
            + CAPTION
            + '".\'>'
            '<meta property="og:title" content="Garlic Pasta">'
            '<meta property="og:image" content="https://cdn.example/thumb.jpg">'
        )
        stub = PageSourceStub({MOBILE_USER_AGENT: page})

        result = extract(stub, "https://www.instagram.com/reel/abc/")

        assert result.text == CAPTION
        assert result.strategy == "mobile_meta_description"
        assert result.title == "Garlic Pasta"
        assert result.thumbnail == "https://cdn.example/thumb.jpg"
        assert stub.calls[0][0] == "https://m.instagram.com/reel/abc/"

    def test_tiktok_rehydration_json_on_desktop_page(self) -> None:
        data = {
            "__DEFAULT_SCOPE__": {
                "webapp.video-detail": {"itemInfo": {"itemStruct": {"desc": CAPTION + " #pasta"}}},
            },
        }
        page = html(body=f'<script id="__UNIVERSAL_DATA_FOR_REHYDRATION__" type="application/json">{json.dumps(data)}</script>')
        stub = PageSourceStub({DESKTOP_USER_AGENT: page})

        result = extract(stub, "https://www.tiktok.com/@chef/video/1")

        assert result.strategy == "desktop_embedded_json"
        assert result.text == CAPTION + " #pasta"
        assert [agent for _, agent in stub.calls] == [MOBILE_USER_AGENT, ALTERNATE_USER_AGENT, DESKTOP_USER_AGENT]

    def test_blocked_request_retried_with_alternate_agent(self) -> None:
        page = html(f'<meta name="description" content="{CAPTION}">')
        stub = PageSourceStub({ALTERNATE_USER_AGENT: page})

        result = extract(stub, "https://www.facebook.com/reel/1")

        assert result.text == CAPTION
        assert [agent for _, agent in stub.calls] == [MOBILE_USER_AGENT, ALTERNATE_USER_AGENT]

    def test_youtube_player_response(self) -> None:
        player = json.dumps({"videoDetails": {"shortDescription": CAPTION}})
        page = html(body=f"<script>var ytInitialPlayerResponse = {player};</script>")
        stub = PageSourceStub({DESKTOP_USER_AGENT: page})

        result = extract(stub, "https://youtube.com/shorts/abc")

        assert result.text == CAPTION

    def test_short_captions_are_not_enough(self) -> None:
        page = html('<meta name="description" content="Yum!"><meta property="og:description" content="So good">')
        stub = PageSourceStub({MOBILE_USER_AGENT: page, DESKTOP_USER_AGENT: page})

        with pytest.raises(NotFoundError):
            extract(stub, "https://www.tiktok.com/@chef/video/1")

    def test_unreachable_page_raises_fetch_error(self) -> None:
        with pytest.raises(FetchError):
            extract(PageSourceStub({}), "https://www.tiktok.com/@chef/video/1")


class TestCaptionHelpers:
    def test_clean_caption_strips_instagram_stats(self) -> None:
        wrapped = f'12K likes, 300 comments - cook: "{CAPTION}".'
        assert clean_caption(wrapped) == CAPTION
        assert clean_caption("  plain caption  ") == "plain caption"
        assert clean_caption("") is None

    def test_find_caption_prefers_caption_key(self) -> None:
        data = {
            "meta": {"description": "A much longer description of the page that is not the caption"},
            "items": [{"caption": CAPTION}],
        }
        assert find_caption_in_json(data) == CAPTION

    def test_find_caption_ignores_short_values(self) -> None:
        assert find_caption_in_json({"caption": "too short"}) is None

    def test_mobile_url(self) -> None:
        assert mobile_url("https://www.instagram.com/p/x/") == "https://m.instagram.com/p/x/"
        assert mobile_url("https://www.tiktok.com/@a/video/1") == "https://www.tiktok.com/@a/video/1"
