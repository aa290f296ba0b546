"""
Caption extraction from a post's public page.

Pages are fetched with browser-like user agents (mobile first, then desktop)
and searched for the post caption in meta tags and embedded JSON blobs. The
first candidate longer than ``MIN_CAPTION_CHARS`` wins.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional, Protocol

import httpx
from bs4 import BeautifulSoup

from reel2recipe.services.errors import FetchError, NotFoundError
from reel2recipe.services.types import CaptionResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
MIN_CAPTION_CHARS = 20

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
# Link-preview crawlers are usually served the og: tags
ALTERNATE_USER_AGENT = "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)"

CAPTION_KEYS = ("caption", "shortDescription", "description", "desc", "articleBody", "text")
MAX_JSON_DEPTH = 25

SHARED_DATA_RE = re.compile(r"window\._sharedData\s*=\s*(\{.+?\});\s*</script>", re.DOTALL)
ADDITIONAL_DATA_RE = re.compile(r"window\.__additionalDataLoaded\([^,]+,\s*(\{.+?\})\);\s*</script>", re.DOTALL)
YT_PLAYER_RE = re.compile(r"ytInitialPlayerResponse\s*=\s*(\{.+?\});\s*(?:var |</script>)", re.DOTALL)
# "1,234 likes, 56 comments - chef on May 1, 2024: "caption"."
INSTAGRAM_STATS_RE = re.compile(r'^[\d.,KkMm]+\s+likes?,\s*[\d.,KkMm]+\s+comments?\s*-\s*[^:]*:\s*["“](?P<caption>.*)["”]\.?\s*$', re.DOTALL)


class PageFetcher:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    async def fetch_page(self, url: str, user_agent: str) -> str:
        headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return response.text
        except httpx.TimeoutException as error:
            raise FetchError(url, f"timed out after {self.timeout}s") from error
        except httpx.HTTPStatusError as error:
            raise FetchError(url, f"HTTP {error.response.status_code}") from error
        except httpx.HTTPError as error:
            raise FetchError(url, str(error) or error.__class__.__name__) from error


class PageSource(Protocol):
    async def fetch_page(self, url: str, user_agent: str) -> str: ...


def mobile_url(url: str) -> str:
    return url.replace("://www.instagram.com", "://m.instagram.com")


def clean_caption(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    stripped = text.strip()
    match = INSTAGRAM_STATS_RE.match(stripped)
    if match:
        stripped = match.group("caption").strip()
    return stripped or None


def _meta_content(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    return content.strip() if isinstance(content, str) and content.strip() else None


def _load_json(raw: str) -> Optional[Any]:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None


def _dig(data: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(data, dict):
            data = data.get(key)
        elif isinstance(data, list) and isinstance(key, int) and -len(data) <= key < len(data):
            data = data[key]
        else:
            return None
    return data


def find_caption_in_json(data: Any, min_chars: int = MIN_CAPTION_CHARS) -> Optional[str]:
    """Searches nested JSON for caption-like keys; earlier keys in ``CAPTION_KEYS`` win, then longer text."""
    best: Optional[tuple[int, int, str]] = None
    stack: list[tuple[Any, int]] = [(data, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > MAX_JSON_DEPTH:
            continue
        if isinstance(node, dict):
            for key, value in node.items():
                if isinstance(value, str) and key in CAPTION_KEYS and len(value.strip()) > min_chars:
                    candidate = (CAPTION_KEYS.index(key), -len(value.strip()), value.strip())
                    if best is None or candidate < best:
                        best = candidate
                elif isinstance(value, (dict, list)):
                    stack.append((value, depth + 1))
        elif isinstance(node, list):
            stack.extend((item, depth + 1) for item in node)
    return best[2] if best else None


def _instagram_caption(data: Any) -> Optional[str]:
    for media in (
        _dig(data, "entry_data", "PostPage", 0, "graphql", "shortcode_media"),
        _dig(data, "graphql", "shortcode_media"),
    ):
        text = _dig(media, "edge_media_to_caption", "edges", 0, "node", "text")
        if isinstance(text, str):
            return text
    return None


def embedded_json_caption(html: str, soup: BeautifulSoup) -> Optional[str]:
    for pattern in (SHARED_DATA_RE, ADDITIONAL_DATA_RE):
        match = pattern.search(html)
        if match:
            caption = _instagram_caption(_load_json(match.group(1)))
            if caption:
                return caption

    tiktok = soup.find("script", id="__UNIVERSAL_DATA_FOR_REHYDRATION__")
    if tiktok is not None and tiktok.string:
        desc = _dig(
            _load_json(tiktok.string),
            "__DEFAULT_SCOPE__", "webapp.video-detail", "itemInfo", "itemStruct", "desc",
        )
        if isinstance(desc, str) and desc.strip():
            return desc

    match = YT_PLAYER_RE.search(html)
    if match:
        description = _dig(_load_json(match.group(1)), "videoDetails", "shortDescription")
        if isinstance(description, str):
            return description
    return None


def json_scripts_caption(html: str, soup: BeautifulSoup) -> Optional[str]:
    for script in soup.find_all("script", attrs={"type": ["application/json", "application/ld+json"]}):
        if not script.string:
            continue
        data = _load_json(script.string)
        if data is None:
            continue
        caption = find_caption_in_json(data)
        if caption:
            return caption
    return None


Strategy = Callable[[str, BeautifulSoup], Optional[str]]

MOBILE_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("mobile_meta_description", lambda html, soup: _meta_content(soup, name="description")),
    ("mobile_embedded_json", embedded_json_caption),
)
DESKTOP_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("og_description", lambda html, soup: _meta_content(soup, property="og:description")),
    ("desktop_embedded_json", embedded_json_caption),
    ("meta_title", lambda html, soup: _meta_content(soup, name="title") or _meta_content(soup, property="og:title")),
    ("json_scripts", json_scripts_caption),
)


class CaptionExtractor:
    def __init__(self, fetcher: PageSource, min_chars: int = MIN_CAPTION_CHARS) -> None:
        self.fetcher = fetcher
        self.min_chars = min_chars

    async def _fetch(self, url: str, user_agent: str) -> str:
        try:
            return await self.fetcher.fetch_page(url, user_agent)
        except FetchError as error:
            logger.info("Retrying %s with alternate user agent after: %s", url, error)
            return await self.fetcher.fetch_page(url, ALTERNATE_USER_AGENT)

    def _run(self, strategies: tuple[tuple[str, Strategy], ...], html: str, soup: BeautifulSoup) -> Optional[tuple[str, str]]:
        for name, strategy in strategies:
            caption = clean_caption(strategy(html, soup))
            if caption and len(caption) > self.min_chars:
                return name, caption
            if caption:
                logger.debug("Strategy %s found only %d chars", name, len(caption))
        return None

    async def extract(self, url: str) -> CaptionResult:
        title: Optional[str] = None
        thumbnail: Optional[str] = None
        last_error: Optional[FetchError] = None
        fetched_any = False

        for page_url, user_agent, strategies in (
            (mobile_url(url), MOBILE_USER_AGENT, MOBILE_STRATEGIES),
            (url, DESKTOP_USER_AGENT, DESKTOP_STRATEGIES),
        ):
            try:
                html = await self._fetch(page_url, user_agent)
            except FetchError as error:
                logger.warning("Page fetch failed: %s", error)
                last_error = error
                continue

            fetched_any = True
            soup = BeautifulSoup(html, "html.parser")
            title = title or _meta_content(soup, property="og:title")
            thumbnail = thumbnail or _meta_content(soup, property="og:image")

            found = self._run(strategies, html, soup)
            if found is not None:
                strategy, caption = found
                logger.info("Caption found via %s (%d chars)", strategy, len(caption))
                return CaptionResult(text=caption, strategy=strategy, title=title, thumbnail=thumbnail)

        if last_error is not None and not fetched_any:
            raise last_error
        raise NotFoundError(f"No caption found for {url}")
