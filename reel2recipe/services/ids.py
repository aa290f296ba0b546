# reel2recipe/services/ids.py
from urllib.parse import urlparse

from reel2recipe.services.errors import PlatformUnsupportedError
from reel2recipe.services.types import Platform

# Substring match against the host; first hit wins
_PLATFORM_DOMAINS: tuple[tuple[str, Platform], ...] = (
    ("tiktok.com", "tiktok"),
    ("instagram.com", "instagram"),
    ("instagr.am", "instagram"),
    ("youtube.com", "youtube"),
    ("youtu.be", "youtube"),
    ("facebook.com", "facebook"),
    ("fb.watch", "facebook"),
    ("pinterest.", "pinterest"),
    ("pin.it", "pinterest"),
)


def classify(url: str) -> Platform:
    """Returns the platform for a URL; unknown hosts are still attempted as generic pages."""
    host = (urlparse(url.strip()).netloc or url).lower()
    for domain, platform in _PLATFORM_DOMAINS:
        if domain in host:
            return platform
    return "unknown"


def validate_url(url: str) -> str:
    cleaned = (url or "").strip()
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise PlatformUnsupportedError(f"Not a web link: {url!r}")
    return cleaned


def is_slideshow_url(url: str) -> bool:
    return classify(url) == "tiktok" and "/photo/" in url
