from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from reel2recipe.services.errors import ServiceError
from reel2recipe.services.llm import GenerativeProvider
from reel2recipe.services.normalizer import LEADING_QUANTITY_RE, UNITS_PATTERN
from reel2recipe.services.prompts import TITLE_SYSTEM

logger = logging.getLogger(__name__)

MIN_TITLE_CHARS = 5
MAX_TITLE_CHARS = 100
DEFAULT_TITLE = "Untitled Recipe"

EMOJI_RE = re.compile("[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F1E0-\U0001F1FF\uFE0F]")
HASHTAG_RE = re.compile(r"#\w+")
MENTION_RE = re.compile(r"@\w+")
TRAILING_NOISE_RE = re.compile(
    r"\s+(?:full recipe on|recipe in bio|link in bio|follow for more|(?:makes?\s+)?\d+\s+servings|ready in|prep time).*$",
    re.IGNORECASE,
)
PLATFORM_SUFFIX_RE = re.compile(
    r"\s*(?:[|\-–•]\s*(?:TikTok|Instagram|YouTube|Facebook|Pinterest)\b.*|on (?:TikTok|Instagram)\b.*)$",
    re.IGNORECASE,
)
GENERIC_TITLES = {
    "tiktok", "tiktok - make your day", "instagram", "login • instagram", "youtube", "facebook",
    "pinterest", "reels", "video", "watch",
}
NON_TITLE_START_RE = re.compile(
    r"^(?:follow|subscribe|like|comment|share|because|in a|in the|add|mix|whisk|combine|stir|beat|fold|pour|bake|cook|heat|preheat)\b",
    re.IGNORECASE,
)
NON_TITLE_WORDS_RE = re.compile(
    r"\b(?:ingredients|instructions|method|subscribe|link in bio|let me know|don't forget)\b",
    re.IGNORECASE,
)
UNIT_PREFIX_RE = re.compile(rf"^\s*{UNITS_PATTERN}\s+(?:of\s+)?", re.IGNORECASE)


def _strip_noise(text: str) -> str:
    text = EMOJI_RE.sub("", text)
    text = HASHTAG_RE.sub("", MENTION_RE.sub("", text))
    text = TRAILING_NOISE_RE.sub("", text)
    return re.sub(r"\s+", " ", text).strip(" .!?:-–|")


def title_case(text: str) -> str:
    text = re.sub(r"^(?:a|an|the)\s+", "", text.strip(), flags=re.IGNORECASE)
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def _acceptable(candidate: str) -> bool:
    if not MIN_TITLE_CHARS <= len(candidate) <= MAX_TITLE_CHARS:
        return False
    if candidate.lower() in GENERIC_TITLES:
        return False
    return not NON_TITLE_START_RE.match(candidate) and not NON_TITLE_WORDS_RE.search(candidate)


def title_from_page(page_title: Optional[str]) -> Optional[str]:
    if not page_title:
        return None
    candidate = _strip_noise(PLATFORM_SUFFIX_RE.sub("", page_title))
    return title_case(candidate) if _acceptable(candidate) else None


def title_from_caption(caption: Optional[str]) -> Optional[str]:
    """Uses the caption's first sentence when it reads like a dish name."""
    if not caption:
        return None
    first_line = next((line for line in caption.splitlines() if _strip_noise(line)), "")
    match = re.match(r"^([^.!?\n]+)", _strip_noise(first_line))
    if not match:
        return None
    candidate = match.group(1).strip()
    return title_case(candidate) if _acceptable(candidate) else None


def smart_title(page_title: Optional[str], caption: Optional[str]) -> Optional[str]:
    return title_from_page(page_title) or title_from_caption(caption)


def _ingredient_name(ingredient: str) -> str:
    name = LEADING_QUANTITY_RE.sub("", ingredient, count=1)
    name = UNIT_PREFIX_RE.sub("", name)
    return name.split(",")[0].strip()


def title_from_ingredients(ingredients: Sequence[str]) -> str:
    names = [name for name in (_ingredient_name(item) for item in ingredients) if name][:2]
    if not names:
        return DEFAULT_TITLE
    return title_case(f"{' and '.join(names)} recipe")


async def generate_title(ingredients: Sequence[str], providers: Sequence[GenerativeProvider] = ()) -> str:
    listing = "\n".join(f"- {item}" for item in ingredients[:12])
    for provider in providers:
        try:
            data = await provider.complete_json(TITLE_SYSTEM, f"Ingredients:\n{listing}")
        except ServiceError as error:
            logger.warning("Title generation via %s failed: %s", provider.name, error)
            continue
        title = data.get("title")
        if isinstance(title, str) and _acceptable(title.strip()):
            return title.strip()
    return title_from_ingredients(ingredients)
