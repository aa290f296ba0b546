"""
Turns free text (captions, transcripts, frame narratives) into a recipe draft.

Strategies run in order. Deterministic parsers go first; a plausible result
may be tidied by a generative cleanup pass, which is kept only if it
validates. When no parser finds a plausible recipe, each generative provider
is asked in priority order. The normalizer never raises when no recipe is
found: it returns a placeholder draft instead.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Optional, Protocol, Sequence

from reel2recipe.services.errors import ServiceError
from reel2recipe.services.llm import GenerativeProvider
from reel2recipe.services.narrative import is_narrative
from reel2recipe.services.prompts import (
    CLEANUP_SYSTEM,
    NARRATIVE_EXTRACTION_SYSTEM,
    TEXT_EXTRACTION_SYSTEM,
    extraction_user_prompt,
)
from reel2recipe.services.types import RecipeDraft, placeholder_draft

logger = logging.getLogger(__name__)

FINGERPRINT_CHARS = 30
MIN_CLEANUP_INSTRUCTION_CHARS = 8
MAX_INGREDIENT_CHARS = 150

UNITS = [
    "teaspoon", "teaspoons", "tsp", "tablespoon", "tablespoons", "tbsp", "tbs", "cup", "cups",
    "ounce", "ounces", "oz", "pound", "pounds", "lb", "lbs", "gram", "grams", "g", "kilogram",
    "kilograms", "kg", "liter", "liters", "l", "milliliter", "milliliters", "ml", "pinch", "dash",
    "clove", "cloves", "slice", "slices", "can", "cans", "package", "packages", "stick", "sticks",
    "bunch", "handful", "quart", "quarts", "pint", "pints",
]
UNITS_PATTERN = r"(?:%s)\.?" % "|".join(re.escape(unit) for unit in sorted(UNITS, key=len, reverse=True))
FRACTION = r"(?:\d+\s+\d+/\d+|\d+/\d+|\d+\.\d+|\d+\s*[½⅓⅔¼¾⅛]|[½⅓⅔¼¾⅛]|\d+)"
QUANTITY_RE = re.compile(
    rf"^\s*~?{FRACTION}(?:\s*(?:-|to)\s*{FRACTION})?\s*(?:{UNITS_PATTERN}\b)?\s*(?:of\s+)?[A-Za-z]",
    re.IGNORECASE,
)
UNIT_WORD_RE = re.compile(rf"\b{UNITS_PATTERN}\b", re.IGNORECASE)
LEADING_QUANTITY_RE = re.compile(rf"^\s*~?{FRACTION}?(?:\s*(?:-|to)\s*{FRACTION})?\s*", re.IGNORECASE)
BARE_UNIT_RE = re.compile(rf"^\s*{UNITS_PATTERN}\s*$", re.IGNORECASE)

IMPERATIVE_VERBS = [
    "add", "bake", "blend", "boil", "braise", "bring", "broil", "brown", "brush", "chill", "chop",
    "combine", "cook", "cool", "crack", "cut", "dice", "divide", "drain", "drizzle", "fry", "fold",
    "garnish", "grate", "grill", "heat", "knead", "marinate", "mash", "melt", "microwave", "mix",
    "place", "pour", "preheat", "put", "reduce", "remove", "rest", "roast", "roll", "saute", "sauté",
    "season", "sear", "serve", "shred", "simmer", "slice", "soak", "spread", "sprinkle", "stir",
    "strain", "toast", "top", "transfer", "turn", "whisk",
]
IMPERATIVE_RE = re.compile(rf"^\s*(?:{'|'.join(IMPERATIVE_VERBS)})\b", re.IGNORECASE)

_HEADER_NAMES = r"ingredients?|instructions?|directions?|method|steps|preparation|how to make(?: it)?"
INLINE_HEADER_RE = re.compile(rf"\b(?P<name>{_HEADER_NAMES})\s*:", re.IGNORECASE)
LINE_HEADER_RE = re.compile(rf"^[^\w\n]*(?P<name>{_HEADER_NAMES})[^\w\n]*$", re.IGNORECASE | re.MULTILINE)
# Markers only count at a line start or right after sentence punctuation
STEP_MARKER_RE = re.compile(
    r"(?:^|(?<=[.!?:;])|(?<=[.!?:;]\s))[ \t]*(?:step\s*(?P<step>\d+)\s*[:.)-]|(?P<number>\d+)[.)])\s+",
    re.IGNORECASE | re.MULTILINE,
)
STEP_BOUNDARY_RE = re.compile(rf"(?<=[.!?])\s+(?=(?:{'|'.join(IMPERATIVE_VERBS)})\b)", re.IGNORECASE)
AND_QUANTITY_RE = re.compile(r"\s+(?:and|&|plus)\s+(?=~?\d|[½⅓⅔¼¾⅛])", re.IGNORECASE)
INTRO_RE = re.compile(
    r"^(?:you(?:'ll| will)? need|you'll want|we need|grab|take)\s+(?=~?\d|[½⅓⅔¼¾⅛])",
    re.IGNORECASE,
)
BULLET_RE = re.compile(r"^\s*[-•*▪◦·✔✅➡\uFE0F]+\s*")
HASHTAG_RE = re.compile(r"#\w+")
INLINE_SEPARATOR_RE = re.compile(r"\s*(?:,|;|\.{3}|…)\s*")
SENTENCE_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")
PREP_WORDS = (
    "diced", "chopped", "minced", "sliced", "grated", "shredded", "peeled", "softened", "melted",
    "cubed", "crushed", "to taste", "optional", "divided", "room temperature", "finely", "thinly",
    "roughly", "at room temperature", "for serving", "for garnish",
)

# Ingredients commonly mentioned in steps but left out of generated ingredient lists
CONSISTENCY_KEYWORDS = (
    "broth", "stock", "water", "salt", "pepper", "sugar", "flour", "butter", "oil", "onion",
    "garlic", "ginger", "lemon", "lime", "cheese", "cream", "milk", "wine", "vinegar", "noodles",
)


def fingerprint(text: str) -> str:
    normalized = re.sub(r"[^a-z0-9 ]+", "", text.lower())
    return re.sub(r"\s+", " ", normalized).strip()[:FINGERPRINT_CHARS]


def dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for item in items:
        key = fingerprint(item)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def looks_like_ingredient(text: str) -> bool:
    stripped = text.strip()
    if not stripped or len(stripped) > MAX_INGREDIENT_CHARS:
        return False
    if QUANTITY_RE.match(stripped):
        return True
    return len(stripped) <= 40 and bool(UNIT_WORD_RE.search(stripped)) and not IMPERATIVE_RE.match(stripped)


def _clean_item(text: str) -> str:
    cleaned = HASHTAG_RE.sub("", BULLET_RE.sub("", text))
    return re.sub(r"\s+", " ", cleaned).strip(" .;:,")


def _clean_step(text: str) -> str:
    cleaned = HASHTAG_RE.sub("", BULLET_RE.sub("", text))
    return re.sub(r"\s+", " ", cleaned).strip()


def _content_lines(block: str) -> list[str]:
    lines = []
    for line in block.splitlines():
        stripped = line.strip()
        if not stripped or HASHTAG_RE.sub("", stripped).strip() == "":
            continue
        lines.append(stripped)
    return lines


def find_step_markers(text: str) -> list[re.Match[str]]:
    """Returns the run of step markers numbered 1, 2, 3... in order.

    Numbers that break the run ("bake at 180.", "3:30.") are left in the text.
    """
    markers: list[re.Match[str]] = []
    for match in STEP_MARKER_RE.finditer(text):
        if int(match.group("step") or match.group("number")) == len(markers) + 1:
            markers.append(match)
    return markers


def _step_segments(text: str, markers: Sequence[re.Match[str]]) -> list[str]:
    ends = [marker.start() for marker in markers[1:]] + [len(text)]
    return [text[marker.end():end] for marker, end in zip(markers, ends)]


def split_ingredient_block(block: str) -> tuple[list[str], str]:
    """Splits an ingredient block into items and any trailing step text.

    A single-line block ends at the first sentence that opens with a cooking
    verb ("1 egg. Bake at 180."); that remainder is returned separately.
    """
    lines = _content_lines(block)
    if len(lines) != 1:
        items = [_clean_item(line) for line in lines]
        return [item for item in items if item and len(item) <= MAX_INGREDIENT_CHARS], ""

    line, *rest = STEP_BOUNDARY_RE.split(lines[0], maxsplit=1)
    items: list[str] = []
    for fragment in INLINE_SEPARATOR_RE.split(line):
        item = _clean_item(fragment)
        if not item:
            continue
        if items and item.lower().startswith(PREP_WORDS):
            items[-1] = f"{items[-1]}, {item}"
        else:
            items.append(item)
    return [item for item in items if len(item) <= MAX_INGREDIENT_CHARS], rest[0] if rest else ""


def split_ingredients(block: str) -> list[str]:
    """Splits an ingredient block into items.

    A block on a single line is split on commas, semicolons and ellipses;
    fragments that are only preparation notes ("diced", "to taste") stay
    attached to the preceding item.
    """
    return split_ingredient_block(block)[0]


def split_instructions(block: str) -> list[str]:
    markers = find_step_markers(block)
    if markers:
        # Text before the first marker is an intro, not a step
        return [step for step in (_clean_step(part) for part in _step_segments(block, markers)) if step]

    lines = _content_lines(block)
    if len(lines) == 1:
        lines = SENTENCE_RE.split(lines[0])
    return [step for step in (_clean_step(line) for line in lines) if step]


def is_plausible(draft: Optional[RecipeDraft]) -> bool:
    if draft is None or draft.placeholder:
        return False
    ingredients = draft.usable_ingredients
    return len(ingredients) >= 2 or (len(ingredients) >= 1 and len(draft.instructions) >= 1)


def _is_bare_unit(ingredient: str) -> bool:
    name = LEADING_QUANTITY_RE.sub("", ingredient, count=1)
    return not name.strip() or bool(BARE_UNIT_RE.match(name))


def validate_cleanup(draft: RecipeDraft) -> bool:
    if not draft.usable_ingredients:
        return False
    if any(_is_bare_unit(item) for item in draft.ingredients):
        return False
    return all(len(step.strip()) > MIN_CLEANUP_INSTRUCTION_CHARS for step in draft.instructions)


def validate_generated(draft: RecipeDraft) -> bool:
    return bool(draft.usable_ingredients) and not any(_is_bare_unit(item) for item in draft.ingredients)


def ensure_consistency(draft: RecipeDraft) -> RecipeDraft:
    """Appends ingredients that instructions use but the ingredient list lacks."""
    listed = " ".join(item.lower() for item in draft.ingredients)
    missing: list[str] = []
    for step in draft.instructions:
        lowered = step.lower()
        if "salt and pepper" in lowered:
            candidates = ["salt", "pepper"]
        else:
            candidates = [keyword for keyword in CONSISTENCY_KEYWORDS if re.search(rf"\b{keyword}\b", lowered)]
        for keyword in candidates:
            if keyword not in listed and keyword not in missing:
                missing.append(keyword)

    if missing:
        logger.info("Adding ingredients referenced by instructions: %s", ", ".join(missing))
        draft.ingredients = [*draft.ingredients, *missing]
    return draft


def _ingredient_text(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry.strip() or None
    if isinstance(entry, dict):
        parts = [entry.get("quantity"), entry.get("unit"), entry.get("name")]
        text = " ".join(str(part).strip() for part in parts if isinstance(part, (str, int, float)) and str(part).strip())
        return text or None
    return None


def draft_from_payload(data: dict[str, Any], strategy: str) -> RecipeDraft:
    raw_ingredients = data.get("ingredients") if isinstance(data.get("ingredients"), list) else []
    raw_instructions = data.get("instructions") if isinstance(data.get("instructions"), list) else []
    ingredients = [text for text in (_ingredient_text(entry) for entry in raw_ingredients) if text]
    instructions = [entry.strip() for entry in raw_instructions if isinstance(entry, str) and entry.strip()]
    title = data.get("title")
    return RecipeDraft(
        ingredients=dedupe(ingredients),
        instructions=dedupe(instructions),
        title=title.strip() if isinstance(title, str) and title.strip() else None,
        strategy=strategy,
    )


class TextExtractionStrategy(Protocol):
    name: str
    deterministic: bool

    async def extract(self, text: str, narrative: bool = False) -> Optional[RecipeDraft]: ...


class DeterministicStrategy:
    name = "deterministic"
    deterministic = True

    def parse(self, text: str) -> Optional[RecipeDraft]:
        raise NotImplementedError

    async def extract(self, text: str, narrative: bool = False) -> Optional[RecipeDraft]:
        return self.parse(text)


class SectionHeaderStrategy(DeterministicStrategy):
    """Reads "Ingredients:" / "Instructions:" style sections."""
    name = "section_headers"

    @staticmethod
    def _headers(text: str) -> list[tuple[int, int, str]]:
        found: dict[int, tuple[int, int, str]] = {}
        for pattern in (LINE_HEADER_RE, INLINE_HEADER_RE):
            for match in pattern.finditer(text):
                kind = "ingredients" if match.group("name").lower().startswith("ingredient") else "instructions"
                start = match.start("name")
                if not any(abs(start - other) < 3 for other in found):
                    found[start] = (start, match.end(), kind)
        return [found[key] for key in sorted(found)]

    def parse(self, text: str) -> Optional[RecipeDraft]:
        headers = self._headers(text)
        if not headers:
            return None

        ingredients: list[str] = []
        ingredient_blocks: list[str] = []
        instruction_blocks: list[str] = []
        if not any(kind == "ingredients" for _, _, kind in headers):
            # Unlabelled lead-in; only quantity-like fragments count
            lead_in = split_ingredients(text[:headers[0][0]])
            ingredients.extend(item for item in lead_in if looks_like_ingredient(item))

        for position, (_, content_start, kind) in enumerate(headers):
            content_end = headers[position + 1][0] if position + 1 < len(headers) else len(text)
            block = text[content_start:content_end]
            (ingredient_blocks if kind == "ingredients" else instruction_blocks).append(block)

        for block in ingredient_blocks:
            items, trailing_steps = split_ingredient_block(block)
            ingredients.extend(items)
            if trailing_steps:
                instruction_blocks.append(trailing_steps)
        instructions = [step for block in instruction_blocks for step in split_instructions(block)]
        if not ingredients and not instructions:
            return None
        return RecipeDraft(ingredients=dedupe(ingredients), instructions=dedupe(instructions), strategy=self.name)


class NumberedStepStrategy(DeterministicStrategy):
    """Numbered steps with the ingredient list in the text that precedes them."""
    name = "numbered_steps"

    def parse(self, text: str) -> Optional[RecipeDraft]:
        markers = find_step_markers(text)
        if not markers:
            return None

        ingredients = [item for item in split_ingredients(text[:markers[0].start()]) if looks_like_ingredient(item)]
        instructions: list[str] = []
        for step in (_clean_step(part) for part in _step_segments(text, markers)):
            if not step:
                continue
            if looks_like_ingredient(step) and not IMPERATIVE_RE.match(step):
                ingredients.append(step)
            else:
                instructions.append(step)

        if not ingredients and not instructions:
            return None
        return RecipeDraft(ingredients=dedupe(ingredients), instructions=dedupe(instructions), strategy=self.name)


class QuantityScanStrategy(DeterministicStrategy):
    """Picks quantity-led fragments as ingredients and imperative sentences as steps."""
    name = "quantity_scan"

    @staticmethod
    def _quantity_fragments(sentence: str) -> list[str]:
        fragments = [
            INTRO_RE.sub("", _clean_item(piece))
            for part in INLINE_SEPARATOR_RE.split(sentence)
            for piece in AND_QUANTITY_RE.split(part)
        ]
        return [fragment for fragment in fragments if fragment and QUANTITY_RE.match(fragment)]

    def parse(self, text: str) -> Optional[RecipeDraft]:
        ingredients: list[str] = []
        instructions: list[str] = []
        for line in _content_lines(text):
            for sentence in SENTENCE_RE.split(line):
                quantity_fragments = self._quantity_fragments(sentence)
                if quantity_fragments:
                    ingredients.extend(quantity_fragments)
                    continue
                step = _clean_step(sentence)
                if IMPERATIVE_RE.match(step):
                    instructions.append(step)

        if not ingredients:
            return None
        return RecipeDraft(ingredients=dedupe(ingredients), instructions=dedupe(instructions), strategy=self.name)


class GenerativeStrategy:
    deterministic = False

    def __init__(self, provider: GenerativeProvider) -> None:
        self.provider = provider
        self.name = f"generative:{provider.name}"

    async def extract(self, text: str, narrative: bool = False) -> Optional[RecipeDraft]:
        system = NARRATIVE_EXTRACTION_SYSTEM if narrative else TEXT_EXTRACTION_SYSTEM
        data = await self.provider.complete_json(system, extraction_user_prompt(text, narrative))
        return draft_from_payload(data, strategy=self.name)


def default_strategies(providers: Sequence[GenerativeProvider] = ()) -> list[TextExtractionStrategy]:
    strategies: list[TextExtractionStrategy] = [
        SectionHeaderStrategy(),
        NumberedStepStrategy(),
        QuantityScanStrategy(),
    ]
    strategies.extend(GenerativeStrategy(provider) for provider in providers)
    return strategies


class RecipeTextNormalizer:
    def __init__(
        self,
        providers: Sequence[GenerativeProvider] = (),
        strategies: Optional[Sequence[TextExtractionStrategy]] = None,
        cleanup: bool = True,
    ) -> None:
        self.strategies = list(strategies) if strategies is not None else default_strategies(providers)
        self.cleanup_provider = providers[0] if cleanup and providers else None

    async def _cleanup(self, draft: RecipeDraft) -> RecipeDraft:
        if self.cleanup_provider is None:
            return draft
        payload = json.dumps(
            {"ingredients": draft.ingredients, "instructions": draft.instructions},
            ensure_ascii=False,
        )
        try:
            data = await self.cleanup_provider.complete_json(CLEANUP_SYSTEM, payload)
        except ServiceError as error:
            logger.warning("Cleanup pass failed, keeping parsed recipe: %s", error)
            return draft

        cleaned = draft_from_payload(data, strategy=f"{draft.strategy}+cleanup")
        if not validate_cleanup(cleaned):
            logger.info("Cleanup output rejected, keeping parsed recipe")
            return draft
        cleaned.title = draft.title
        return cleaned

    async def normalize(self, text: str) -> RecipeDraft:
        if not text or not text.strip():
            return placeholder_draft()

        narrative = is_narrative(text)
        for strategy in self.strategies:
            if strategy.deterministic:
                if narrative:
                    continue
                draft = await strategy.extract(text)
                if is_plausible(draft):
                    logger.info(
                        "Strategy %s found %d ingredients, %d steps",
                        strategy.name,
                        len(draft.ingredients),
                        len(draft.instructions),
                    )
                    return await self._cleanup(draft)
                continue

            try:
                draft = await strategy.extract(text, narrative=narrative)
            except ServiceError as error:
                logger.warning("Strategy %s failed: %s", strategy.name, error)
                continue
            if draft is not None and validate_generated(draft):
                logger.info("Strategy %s produced a recipe", strategy.name)
                return ensure_consistency(draft)
            logger.info("Strategy %s returned no usable recipe", strategy.name)

        logger.info("No strategy produced a recipe")
        return placeholder_draft()
