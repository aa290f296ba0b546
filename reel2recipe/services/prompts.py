from __future__ import annotations

from reel2recipe.services.types import NO_CONTENT_SENTINEL

VISION_PROMPT = """You are analyzing a single frame from a cooking video. This frame represents the {stage} stage.

IMPORTANT: Only describe what you SEE in this frame. Do NOT try to create a complete recipe or make assumptions about other frames.

INGREDIENT IDENTIFICATION GUIDELINES:
- Only identify ingredients you can clearly see
- Use package labels or on-screen text to identify specific ingredients
- If unsure, describe what you see rather than guessing
- Do NOT assume ingredients that aren't clearly visible

Describe this frame using this format:

OBSERVATIONS:
- What ingredients are visible? (with estimated quantities only if legible or obvious)
- What cooking action is happening? (chopping, searing, mixing, etc.)
- What tools/equipment are being used?
- What's the state of the food? (raw, cooking, cooked, plated)
- Any text overlays, package labels, or measurements visible?

Keep your response concise and factual.

If no cooking content is visible, respond exactly: "{sentinel}"
"""

RECIPE_JSON_FORMAT = """Return the response in this exact JSON format:
{
  "title": "short dish name or null",
  "ingredients": ["ingredient 1", "ingredient 2"],
  "instructions": ["step 1", "step 2"]
}
If the text contains no recipe, return empty lists."""

TEXT_EXTRACTION_SYSTEM = f"""You extract recipes from social media captions and spoken transcripts.
The text may contain hashtags, emojis, verbal filler words ("um", "like", "you know") and unrelated chatter.

INGREDIENT FORMATTING RULES:
1. Use only ONE unit of measurement per ingredient; drop secondary measurements in parentheses
2. Convert mixed numbers to decimals ("1 1/2 cups" becomes "1.5 cups")
3. Format: "[quantity] [unit] [ingredient name]"
4. Ignore filler words

EXAMPLES:
- "um, about 1 tablespoon of vanilla extract" -> "1 tablespoon vanilla extract"
- "like 1 and a half cups of milk" -> "1.5 cups milk"

{RECIPE_JSON_FORMAT}"""

NARRATIVE_EXTRACTION_SYSTEM = f"""You are analyzing consolidated observations from multiple frames of one cooking video.
The observations are chronological and may list the same ingredient at different stages.

CONSOLIDATION RULES:
1. Combine duplicate ingredients and keep the complete quantity used
2. Build a logical cooking sequence: prep, cook, assemble, serve
3. Only include ingredients that are clearly visible or explicitly labelled; never guess
4. Format ingredients as "[quantity] [unit] [ingredient name]"; omit the quantity when unknown
5. Replace "approximately" with "~"
6. Every ingredient referenced by an instruction must appear in the ingredient list

{RECIPE_JSON_FORMAT}"""

CLEANUP_SYSTEM = """You tidy a recipe that was parsed mechanically from free text.
For every ingredient keep the quantity and unit in front of the ingredient name ("2 cups flour").
Never output a bare unit ("cup", "tbsp") as an ingredient.
Rewrite each instruction as one complete, actionable sentence. Do not invent ingredients or steps.

Return JSON: {"ingredients": [...], "instructions": [...]}"""

MUSIC_DETECTION_SYSTEM = """Decide whether a transcript is music, song lyrics, poetry, unrelated speech or gibberish
instead of cooking content.

Answer is_music = true for lyrics, background music, non-cooking speech or nonsense.
Answer is_music = false when the transcript mentions ingredients, cooking steps, techniques or equipment.

Return JSON: {"is_music": true} or {"is_music": false}"""

TITLE_SYSTEM = """Name the dish described by an ingredient list in at most five words.
Return JSON: {"title": "..."}"""


def vision_prompt(stage: str) -> str:
    return VISION_PROMPT.format(stage=stage, sentinel=NO_CONTENT_SENTINEL)


def extraction_user_prompt(text: str, narrative: bool) -> str:
    label = "Video Analysis" if narrative else "Text"
    return f"{label}:\n{text}"
