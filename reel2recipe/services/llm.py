"""
Generative text providers used by the normalizer, the music check and the
title helper. Vendor SDK errors are translated here so callers only ever see
``RateLimitExceeded`` or ``ProviderError``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
import httpx
import openai

from reel2recipe.services.errors import (
    ProviderConfigurationError,
    ProviderError,
    RateLimitExceeded,
)

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class GenerativeProvider(Protocol):
    name: str

    async def complete_json(self, system: str, user: str) -> dict[str, Any]: ...


def parse_json_object(text: str | None) -> dict[str, Any]:
    """Parses a model reply into a dict, tolerating code fences and surrounding prose."""
    if not text or not text.strip():
        raise ProviderError("Model returned an empty response")

    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ProviderError(f"Model response is not JSON: {cleaned[:120]!r}") from None
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as error:
            raise ProviderError(f"Model response is not JSON: {error}") from error

    if not isinstance(parsed, dict):
        raise ProviderError("Model response JSON is not an object")
    return parsed


def translate_gemini_error(err: genai_errors.APIError) -> Exception:
    status_code = getattr(err, "code", None)
    message = str(err)
    if status_code == 429 or "RESOURCE_EXHAUSTED" in message:
        return RateLimitExceeded("Gemini API rate limit reached. Try again in a few moments.")
    return ProviderError(f"Gemini request failed: {message}")


def translate_openai_error(err: openai.OpenAIError) -> Exception:
    if isinstance(err, openai.RateLimitError):
        return RateLimitExceeded("OpenAI API rate limit reached. Try again in a few moments.")
    return ProviderError(f"OpenAI request failed: {err}")


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str, model_name: str = DEFAULT_GEMINI_MODEL, temperature: float = 0.1) -> None:
        if not api_key:
            raise ProviderConfigurationError("Missing Gemini API key.")
        self.model_name = model_name
        self.temperature = temperature
        self.client = genai.Client(api_key=api_key)

    async def generate(self, contents: Any, system: str | None = None, json_output: bool = False) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=self.temperature,
            response_mime_type="application/json" if json_output else None,
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as err:
            raise translate_gemini_error(err) from err
        except httpx.HTTPError as err:
            raise ProviderError(f"Gemini request failed: {err}") from err

        text = response.text
        if not text:
            raise ProviderError("Gemini response did not include text content.")
        return text

    async def complete_json(self, system: str, user: str) -> dict[str, Any]:
        return parse_json_object(await self.generate(user, system=system, json_output=True))


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_OPENAI_MODEL,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> None:
        if not api_key:
            raise ProviderConfigurationError("Missing OpenAI API key.")
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = openai.AsyncOpenAI(api_key=api_key)

    async def chat(self, messages: list[dict[str, Any]], json_output: bool = False, max_tokens: int | None = None) -> str:
        kwargs: dict[str, Any] = {}
        if json_output:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            completion = await self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                temperature=self.temperature,
                max_tokens=max_tokens or self.max_tokens,
                **kwargs,
            )
        except openai.OpenAIError as err:
            raise translate_openai_error(err) from err

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ProviderError("OpenAI response did not include text content.")
        return content

    async def complete_json(self, system: str, user: str) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        return parse_json_object(await self.chat(messages, json_output=True))
