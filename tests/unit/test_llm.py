from __future__ import annotations

import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from reel2recipe.services.errors import ProviderConfigurationError, ProviderError, RateLimitExceeded
from reel2recipe.services.llm import (
    GeminiProvider,
    OpenAIProvider,
    parse_json_object,
    translate_gemini_error,
    translate_openai_error,
)


class GeminiErrorStub(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


class UnreachableModelsStub:
    async def generate_content(self, **kwargs) -> None:
        raise httpx.ConnectError("connection reset")


class UnreachableClientStub:
    def __init__(self) -> None:
        self.aio = SimpleNamespace(models=UnreachableModelsStub())


class TestParseJsonObject:
    def test_plain_json(self) -> None:
        assert parse_json_object('{"ingredients": ["1 egg"]}') == {"ingredients": ["1 egg"]}

    def test_code_fence(self) -> None:
        assert parse_json_object('```json\n{"is_music": false}\n```') == {"is_music": False}

    def test_surrounding_prose(self) -> None:
        assert parse_json_object('Sure! Here it is: {"title": "Pancakes"} Enjoy.') == {"title": "Pancakes"}

    @pytest.mark.parametrize("text", [None, "", "no json here", "[1, 2, 3]"])
    def test_unusable_replies(self, text: str | None) -> None:
        with pytest.raises(ProviderError):
            parse_json_object(text)


class TestErrorTranslation:
    def test_gemini_429(self) -> None:
        assert isinstance(translate_gemini_error(GeminiErrorStub(429, "Too many requests")), RateLimitExceeded)

    def test_gemini_resource_exhausted(self) -> None:
        error = translate_gemini_error(GeminiErrorStub(400, "RESOURCE_EXHAUSTED: quota"))
        assert isinstance(error, RateLimitExceeded)

    def test_gemini_other(self) -> None:
        error = translate_gemini_error(GeminiErrorStub(500, "internal"))
        assert isinstance(error, ProviderError)
        assert not isinstance(error, RateLimitExceeded)

    def test_openai_rate_limit(self) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(429, request=request)
        error = openai.RateLimitError("slow down", response=response, body=None)

        assert isinstance(translate_openai_error(error), RateLimitExceeded)

    def test_openai_other(self) -> None:
        error = translate_openai_error(openai.OpenAIError("boom"))
        assert isinstance(error, ProviderError)
        assert not isinstance(error, RateLimitExceeded)


class TestProviderConfiguration:
    def test_missing_keys(self) -> None:
        with pytest.raises(ProviderConfigurationError):
            GeminiProvider(api_key="")
        with pytest.raises(ProviderConfigurationError):
            OpenAIProvider(api_key="")


class TestGeminiTransport:
    def test_connection_error_becomes_provider_error(self) -> None:
        provider = GeminiProvider(api_key="test-key")
        provider.client = UnreachableClientStub()

        with pytest.raises(ProviderError, match="connection reset"):
            asyncio.run(provider.complete_json("system", "user"))
