"""Tests for the OpenRouter text generator."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from researcher.errors import UpstreamFailure
from researcher.llm_client import OpenRouterTextGenerator, get_client, get_model


def test_get_model_returns_default():
    with patch("researcher.llm_client.settings") as mock_settings:
        mock_settings.default_model = "openai/gpt-4o-mini"

        assert get_model() == "openai/gpt-4o-mini"


def test_get_client_uses_openrouter_base_url():
    with (
        patch("researcher.llm_client.settings") as mock_settings,
        patch("openai.AsyncOpenAI") as mock_openai,
    ):
        mock_settings.openrouter_api_key = "sk-or-valid-key"
        mock_settings.openrouter_base_url = "  "

        get_client()

    mock_openai.assert_called_once_with(
        api_key="sk-or-valid-key",
        base_url="https://openrouter.ai/api/v1",
    )


def _client_returning(response=None, error=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    return client


@pytest.mark.asyncio
async def test_generate_sends_single_user_message():
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="- a query"))])
    client = _client_returning(response)
    generator = OpenRouterTextGenerator(client, model="m", temperature=0.7, max_tokens=2048)

    assert await generator.generate("plan this") == "- a query"
    client.chat.completions.create.assert_awaited_once_with(
        model="m",
        messages=[{"role": "user", "content": "plan this"}],
        temperature=0.7,
        max_tokens=2048,
    )


@pytest.mark.asyncio
async def test_generate_returns_empty_text_without_choices():
    generator = OpenRouterTextGenerator(_client_returning(SimpleNamespace(choices=[])), model="m")

    assert await generator.generate("anything") == ""


@pytest.mark.asyncio
async def test_generate_wraps_client_errors():
    generator = OpenRouterTextGenerator(_client_returning(error=RuntimeError("429 rate limit")), model="m")

    with pytest.raises(UpstreamFailure, match="429 rate limit"):
        await generator.generate("anything")
