from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from balanced_research import llm_client
from balanced_research.llm_client import ChatCompletionsAdapter


def _openai_response(text: str = "Answer") -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=34),
    )


def _openai_client() -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_openai_response())
    return client


@pytest.mark.asyncio
async def test_create_maps_system_and_messages():
    openai_client = _openai_client()
    adapter = ChatCompletionsAdapter(openai_client)

    response = await adapter.create(
        model="gpt-4o",
        max_tokens=100,
        system="Be balanced.",
        messages=[{"role": "user", "content": "Question"}],
    )

    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be balanced."},
        {"role": "user", "content": "Question"},
    ]
    assert kwargs["temperature"] == 0.1
    assert response.text == "Answer"
    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 34
    assert response.finish_reason == "stop"


@pytest.mark.asyncio
async def test_gpt5_models_force_default_temperature():
    openai_client = _openai_client()
    await ChatCompletionsAdapter(openai_client).create(
        model="gpt-5-mini", max_tokens=10, system="", messages=[{"role": "user", "content": "q"}], temperature=0.2
    )
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["temperature"] == 1
    assert kwargs["messages"] == [{"role": "user", "content": "q"}]


def test_empty_choices_give_empty_text():
    response = ChatCompletionsAdapter._from_openai_response(SimpleNamespace(choices=[], usage=None))
    assert response.text == ""
    assert response.usage.input_tokens == 0


def test_get_model_reads_settings():
    with patch("balanced_research.llm_client.settings") as mock_settings:
        mock_settings.synthesis_model = "custom-model"
        assert llm_client.get_model() == "custom-model"
