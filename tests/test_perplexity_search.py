from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from balanced_research.exceptions import ConfigurationError, SourceFetchError
from balanced_research.research_core.models.interfaces import SourceType
from balanced_research.tools import perplexity_search


def _response(status: int, payload: dict | None = None, url: str = "https://api.perplexity.ai/search") -> httpx.Response:
    return httpx.Response(status, json=payload or {}, request=httpx.Request("POST", url))


CHAT_TEXT = (
    'Solar adoption grew quickly according to "IEA Renewables Report" '
    "(https://iea.org/reports/renewables-2024). See also https://example.com/solar."
)
CHAT_PAYLOAD = {
    "choices": [{"message": {"content": CHAT_TEXT}}],
    "citations": ["https://example.com/solar", "https://nrel.gov/solar"],
}


@pytest.mark.asyncio
async def test_fetch_maps_structured_search_results():
    payload = {
        "answer": "<p>Solar is <b>growing</b> fast.</p>",
        "results": [
            {"url": "https://a.com/one", "title": "", "extract": "<b>Short</b> one", "content": "Longer body text"},
            {"url": "https://b.com/two", "title": "Second", "extract": "Plain extract"},
            {"url": "https://c.com/three", "title": "Third", "snippet": "Snippet only", "date": "2024-05-01"},
            {"url": "https://d.com/four", "title": "Fourth"},
        ],
    }
    with patch.object(perplexity_search, "_post", AsyncMock(return_value=_response(200, payload))) as post:
        result = await perplexity_search.fetch("solar trends", "key")

    post.assert_awaited_once()
    assert post.await_args.args[0].endswith("/search")
    sent = post.await_args.kwargs["payload"]
    assert sent["query"] == "solar trends"
    assert sent["include_answer"] is True
    assert sent["max_results"] == 10

    first, second, third, fourth = result.results
    assert first.source is SourceType.AI_SEARCH
    assert first.title == "Perplexity Result 1"
    assert "Short one" in first.snippet and "Longer body text" in first.snippet
    assert second.title == "Second"
    assert third.date == "2024-05-01"
    assert [r.priority for r in result.results] == ["high", "high", "high", "medium"]
    assert result.answer.startswith("## Perplexity AI Analysis")
    assert "**growing**" in result.answer


@pytest.mark.asyncio
async def test_fetch_falls_back_to_chat_on_server_error():
    chat = _response(200, CHAT_PAYLOAD, url="https://api.perplexity.ai/chat/completions")
    with patch.object(perplexity_search, "_post", AsyncMock(side_effect=[_response(500), chat])) as post:
        result = await perplexity_search.fetch("solar trends", "key")

    assert post.await_count == 2
    assert post.await_args_list[1].args[0].endswith("/chat/completions")
    chat_payload = post.await_args_list[1].kwargs["payload"]
    assert chat_payload["model"] == "sonar-pro"
    assert chat_payload["temperature"] == 0.1

    urls = [r.url for r in result.results]
    assert urls == [
        "https://iea.org/reports/renewables-2024",
        "https://example.com/solar",
        "https://nrel.gov/solar",
    ]
    assert result.results[0].title == "IEA Renewables Report"
    assert result.results[1].title == "Perplexity Source 2"
    assert result.results[2].title == "Perplexity Source 3"
    assert all(r.priority == "high" for r in result.results)
    assert result.answer.startswith("## Perplexity AI Analysis")
    assert result.answer.rstrip().endswith("*")


@pytest.mark.asyncio
async def test_fetch_falls_back_on_transport_error():
    chat = _response(200, CHAT_PAYLOAD, url="https://api.perplexity.ai/chat/completions")
    side_effect = [httpx.ConnectError("refused"), chat]
    with patch.object(perplexity_search, "_post", AsyncMock(side_effect=side_effect)):
        result = await perplexity_search.fetch("solar trends", "key")
    assert len(result.results) == 3


@pytest.mark.asyncio
async def test_fetch_raises_when_fallback_also_fails():
    failing = AsyncMock(side_effect=[_response(500), _response(503, url="https://api.perplexity.ai/chat/completions")])
    with patch.object(perplexity_search, "_post", failing):
        with pytest.raises(SourceFetchError) as exc_info:
            await perplexity_search.fetch("solar trends", "key")
    assert exc_info.value.status_code == 503
    assert exc_info.value.source == "ai_search"


@pytest.mark.asyncio
async def test_fetch_requires_api_key():
    with pytest.raises(ConfigurationError):
        await perplexity_search.fetch("solar trends", "")


def test_map_chat_response_rejects_malformed_payload():
    with pytest.raises(SourceFetchError):
        perplexity_search.map_chat_response({"choices": []})
