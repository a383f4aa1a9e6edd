from __future__ import annotations

import re
from typing import Any

import httpx
from loguru import logger

from balanced_research.config import settings
from balanced_research.exceptions import ConfigurationError, SourceFetchError
from balanced_research.research_core.models.interfaces import SearchResult, SourceFetchResult, SourceType
from balanced_research.services.markdown_cleanup import normalize_markdown, strip_html
from balanced_research.services.prompt_store import get_prompt, render_prompt
from balanced_research.tools.web_utils import extract_urls, format_snippet_for_readability

SOURCE_NAME = SourceType.AI_SEARCH.value
FALLBACK_SNIPPET = "Source from Perplexity AI research"
HIGH_PRIORITY_COUNT = 3
TITLE_LOOKBEHIND_CHARS = 100
QUOTED_TITLE_PATTERN = re.compile(r"[\"']([^\"']+)[\"']\s*\(?\s*$")


async def _post(url: str, *, payload: dict[str, Any], api_key: str) -> httpx.Response:
    async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
        return await client.post(
            url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )


def _priority(index: int) -> str:
    return "high" if index < HIGH_PRIORITY_COUNT else "medium"


def wrap_answer(answer: str) -> str | None:
    """Clean an AI answer to markdown and frame it with the attribution header and footer."""
    cleaned = normalize_markdown(answer or "")
    if not cleaned:
        return None
    header = get_prompt("ai_search.answer_header")
    footer = get_prompt("ai_search.answer_footer")
    return f"{header}\n\n{cleaned}\n\n{footer}"


def map_search_response(payload: dict[str, Any]) -> SourceFetchResult:
    """Map the structured search endpoint's payload onto search results."""
    items = payload.get("results") or []
    if not isinstance(items, list):
        items = []

    results: list[SearchResult] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        extract = strip_html(str(item.get("extract") or item.get("snippet") or ""))
        content = strip_html(str(item.get("content") or ""))
        body = extract
        if content and content != extract:
            body = f"{extract}\n\n{content}" if extract else content

        results.append(
            SearchResult(
                source=SourceType.AI_SEARCH,
                url=item.get("url") or None,
                title=(item.get("title") or "").strip() or f"Perplexity Result {idx + 1}",
                snippet=format_snippet_for_readability(body),
                priority=_priority(idx),
                position=idx + 1,
                date=item.get("date") or None,
            )
        )

    answer = payload.get("answer")
    return SourceFetchResult(
        results=results,
        answer=wrap_answer(answer) if isinstance(answer, str) else None,
    )


def _title_near_url(text: str, url: str, index: int) -> str:
    position = text.find(url)
    if position != -1:
        preceding = text[max(0, position - TITLE_LOOKBEHIND_CHARS) : position]
        match = QUOTED_TITLE_PATTERN.search(preceding)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return f"Perplexity Source {index + 1}"


def map_chat_response(payload: dict[str, Any]) -> SourceFetchResult:
    """Map a chat-completions reply: citations are mined from the text and the `citations` field."""
    try:
        text = payload["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        raise SourceFetchError("Malformed chat response from AI search", source=SOURCE_NAME) from exc

    urls = extract_urls(text)
    for citation in payload.get("citations") or []:
        if isinstance(citation, str) and citation and citation not in urls:
            urls.append(citation)

    results = [
        SearchResult(
            source=SourceType.AI_SEARCH,
            url=url,
            title=_title_near_url(text, url, idx),
            snippet=FALLBACK_SNIPPET,
            priority=_priority(idx),
            position=idx + 1,
        )
        for idx, url in enumerate(urls)
    ]
    return SourceFetchResult(results=results, answer=wrap_answer(text))


async def _fetch_via_chat(query: str, api_key: str) -> SourceFetchResult:
    system = get_prompt("ai_search.system_prompt") + "\n" + get_prompt("ai_search.fallback_system_suffix")
    payload = {
        "model": settings.perplexity_model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": render_prompt("ai_search.fallback_user_message", query=query)},
        ],
        "temperature": settings.perplexity_fallback_temperature,
        "max_tokens": settings.perplexity_fallback_max_tokens,
        "return_citations": True,
    }
    base_url = settings.perplexity_base_url.rstrip("/")
    try:
        response = await _post(f"{base_url}/chat/completions", payload=payload, api_key=api_key)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as exc:
        raise SourceFetchError(
            f"AI search chat fallback failed with status {exc.response.status_code}",
            source=SOURCE_NAME,
            status_code=exc.response.status_code,
        ) from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise SourceFetchError(f"AI search chat fallback failed: {exc}", source=SOURCE_NAME) from exc

    if not isinstance(data, dict):
        raise SourceFetchError("Malformed chat response from AI search", source=SOURCE_NAME)
    return map_chat_response(data)


async def fetch(query: str, api_key: str) -> SourceFetchResult:
    """Query the AI search vendor, degrading to its chat endpoint when the search endpoint fails."""
    if not api_key:
        raise ConfigurationError("PERPLEXITY_API_KEY is not configured")

    payload = {
        "query": query,
        "web_search": True,
        "include_answer": True,
        "max_results": settings.perplexity_max_results,
    }
    base_url = settings.perplexity_base_url.rstrip("/")
    try:
        response = await _post(f"{base_url}/search", payload=payload, api_key=api_key)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("search response is not a JSON object")
        result = map_search_response(data)
    except Exception as exc:
        logger.warning(f"AI search endpoint failed ({type(exc).__name__}: {exc}); using chat fallback")
        result = await _fetch_via_chat(query, api_key)
        logger.info(f"AI search chat fallback returned {len(result.results)} sources")
        return result

    logger.info(f"AI search returned {len(result.results)} results")
    return result
