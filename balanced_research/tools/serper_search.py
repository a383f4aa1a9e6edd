from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from balanced_research.config import settings
from balanced_research.exceptions import ConfigurationError, SourceFetchError
from balanced_research.research_core.models.interfaces import SearchResult, SourceFetchResult, SourceType

SOURCE_NAME = SourceType.WEB_SEARCH.value
KNOWLEDGE_GRAPH_SCORE = 1.0


async def _post(payload: dict[str, Any], api_key: str) -> httpx.Response:
    async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
        return await client.post(
            settings.serper_search_url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "X-API-KEY": api_key,
            },
        )


def _answer_box_text(answer_box: Any) -> str | None:
    if not isinstance(answer_box, dict):
        return None
    for key in ("answer", "snippet"):
        value = answer_box.get(key)
        if isinstance(value, str) and value.strip():
            title = (answer_box.get("title") or "").strip()
            return f"{title}: {value.strip()}" if title else value.strip()
    return None


def _knowledge_graph_text(graph: dict[str, Any]) -> str:
    parts = [graph.get("title") or "", graph.get("type") or "", graph.get("description") or ""]
    return " - ".join(part.strip() for part in parts if isinstance(part, str) and part.strip())


def map_response(payload: dict[str, Any]) -> SourceFetchResult:
    """Map a web-search payload: organic hits, a linked knowledge graph and featured answers."""
    results: list[SearchResult] = []
    featured: list[str] = []

    graph = payload.get("knowledgeGraph")
    if isinstance(graph, dict) and graph:
        link = graph.get("website") or graph.get("descriptionLink")
        if link:
            results.append(
                SearchResult(
                    source=SourceType.WEB_SEARCH,
                    url=link,
                    title=(graph.get("title") or "").strip(),
                    snippet=(graph.get("description") or "").strip(),
                    priority="high",
                    relevance_score=KNOWLEDGE_GRAPH_SCORE,
                )
            )
        else:
            text = _knowledge_graph_text(graph)
            if text:
                featured.append(text)

    box_text = _answer_box_text(payload.get("answerBox"))
    if box_text:
        featured.insert(0, box_text)

    organic = payload.get("organic")
    if not isinstance(organic, list):
        logger.warning("Web search response has no organic results")
        organic = []

    for idx, item in enumerate(organic):
        if not isinstance(item, dict):
            continue
        results.append(
            SearchResult(
                source=SourceType.WEB_SEARCH,
                url=item.get("link") or None,
                title=(item.get("title") or "").strip(),
                snippet=(item.get("snippet") or "").strip(),
                position=item.get("position") or idx + 1,
                date=item.get("date") or None,
            )
        )

    return SourceFetchResult(results=results, answer="\n\n".join(featured) or None)


async def fetch(query: str, api_key: str) -> SourceFetchResult:
    """Run a single web search request."""
    if not api_key:
        raise ConfigurationError("SERPER_API_KEY is not configured")

    payload = {
        "q": query,
        "gl": settings.serper_country,
        "hl": settings.serper_language,
        "num": settings.serper_num_results,
    }
    try:
        response = await _post(payload, api_key)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as exc:
        raise SourceFetchError(
            f"Web search failed with status {exc.response.status_code}",
            source=SOURCE_NAME,
            status_code=exc.response.status_code,
        ) from exc
    except httpx.HTTPError as exc:
        raise SourceFetchError(f"Web search request failed: {exc}", source=SOURCE_NAME) from exc
    except ValueError as exc:
        raise SourceFetchError("Web search returned a non-JSON response", source=SOURCE_NAME) from exc

    if not isinstance(data, dict):
        raise SourceFetchError("Web search returned an unexpected payload", source=SOURCE_NAME)

    result = map_response(data)
    logger.info(f"Web search returned {len(result.results)} results")
    return result
