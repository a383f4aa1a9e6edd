from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from balanced_research.research_core.extract import service as extract_service
from balanced_research.research_core.extract.service import ContentExtractor

LONG_TEXT = " ".join(["Solar panels convert sunlight into electricity efficiently."] * 12)
ARTICLE_HTML = (
    "<html><head><title>Solar Guide</title></head><body>"
    "<nav>Home About Contact</nav>"
    f"<article><p>{LONG_TEXT}</p></article>"
    "</body></html>"
)


def _extractor(**kwargs) -> ContentExtractor:
    kwargs.setdefault("use_readability", False)
    kwargs.setdefault("extract_in_thread", False)
    return ContentExtractor(**kwargs)


def test_pattern_strategy_reads_article_element():
    result = _extractor().extract_from_html("https://example.com/solar", ARTICLE_HTML)
    assert result is not None
    assert result.method == "pattern"
    assert result.title == "Solar Guide"
    assert result.content == LONG_TEXT
    assert "Home About" not in result.content


def test_readability_branch_used_when_available(monkeypatch):
    monkeypatch.setattr(extract_service, "readability_available", lambda: True)
    extractor = _extractor(use_readability=True)
    monkeypatch.setattr(extractor, "_extract_readability", lambda *_: ("Readable Title", LONG_TEXT))

    result = extractor.extract_from_html("https://example.com/solar", ARTICLE_HTML)
    assert result.method == "readability"
    assert result.title == "Readable Title"


def test_readability_branch_skipped_when_unavailable(monkeypatch):
    monkeypatch.setattr(extract_service, "readability_available", lambda: False)
    monkeypatch.setattr(extract_service, "trafilatura_available", lambda: False)
    extractor = _extractor(use_readability=True)
    monkeypatch.setattr(
        extractor,
        "_extract_readability",
        lambda *_: pytest.fail("readability must not run without the capability"),
    )

    result = extractor.extract_from_html("https://example.com/solar", ARTICLE_HTML)
    assert result.method == "pattern"


def test_trafilatura_runs_when_readability_output_is_short(monkeypatch):
    monkeypatch.setattr(extract_service, "readability_available", lambda: True)
    monkeypatch.setattr(extract_service, "trafilatura_available", lambda: True)
    extractor = _extractor(use_readability=True)
    monkeypatch.setattr(extractor, "_extract_readability", lambda *_: ("", "too short"))
    monkeypatch.setattr(extractor, "_extract_trafilatura", lambda *_: LONG_TEXT)

    result = extractor.extract_from_html("https://example.com/solar", ARTICLE_HTML)
    assert result.method == "trafilatura"
    assert result.title == "Solar Guide"


def test_structured_data_strategy_reads_json_ld():
    body = LONG_TEXT[:250]
    payload = json.dumps({"@type": "NewsArticle", "headline": "Grid Storage", "articleBody": body})
    html = (
        "<html><head><title>Page</title>"
        f'<script type="application/ld+json">{payload}</script>'
        "</head><body><p>short</p></body></html>"
    )

    result = _extractor().extract_from_html("https://example.com/grid", html)
    assert result.method == "structured_data"
    assert result.title == "Grid Storage"
    assert result.content == body.strip()


def test_structured_data_requires_enough_content():
    payload = json.dumps([{"headline": "Tiny", "description": "Too short to count."}])
    html = (
        "<html><head><title>Page</title>"
        f'<script type="application/ld+json">{payload}</script>'
        f"</head><body><article>{LONG_TEXT}</article></body></html>"
    )

    result = _extractor().extract_from_html("https://example.com/tiny", html)
    assert result.method == "pattern"


def test_structured_data_searches_later_blocks_and_graph_nodes():
    body = LONG_TEXT[:250]
    breadcrumbs = json.dumps({"@type": "BreadcrumbList", "name": "Home"})
    graph = json.dumps(
        {
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "WebPage", "name": "Grid page"},
                {"@type": "Article", "headline": "Grid Storage", "articleBody": body},
            ],
        }
    )
    html = (
        "<html><head><title>Page</title>"
        '<script type="application/ld+json">{not json</script>'
        f'<script type="application/ld+json">{breadcrumbs}</script>'
        f'<script type="application/ld+json">{graph}</script>'
        "</head><body><p>short</p></body></html>"
    )

    result = _extractor().extract_from_html("https://example.com/grid", html)
    assert result.method == "structured_data"
    assert result.title == "Grid Storage"
    assert result.content == body.strip()


def test_full_text_fallback_drops_navigation():
    text = "Wind turbines generate power " * 8
    html = (
        "<html><head><title>Wind</title></head><body>"
        "<nav>Menu Home Products Contact Login</nav>"
        f"<div>{text}</div>"
        "</body></html>"
    )

    result = _extractor().extract_from_html("https://example.com/wind", html)
    assert result.method == "full_text"
    assert "Menu Home" not in result.content
    assert result.content == text.strip()


def test_title_falls_back_to_first_heading():
    html = f"<html><body><h1>Heading Title</h1><article>{LONG_TEXT}</article></body></html>"
    result = _extractor().extract_from_html("https://example.com/h1", html)
    assert result.title == "Heading Title"


def test_tiny_page_yields_nothing():
    assert _extractor().extract_from_html("https://example.com/tiny", "<html><body><p>Tiny page</p></body></html>") is None


def test_content_is_truncated_at_sentence_boundary():
    sentences = " ".join(f"Sentence number {i} is here." for i in range(100))
    html = f"<html><head><title>Long</title></head><body><article>{sentences}</article></body></html>"

    result = _extractor(max_chars=500).extract_from_html("https://example.com/long", html)
    assert 250 < len(result.content) <= 500
    assert result.content.endswith(".")


@pytest.mark.asyncio
async def test_extract_uses_injected_fetcher():
    fetcher = AsyncMock(return_value=(200, ARTICLE_HTML))
    result = await _extractor(fetcher=fetcher).extract("https://example.com/solar")

    fetcher.assert_awaited_once_with("https://example.com/solar")
    assert result.url == "https://example.com/solar"
    assert result.method == "pattern"


@pytest.mark.asyncio
async def test_extract_runs_parsing_in_worker_thread():
    fetcher = AsyncMock(return_value=(200, ARTICLE_HTML))
    result = await _extractor(fetcher=fetcher, extract_in_thread=True).extract("https://example.com/solar")
    assert result.method == "pattern"


@pytest.mark.asyncio
async def test_extract_returns_none_for_non_200():
    fetcher = AsyncMock(return_value=(404, ""))
    assert await _extractor(fetcher=fetcher).extract("https://example.com/missing") is None


@pytest.mark.asyncio
async def test_extract_rejects_invalid_scheme_without_fetching():
    fetcher = AsyncMock(return_value=(200, ARTICLE_HTML))
    assert await _extractor(fetcher=fetcher).extract("ftp://example.com/file") is None
    fetcher.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_swallows_fetcher_errors():
    fetcher = AsyncMock(side_effect=RuntimeError("connection reset"))
    assert await _extractor(fetcher=fetcher).extract("https://example.com/boom") is None


@pytest.mark.asyncio
async def test_httpx_fetch_reads_page_and_sends_browser_headers():
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["user-agent"] = request.headers.get("user-agent", "")
        return httpx.Response(200, html=ARTICLE_HTML)

    extractor = _extractor(transport=httpx.MockTransport(handler))
    result = await extractor.extract("https://example.com/solar")

    assert result.method == "pattern"
    assert seen["user-agent"].startswith("Mozilla/5.0")


@pytest.mark.asyncio
async def test_httpx_fetch_rejects_oversized_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=ARTICLE_HTML.encode())

    extractor = _extractor(transport=httpx.MockTransport(handler), max_response_bytes=100)
    assert await extractor.extract("https://example.com/huge") is None


@pytest.mark.asyncio
async def test_httpx_fetch_returns_none_on_server_error():
    extractor = _extractor(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    assert await extractor.extract("https://example.com/down") is None


@pytest.mark.asyncio
async def test_httpx_fetch_returns_none_on_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    extractor = _extractor(transport=httpx.MockTransport(handler))
    assert await extractor.extract("https://example.com/slow") is None
