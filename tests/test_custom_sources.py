from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from balanced_research.exceptions import CustomUrlValidationError
from balanced_research.research_core.models.interfaces import ExtractionResult, SourceType
from balanced_research.tools import custom_sources


def _extraction(url: str, content: str = "Useful page content.") -> ExtractionResult:
    return ExtractionResult(title=f"Title for {url}", url=url, content=content, method="pattern")


def _extractor(side_effect) -> MagicMock:
    extractor = MagicMock()
    extractor.extract = AsyncMock(side_effect=side_effect)
    return extractor


@pytest.mark.asyncio
async def test_invalid_urls_fail_the_whole_batch_before_fetching():
    extractor = _extractor(lambda url: _extraction(url))

    with pytest.raises(CustomUrlValidationError) as exc_info:
        await custom_sources.fetch(
            ["https://ok.com/page", "not a url", "ftp://files.example.com/x"],
            extractor=extractor,
        )

    assert exc_info.value.invalid_urls == ["not a url", "ftp://files.example.com/x"]
    assert "Invalid URLs detected: not a url, ftp://files.example.com/x" == str(exc_info.value)
    extractor.extract.assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicates_are_fetched_once_and_failures_summarized():
    long_content = "z" * 500

    def extract(url: str):
        if "good" in url:
            return _extraction(url, long_content)
        return None

    extractor = _extractor(extract)
    result = await custom_sources.fetch(
        ["https://good.com/a", "https://bad.com/b", "https://good.com/a"],
        extractor=extractor,
    )

    assert extractor.extract.await_count == 2
    assert len(result.results) == 1
    only = result.results[0]
    assert only.source is SourceType.CUSTOM
    assert only.url == "https://good.com/a"
    assert only.snippet == "z" * 300 + "..."
    assert only.content == long_content
    assert "1 of 2" in result.error
    assert "https://bad.com/b" in result.error


@pytest.mark.asyncio
async def test_one_crashing_url_does_not_sink_the_others():
    def extract(url: str):
        if "crash" in url:
            raise RuntimeError("parser exploded")
        return _extraction(url)

    result = await custom_sources.fetch(
        ["https://crash.com", "https://fine.com/one", "https://fine.com/two"],
        extractor=_extractor(extract),
    )

    assert [r.url for r in result.results] == ["https://fine.com/one", "https://fine.com/two"]
    assert "https://crash.com" in result.error


@pytest.mark.asyncio
async def test_all_successful_has_no_error_summary():
    result = await custom_sources.fetch(["https://fine.com"], extractor=_extractor(lambda url: _extraction(url)))
    assert result.error is None
    assert result.results[0].snippet == "Useful page content."


@pytest.mark.asyncio
async def test_concurrency_is_bounded_by_semaphore():
    active = 0
    peak = 0

    async def extract(url: str):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return _extraction(url)

    extractor = MagicMock()
    extractor.extract = extract
    urls = [f"https://site{i}.com" for i in range(6)]

    result = await custom_sources.fetch(urls, extractor=extractor, max_parallel=2)

    assert len(result.results) == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_empty_list_returns_empty_result():
    result = await custom_sources.fetch([], extractor=_extractor(lambda url: None))
    assert result.results == []
    assert result.error is None
