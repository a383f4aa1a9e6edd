from __future__ import annotations

import asyncio

from loguru import logger

from balanced_research.config import settings
from balanced_research.exceptions import CustomUrlValidationError
from balanced_research.research_core.extract.service import ContentExtractor
from balanced_research.research_core.models.interfaces import (
    ExtractionResult,
    SearchResult,
    SourceFetchResult,
    SourceType,
)
from balanced_research.tools.web_utils import is_valid_url, make_snippet

SNIPPET_CHARS = 300


def validate_urls(urls: list[str]) -> list[str]:
    """Reject the whole batch if any URL is malformed; otherwise return it deduplicated in order."""
    invalid = [url for url in urls if not is_valid_url(url)]
    if invalid:
        raise CustomUrlValidationError(invalid)
    return list(dict.fromkeys(urls))


def map_extraction(extraction: ExtractionResult) -> SearchResult:
    return SearchResult(
        source=SourceType.CUSTOM,
        url=extraction.url,
        title=extraction.title,
        snippet=make_snippet(extraction.content, SNIPPET_CHARS),
        content=extraction.content,
        priority="medium",
    )


async def fetch(
    urls: list[str],
    *,
    extractor: ContentExtractor | None = None,
    max_parallel: int | None = None,
) -> SourceFetchResult:
    """Extract every custom URL concurrently; failures are isolated per URL."""
    unique_urls = validate_urls(urls)
    if not unique_urls:
        return SourceFetchResult()

    extractor = extractor or ContentExtractor()
    semaphore = asyncio.Semaphore(max(1, max_parallel or settings.custom_url_max_parallel))

    async def _extract_one(url: str) -> ExtractionResult | None:
        async with semaphore:
            return await extractor.extract(url)

    outcomes = await asyncio.gather(
        *[_extract_one(url) for url in unique_urls],
        return_exceptions=True,
    )

    results: list[SearchResult] = []
    failed: list[str] = []
    for url, outcome in zip(unique_urls, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"Custom source {url} failed: {type(outcome).__name__}: {outcome}")
            failed.append(url)
        elif outcome is None:
            failed.append(url)
        else:
            results.append(map_extraction(outcome))

    error = None
    if failed:
        error = (
            f"Failed to extract content from {len(failed)} of {len(unique_urls)} custom URLs: "
            + ", ".join(failed)
        )
        logger.warning(error)

    logger.info(f"Custom sources: {len(results)}/{len(unique_urls)} URLs extracted")
    return SourceFetchResult(results=results, error=error)
