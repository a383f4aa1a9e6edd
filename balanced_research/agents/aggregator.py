from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable

from loguru import logger

from balanced_research.config import settings
from balanced_research.exceptions import ConfigurationError, ResearchError
from balanced_research.research_core.models.interfaces import SearchResult, SourceFetchResult, SourceType
from balanced_research.services.logger import log_research_step, log_source_fetch
from balanced_research.tools import custom_sources, perplexity_search, serper_search
from balanced_research.tools.web_utils import ensure_title, url_key

AI_SCORE = 0.9
WEB_TOP_SCORE = 0.9
WEB_SCORE_STEP = 0.05
WEB_SCORE_FLOOR = 0.05
CUSTOM_SCORE = 0.8
KNOWLEDGE_GRAPH_SCORE = 1.0

SearchFetcher = Callable[[str, str], Awaitable[SourceFetchResult]]
CustomFetcher = Callable[[list[str]], Awaitable[SourceFetchResult]]


@dataclass
class CandidatePool:
    """Deduplicated evidence from every source, grouped by source type."""

    ai_results: list[SearchResult] = field(default_factory=list)
    web_results: list[SearchResult] = field(default_factory=list)
    custom_results: list[SearchResult] = field(default_factory=list)
    ai_answer: str | None = None
    web_answer: str | None = None
    errors: list[str] = field(default_factory=list)

    def all_results(self) -> list[SearchResult]:
        return [*self.ai_results, *self.web_results, *self.custom_results]

    def ranked(self, limit: int | None = 10) -> list[SearchResult]:
        """Highest relevance first; ties keep AI, web, custom order. ``None`` returns everything."""
        ordered = sorted(self.all_results(), key=lambda result: result.relevance_score, reverse=True)
        return ordered if limit is None else ordered[:limit]

    @property
    def is_empty(self) -> bool:
        return not self.all_results() and not self.ai_answer and not self.web_answer


def _web_score(index: int) -> float:
    return round(max(WEB_SCORE_FLOOR, WEB_TOP_SCORE - WEB_SCORE_STEP * index), 4)


class Aggregator:
    """Fans out to all sources at once and merges what comes back."""

    def __init__(
        self,
        *,
        ai_search: SearchFetcher | None = None,
        web_search: SearchFetcher | None = None,
        custom_search: CustomFetcher | None = None,
        perplexity_api_key: str | None = None,
        serper_api_key: str | None = None,
        max_results_per_source: int | None = None,
    ):
        self._ai_search = ai_search or perplexity_search.fetch
        self._web_search = web_search or serper_search.fetch
        self._custom_search = custom_search or custom_sources.fetch
        self._perplexity_api_key = perplexity_api_key
        self._serper_api_key = serper_api_key
        self.max_results_per_source = int(max_results_per_source or settings.max_results_per_source)

    async def aggregate(self, query: str, custom_urls: list[str] | None = None) -> CandidatePool:
        started = time.monotonic()
        errors: list[str] = []

        perplexity_key = (
            self._perplexity_api_key if self._perplexity_api_key is not None else settings.perplexity_api_key
        )
        serper_key = self._serper_api_key if self._serper_api_key is not None else settings.serper_api_key

        ai_call = self._guarded(
            SourceType.AI_SEARCH,
            lambda: self._ai_search(query, perplexity_key),
            missing_key=None if perplexity_key else "PERPLEXITY_API_KEY",
        )
        web_call = self._guarded(
            SourceType.WEB_SEARCH,
            lambda: self._web_search(query, serper_key),
            missing_key=None if serper_key else "SERPER_API_KEY",
        )
        if custom_urls:
            custom_call = self._guarded(SourceType.CUSTOM, lambda: self._custom_search(list(custom_urls)))
        else:
            custom_call = _empty()

        ai_outcome, web_outcome, custom_outcome = await asyncio.gather(ai_call, web_call, custom_call)
        for outcome in (ai_outcome, web_outcome, custom_outcome):
            if outcome.error:
                errors.append(outcome.error)

        pool = self._merge(ai_outcome, web_outcome, custom_outcome)
        pool.errors = errors

        log_research_step(
            query,
            "aggregate",
            "completed",
            {
                "ai_results": len(pool.ai_results),
                "web_results": len(pool.web_results),
                "custom_results": len(pool.custom_results),
                "errors": len(errors),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return pool

    async def _guarded(
        self,
        source_type: SourceType,
        call: Callable[[], Awaitable[SourceFetchResult]],
        *,
        missing_key: str | None = None,
    ) -> SourceFetchResult:
        label = source_type.label
        if missing_key:
            exc = ConfigurationError(f"{missing_key} is not configured")
            logger.warning(f"Skipping {label} source: {exc}")
            log_source_fetch(source_type.value, "skipped", error=str(exc))
            return SourceFetchResult(error=f"{label}: {exc}")

        started = time.monotonic()
        try:
            outcome = await call()
        except ResearchError as exc:
            error = f"{label}: {exc}"
        except Exception as exc:
            logger.error(f"{label} source failed unexpectedly: {type(exc).__name__}: {exc}")
            error = f"{label}: {type(exc).__name__}: {exc}"
        else:
            log_source_fetch(
                source_type.value,
                "completed",
                results=len(outcome.results),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return outcome

        log_source_fetch(
            source_type.value,
            "failed",
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )
        return SourceFetchResult(error=error)

    def _merge(
        self,
        ai_outcome: SourceFetchResult,
        web_outcome: SourceFetchResult,
        custom_outcome: SourceFetchResult,
    ) -> CandidatePool:
        seen: set[str] = set()

        def _accept(results: list[SearchResult], score_for: Callable[[SearchResult], float]) -> list[SearchResult]:
            accepted: list[SearchResult] = []
            for result in results:
                if len(accepted) >= self.max_results_per_source:
                    break
                score = score_for(result)
                if not result.url or not result.url.strip():
                    continue
                key = url_key(result.url)
                if key in seen:
                    continue
                seen.add(key)
                accepted.append(ensure_title(replace(result, relevance_score=score)))
            accepted.sort(key=lambda result: result.relevance_score, reverse=True)
            return accepted

        web_rank = itertools.count()

        def _score_web(result: SearchResult) -> float:
            if result.relevance_score >= KNOWLEDGE_GRAPH_SCORE:
                return KNOWLEDGE_GRAPH_SCORE
            return _web_score(next(web_rank))

        return CandidatePool(
            ai_results=_accept(ai_outcome.results, lambda _: AI_SCORE),
            web_results=_accept(web_outcome.results, _score_web),
            custom_results=_accept(custom_outcome.results, lambda _: CUSTOM_SCORE),
            ai_answer=ai_outcome.answer or None,
            web_answer=web_outcome.answer or None,
        )


async def _empty() -> SourceFetchResult:
    return SourceFetchResult()
