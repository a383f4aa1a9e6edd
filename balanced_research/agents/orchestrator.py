"""Research orchestrator: aggregate, synthesize, finalize.

`research()` always returns a ResearchResult. Failures past input validation
degrade to a fallback answer instead of raising.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone

from loguru import logger

from balanced_research.agents.aggregator import Aggregator, CandidatePool
from balanced_research.agents.synthesizer import Synthesizer
from balanced_research.exceptions import ConfigurationError, SynthesisError
from balanced_research.models.schemas import ResearchRequest
from balanced_research.research_core.models.interfaces import ResearchResult, SearchResult
from balanced_research.services.logger import log_research_step
from balanced_research.services.markdown_cleanup import normalize_markdown
from balanced_research.services.post_processor import finalize

NO_RESULTS_ANSWER = "No search results found from any source. Please try a different query."
SYNTHESIS_FALLBACK_PREFIX = "(Answer synthesis failed, showing the AI search answer as a fallback)"
NO_ANSWER_MESSAGE = "Failed to generate an answer from any source. Please try again or refine your query."
UNEXPECTED_ERROR_PREFIX = "An error occurred while researching:"


class ResearchOrchestrator:
    def __init__(
        self,
        *,
        aggregator: Aggregator | None = None,
        synthesizer: Synthesizer | None = None,
        model: str | None = None,
    ):
        self.aggregator = aggregator or Aggregator()
        self._synthesizer = synthesizer
        self.model = model

    @property
    def synthesizer(self) -> Synthesizer:
        if self._synthesizer is None:
            self._synthesizer = Synthesizer(model=self.model)
        return self._synthesizer

    async def research(
        self,
        query: str,
        custom_urls: list[str] | None = None,
        *,
        language: str | None = None,
        model: str | None = None,
    ) -> ResearchResult:
        """Run one research request end to end."""
        request = ResearchRequest(
            query=query,
            custom_urls=custom_urls or [],
            language=language or "english",
            model=model,
        )
        started = time.monotonic()
        log_research_step(request.query, "research", "started", {"custom_urls": len(request.custom_urls)})

        try:
            result = await self._run(request)
        except Exception as exc:
            logger.exception(f"Research failed for query {request.query!r}: {exc}")
            result = _result(request.query, f"{UNEXPECTED_ERROR_PREFIX} {exc}", (), (str(exc),))

        log_research_step(
            request.query,
            "research",
            "completed",
            {
                "sources": len(result.sources),
                "used": sum(1 for s in result.sources if s.used),
                "errors": len(result.errors),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    async def _run(self, request: ResearchRequest) -> ResearchResult:
        pool = await self.aggregator.aggregate(request.query, request.custom_urls)
        if pool.is_empty:
            logger.warning(f"No results from any source for {request.query!r}")
            return _result(request.query, NO_RESULTS_ANSWER, (), tuple(pool.errors))

        try:
            output = await self.synthesizer.synthesize(
                request.query,
                pool.ai_results,
                pool.web_results,
                pool.custom_results,
                ai_answer=pool.ai_answer,
                web_answer=pool.web_answer,
                model=request.model or self.model,
            )
        except (SynthesisError, ConfigurationError) as exc:
            logger.warning(f"Synthesis unavailable, falling back: {exc}")
            return self._fallback(request.query, pool, exc)

        for notice in output.notices:
            logger.info(f"Synthesis notice: {notice}")
        return finalize(request.query, output.answer, pool, output.used_source_urls)

    @staticmethod
    def _fallback(query: str, pool: CandidatePool, exc: Exception) -> ResearchResult:
        if pool.ai_answer:
            answer = f"{SYNTHESIS_FALLBACK_PREFIX}\n\n{normalize_markdown(pool.ai_answer)}"
        else:
            answer = NO_ANSWER_MESSAGE
        return _result(query, answer, tuple(pool.ranked(limit=None)), (*pool.errors, str(exc)))


def _result(
    query: str,
    answer: str,
    sources: tuple[SearchResult, ...],
    errors: tuple[str, ...],
) -> ResearchResult:
    return ResearchResult(
        query=query,
        answer=answer,
        sources=sources,
        generated_at=datetime.now(timezone.utc),
        errors=errors,
    )
