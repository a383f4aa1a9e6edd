from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from loguru import logger

from balanced_research.config import settings
from balanced_research.research_core.models.interfaces import ResearchResult, SearchResult
from balanced_research.services.balance_audit import audit_balance
from balanced_research.services.markdown_cleanup import normalize_markdown
from balanced_research.tools.web_utils import url_key

if TYPE_CHECKING:
    from balanced_research.agents.aggregator import CandidatePool


def mark_used(results: Iterable[SearchResult], used_urls: Iterable[str]) -> list[SearchResult]:
    used_keys = {url_key(url) for url in used_urls if url}
    return [replace(result, used=bool(result.url) and url_key(result.url) in used_keys) for result in results]


def finalize(
    query: str,
    raw_answer: str,
    pool: CandidatePool,
    used_urls: Iterable[str],
    *,
    tolerance: int | None = None,
) -> ResearchResult:
    """Normalize the answer, flag used sources and prepend a balance note when needed."""
    answer = normalize_markdown(raw_answer)
    sources = mark_used(pool.ranked(limit=None), used_urls)

    report = audit_balance(
        sources,
        tolerance=tolerance if tolerance is not None else settings.balance_tolerance_pct,
    )
    note = report.note()
    if note:
        logger.info(f"Source balance outside tolerance: {report.percentages}")
        answer = f"{note}\n\n{answer}"

    return ResearchResult(
        query=query,
        answer=answer,
        sources=tuple(sources),
        generated_at=datetime.now(timezone.utc),
        errors=tuple(pool.errors),
    )
