from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal


Priority = Literal["high", "medium", "low"]
ExtractMethod = Literal["readability", "trafilatura", "structured_data", "pattern", "full_text"]


class SourceType(str, Enum):
    AI_SEARCH = "ai_search"
    WEB_SEARCH = "web_search"
    CUSTOM = "custom"

    @property
    def label(self) -> str:
        return SOURCE_LABELS[self]


SOURCE_LABELS = {
    SourceType.AI_SEARCH: "AI search",
    SourceType.WEB_SEARCH: "Web search",
    SourceType.CUSTOM: "Custom",
}


@dataclass(frozen=True, slots=True)
class SearchResult:
    source: SourceType
    url: str | None = None
    title: str = ""
    snippet: str = ""
    content: str = ""
    used: bool = False
    priority: Priority | None = None
    relevance_score: float = 0.0
    position: int | None = None
    date: str | None = None

    @property
    def body(self) -> str:
        return self.content or self.snippet

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "snippet": self.snippet,
            "content": self.content,
            "source": self.source.value,
            "used": self.used,
            "priority": self.priority,
            "relevance_score": self.relevance_score,
            "position": self.position,
            "date": self.date,
        }


@dataclass(slots=True)
class SourceFetchResult:
    """Normalized output of one source adapter."""

    results: list[SearchResult] = field(default_factory=list)
    answer: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    title: str
    url: str
    content: str
    method: ExtractMethod


@dataclass(frozen=True, slots=True)
class ResearchResult:
    query: str
    answer: str
    sources: tuple[SearchResult, ...]
    generated_at: datetime
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "answer": self.answer,
            "sources": [source.to_dict() for source in self.sources],
            "generated_at": self.generated_at.isoformat(),
            "errors": list(self.errors),
        }
