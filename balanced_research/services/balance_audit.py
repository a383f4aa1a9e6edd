"""Representation audit of source types among the sources an answer used.

The synthesis prompt asks the model to balance source types itself; nothing
can force it to comply, so this audit only detects and reports imbalance.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from balanced_research.research_core.models.interfaces import SearchResult, SourceType

SOURCE_ORDER = (SourceType.AI_SEARCH, SourceType.WEB_SEARCH, SourceType.CUSTOM)


@dataclass(frozen=True, slots=True)
class BalanceReport:
    available_types: tuple[SourceType, ...]
    used_counts: dict[SourceType, int]
    percentages: dict[SourceType, int]
    target_percent: int
    tolerance: int
    deviations: dict[SourceType, str] = field(default_factory=dict)

    @property
    def total_used(self) -> int:
        return sum(self.used_counts.values())

    @property
    def is_balanced(self) -> bool:
        return not self.deviations

    def note(self) -> str | None:
        """Plain-text warning naming each over/under-represented type, or None."""
        if self.is_balanced:
            return None
        parts = [
            f"{source_type.label} sources ({self.percentages[source_type]}%) are {direction}."
            for source_type, direction in self.deviations.items()
        ]
        return (
            "[NOTE: This answer may not have equal representation from all source types. "
            + " ".join(parts)
            + "]"
        )


def audit_balance(sources: Iterable[SearchResult], *, tolerance: int = 10) -> BalanceReport:
    """Compare each available type's share of used sources with its fair share."""
    sources = list(sources)
    available = tuple(t for t in SOURCE_ORDER if any(s.source == t for s in sources))
    used_counts = {
        t: sum(1 for s in sources if s.source == t and s.used) for t in available
    }
    total_used = sum(used_counts.values())
    target = round(100 / len(available)) if available else 0

    if total_used == 0:
        return BalanceReport(
            available_types=available,
            used_counts=used_counts,
            percentages={t: 0 for t in available},
            target_percent=target,
            tolerance=tolerance,
        )

    percentages = {t: round(count / total_used * 100) for t, count in used_counts.items()}
    deviations: dict[SourceType, str] = {}
    for source_type, percent in percentages.items():
        if abs(percent - target) > tolerance:
            deviations[source_type] = "underrepresented" if percent < target else "overrepresented"

    return BalanceReport(
        available_types=available,
        used_counts=used_counts,
        percentages=percentages,
        target_percent=target,
        tolerance=tolerance,
        deviations=deviations,
    )
