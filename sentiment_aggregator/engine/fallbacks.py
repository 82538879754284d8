"""Tagged attempt results and the deterministic degradation strategies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from ..errors import CancellationError
from .items import (
    AnalysisConfidence,
    AnalysisResult,
    Cluster,
    ClusterBreakdown,
    ClusterConfidence,
    ClusterShare,
    ContentItem,
    Evidence,
    Stance,
    StanceDistributionEntry,
    round_half_up,
)

T = TypeVar("T")

PHRASE_SUFFIXES = ("opinions", "discussion", "pros cons", "controversy", "review")
FALLBACK_SOURCE_GROUPS = 5
FALLBACK_EVIDENCE_PER_CLUSTER = 2
FALLBACK_CONFIDENCE = 0.3
EMPTY_CONFIDENCE = 0.1


@dataclass(slots=True)
class Attempt(Generic[T]):
    """Outcome of a collaborator call: either a value or the error it raised."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(operation: Callable[[], Awaitable[T]]) -> Attempt[T]:
    """Run ``operation`` and tag its outcome. Cancellation is never swallowed."""

    try:
        return Attempt(value=await operation())
    except CancellationError:
        raise
    except Exception as exc:
        return Attempt(error=exc)


def fallback_phrases(topic: str) -> list[str]:
    clean = topic.strip()
    return [clean, *(f"{clean} {suffix}" for suffix in PHRASE_SUFFIXES)]


def _unclear_distribution(count: int) -> list[StanceDistributionEntry]:
    return [
        StanceDistributionEntry(
            stance=stance,
            count=count if stance is Stance.UNCLEAR else 0,
            percent=100 if stance is Stance.UNCLEAR else 0,
        )
        for stance in Stance
    ]


def fallback_analysis(items: Sequence[ContentItem]) -> AnalysisResult:
    """Group items by source name when real analysis is unavailable."""

    if not items:
        return AnalysisResult(
            clusters=[],
            stance_distribution=_unclear_distribution(0),
            confidence=AnalysisConfidence(
                overall_score_0_1=EMPTY_CONFIDENCE,
                limitations=["No content available for analysis"],
                warnings=["No data to analyze"],
            ),
        )

    by_source: dict[str, list[ContentItem]] = {}
    for item in items:
        by_source.setdefault(item.source_name, []).append(item)

    clusters: list[Cluster] = []
    for index, (source, members) in enumerate(list(by_source.items())[:FALLBACK_SOURCE_GROUPS]):
        clusters.append(
            Cluster(
                id=f"cluster-{index + 1}",
                label=f"Content from {source}",
                stance=Stance.UNCLEAR,
                aspect_tags=["other"],
                share=ClusterShare(
                    count=len(members),
                    percent=round_half_up(len(members) / len(items) * 100),
                ),
                breakdown=ClusterBreakdown(
                    by_source_type=[
                        {"source_type": members[0].source_type.value, "count": len(members)}
                    ],
                ),
                evidence=[
                    Evidence.from_item(member, member.text or "")
                    for member in members[:FALLBACK_EVIDENCE_PER_CLUSTER]
                ],
                notes="Grouped by source due to analysis unavailability.",
                confidence=ClusterConfidence(
                    score_0_1=FALLBACK_CONFIDENCE, reasons=["Fallback analysis used"]
                ),
            )
        )

    return AnalysisResult(
        clusters=clusters,
        stance_distribution=_unclear_distribution(len(items)),
        confidence=AnalysisConfidence(
            overall_score_0_1=FALLBACK_CONFIDENCE,
            limitations=["LLM analysis failed, using fallback grouping by source"],
            warnings=["Analysis quality is reduced"],
        ),
    )


__all__ = ["Attempt", "attempt", "fallback_analysis", "fallback_phrases"]
