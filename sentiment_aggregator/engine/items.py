"""Runtime data types flowing through the pipeline."""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SourceType(str, Enum):
    """Origin category of a content item."""

    OPEN_WEB = "open_web"
    COMMUNITY = "community"
    SCHOLARLY = "scholarly"
    SOCIAL = "social"
    OTHER = "other"


class Stance(str, Enum):
    SUPPORT = "support"
    OPPOSE = "oppose"
    MIXED = "mixed"
    UNCLEAR = "unclear"


ASPECT_TAGS: tuple[str, ...] = (
    "cost",
    "safety",
    "ethics",
    "legality",
    "effectiveness",
    "environmental",
    "social_impact",
    "technical",
    "political",
    "economic",
    "health",
    "privacy",
    "security",
    "innovation",
    "tradition",
    "other",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class ContentItem:
    """A single retrieved document.

    Items are treated as immutable once created: normalization hands back a
    ``dataclasses.replace`` copy, deduplication only filters.
    """

    source_name: str
    url: str
    text: str
    source_type: SourceType = SourceType.OPEN_WEB
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    retrieved_at: datetime = field(default_factory=_utcnow)
    language: str | None = None
    geo: str | None = None
    raw_text: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def engagement(self) -> float:
        """Score used to pick the survivor of a near-duplicate cluster."""

        value = self.meta.get("score") or self.meta.get("upvotes") or 0
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["source_type"] = self.source_type.value
        payload["published_at"] = _isoformat(self.published_at)
        payload["retrieved_at"] = _isoformat(self.retrieved_at)
        return payload


@dataclass(slots=True)
class Evidence:
    url: str
    source_name: str
    source_type: str
    excerpt: str
    title: str | None = None
    published_at: str | None = None

    @classmethod
    def from_item(cls, item: ContentItem, excerpt: str) -> "Evidence":
        return cls(
            url=item.url,
            title=item.title,
            source_name=item.source_name,
            source_type=item.source_type.value,
            published_at=_isoformat(item.published_at),
            excerpt=excerpt[:500],
        )


@dataclass(slots=True)
class ClusterShare:
    count: int
    percent: float


@dataclass(slots=True)
class ClusterBreakdown:
    by_source_type: list[dict[str, Any]] = field(default_factory=list)
    by_language: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class ClusterConfidence:
    score_0_1: float
    reasons: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Cluster:
    """One opinion cluster produced by analysis."""

    id: str
    label: str
    stance: Stance
    share: ClusterShare
    confidence: ClusterConfidence
    aspect_tags: list[str] = field(default_factory=list)
    breakdown: ClusterBreakdown = field(default_factory=ClusterBreakdown)
    evidence: list[Evidence] = field(default_factory=list)
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["stance"] = self.stance.value
        return payload


@dataclass(slots=True)
class StanceDistributionEntry:
    stance: Stance
    count: int
    percent: float

    def to_dict(self) -> dict[str, Any]:
        return {"stance": self.stance.value, "count": self.count, "percent": self.percent}


@dataclass(slots=True)
class AnalysisConfidence:
    overall_score_0_1: float
    limitations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AnalysisResult:
    """Structured outcome of the analysis stage."""

    clusters: list[Cluster]
    stance_distribution: list[StanceDistributionEntry]
    confidence: AnalysisConfidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "clusters": [cluster.to_dict() for cluster in self.clusters],
            "stance_distribution": [entry.to_dict() for entry in self.stance_distribution],
            "confidence": asdict(self.confidence),
        }


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def percent_of(count: int, total: int) -> float:
    """Share of ``total`` as a percentage with one decimal, halves rounded up."""

    if not total:
        return 0.0
    return math.floor(count / total * 1000 + 0.5) / 10


__all__ = [
    "ASPECT_TAGS",
    "AnalysisConfidence",
    "AnalysisResult",
    "Cluster",
    "ClusterBreakdown",
    "ClusterConfidence",
    "ClusterShare",
    "ContentItem",
    "Evidence",
    "SourceType",
    "Stance",
    "StanceDistributionEntry",
    "percent_of",
    "round_half_up",
]
