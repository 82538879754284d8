"""Interfaces of the collaborators the pipeline depends on."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from .engine.items import AnalysisResult, ContentItem


@dataclass(slots=True)
class FetchOptions:
    max_results: int = 10
    search_context_size: str = "high"
    engine: str = "exa"


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(slots=True)
class FetchResult:
    items: list[ContentItem] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(slots=True)
class NormalizationStats:
    original_count: int = 0
    normalized_count: int = 0
    filtered_count: int = 0
    non_meaningful: int = 0
    too_short: int = 0
    wrong_language: int = 0
    undetected_language: int = 0
    language_distribution: dict[str, int] = field(default_factory=dict)
    avg_word_count: float = 0.0


@dataclass(slots=True)
class NormalizationResult:
    items: list[ContentItem]
    stats: NormalizationStats = field(default_factory=NormalizationStats)
    warnings: list[str] = field(default_factory=list)


@runtime_checkable
class PhraseGenerator(Protocol):
    async def generate_phrases(self, topic: str) -> list[str]: ...


@runtime_checkable
class ContentFetcher(Protocol):
    async def fetch_content(self, query: str, options: FetchOptions) -> FetchResult: ...


@runtime_checkable
class ContentAnalyzer(Protocol):
    async def analyze_content(
        self, topic: str, items: Sequence[ContentItem], meta: Mapping[str, Any]
    ) -> AnalysisResult: ...


@runtime_checkable
class ContentNormalizer(Protocol):
    def normalize(
        self, items: Sequence[ContentItem], allowed_languages: Sequence[str] | None = None
    ) -> NormalizationResult: ...


@runtime_checkable
class DedupCacheStore(Protocol):
    def exists_by_url_hash(self, url_hash: str) -> bool: ...

    def insert_if_absent(self, url_hash: str, simhash: str | None, source_url: str) -> bool: ...

    def find_by_simhash(self, simhash: str, max_distance: int = 3) -> list[str]: ...


__all__ = [
    "ContentAnalyzer",
    "ContentFetcher",
    "ContentNormalizer",
    "DedupCacheStore",
    "FetchOptions",
    "FetchResult",
    "NormalizationResult",
    "NormalizationStats",
    "PhraseGenerator",
    "TokenUsage",
]
