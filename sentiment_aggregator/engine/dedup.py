"""Three-phase deduplication: canonical URL, SimHash clusters, domain caps."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Sequence

import structlog

from ..contracts import DedupCacheStore
from ..errors import PersistenceError
from .canonical import extract_domain, hash_url
from .items import ContentItem
from .simhash import compute_simhash, group_fingerprints


class DuplicateType(str, Enum):
    URL = "url"
    CONTENT = "content"


@dataclass(slots=True)
class DedupOptions:
    check_cache: bool = True
    simhash_threshold: int = 5
    apply_domain_caps: bool = True
    domain_cap_percent: float = 25


@dataclass(slots=True)
class DuplicateGroup:
    type: DuplicateType
    urls: list[str]
    kept: str


@dataclass(slots=True)
class DedupStats:
    original_count: int
    url_duplicates_removed: int = 0
    near_duplicates_removed: int = 0
    final_count: int = 0
    domain_cap_applied: bool = False
    domains_capped: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DeduplicationResult:
    items: list[ContentItem]
    stats: DedupStats
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "stats": asdict(self.stats),
            "duplicate_groups": [
                {"type": group.type.value, "urls": list(group.urls), "kept": group.kept}
                for group in self.duplicate_groups
            ],
        }


@dataclass(slots=True)
class _Candidate:
    item: ContentItem
    url_hash: str
    simhash: str = ""


class Deduplicator:
    """Filter a batch of items; never mutates them.

    The optional cache provides cross-run memory. Cache failures are logged and
    never change a decision already made for the batch.
    """

    def __init__(
        self,
        cache: DedupCacheStore | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.cache = cache
        self.logger = logger or structlog.get_logger("sentiment_aggregator.dedup")

    def deduplicate(
        self, items: Sequence[ContentItem], options: DedupOptions | None = None
    ) -> DeduplicationResult:
        options = options or DedupOptions()
        stats = DedupStats(original_count=len(items))
        groups: list[DuplicateGroup] = []

        candidates = self._dedupe_urls(items, options, stats, groups)
        candidates = self._dedupe_content(candidates, options, stats, groups)
        if options.apply_domain_caps and candidates:
            candidates = self._apply_domain_caps(candidates, options, stats)

        self._remember(candidates)
        stats.final_count = len(candidates)
        self.logger.info(
            "dedup_complete",
            original=stats.original_count,
            url_removed=stats.url_duplicates_removed,
            near_removed=stats.near_duplicates_removed,
            final=stats.final_count,
            domains_capped=stats.domains_capped,
        )
        return DeduplicationResult(
            items=[candidate.item for candidate in candidates],
            stats=stats,
            duplicate_groups=groups,
        )

    def _dedupe_urls(
        self,
        items: Sequence[ContentItem],
        options: DedupOptions,
        stats: DedupStats,
        groups: list[DuplicateGroup],
    ) -> list[_Candidate]:
        kept_by_hash: dict[str, ContentItem] = {}
        survivors: list[_Candidate] = []
        for item in items:
            url_hash = hash_url(item.url)
            existing = kept_by_hash.get(url_hash)
            if existing is not None:
                stats.url_duplicates_removed += 1
                groups.append(
                    DuplicateGroup(DuplicateType.URL, [existing.url, item.url], kept=existing.url)
                )
                continue
            if options.check_cache and self._seen_before(url_hash, item.url):
                stats.url_duplicates_removed += 1
                continue
            kept_by_hash[url_hash] = item
            survivors.append(_Candidate(item=item, url_hash=url_hash))
        return survivors

    def _dedupe_content(
        self,
        candidates: list[_Candidate],
        options: DedupOptions,
        stats: DedupStats,
        groups: list[DuplicateGroup],
    ) -> list[_Candidate]:
        for candidate in candidates:
            candidate.simhash = compute_simhash(candidate.item.text)
        dropped: set[int] = set()
        for members in group_fingerprints(
            [candidate.simhash for candidate in candidates], options.simhash_threshold
        ):
            # max() keeps the first member on equal engagement
            kept = max(members, key=lambda index: candidates[index].item.engagement())
            dropped.update(index for index in members if index != kept)
            groups.append(
                DuplicateGroup(
                    DuplicateType.CONTENT,
                    [candidates[index].item.url for index in members],
                    kept=candidates[kept].item.url,
                )
            )
        stats.near_duplicates_removed = len(dropped)
        return [candidate for index, candidate in enumerate(candidates) if index not in dropped]

    def _apply_domain_caps(
        self, candidates: list[_Candidate], options: DedupOptions, stats: DedupStats
    ) -> list[_Candidate]:
        max_per_domain = math.ceil(len(candidates) * options.domain_cap_percent / 100)
        counts: Counter[str] = Counter()
        survivors: list[_Candidate] = []
        for candidate in candidates:
            domain = extract_domain(candidate.item.url)
            if counts[domain] >= max_per_domain:
                if domain not in stats.domains_capped:
                    stats.domains_capped.append(domain)
                continue
            counts[domain] += 1
            survivors.append(candidate)
        stats.domain_cap_applied = bool(stats.domains_capped)
        return survivors

    def _seen_before(self, url_hash: str, url: str) -> bool:
        if self.cache is None:
            return False
        try:
            return self.cache.exists_by_url_hash(url_hash)
        except PersistenceError as exc:
            self.logger.warning("dedup_cache_read_failed", url=url, error=str(exc))
            return False

    def _remember(self, candidates: list[_Candidate]) -> None:
        if self.cache is None:
            return
        for candidate in candidates:
            try:
                self.cache.insert_if_absent(
                    candidate.url_hash, candidate.simhash, candidate.item.url
                )
            except PersistenceError as exc:
                self.logger.warning(
                    "dedup_cache_write_failed", url=candidate.item.url, error=str(exc)
                )


__all__ = [
    "DedupOptions",
    "DedupStats",
    "DeduplicationResult",
    "Deduplicator",
    "DuplicateGroup",
    "DuplicateType",
]
