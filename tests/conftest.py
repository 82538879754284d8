"""Shared fixtures for the sentiment aggregator test-suite."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable

import pytest

from sentiment_aggregator.config import ConfigLocator, ConfigRepository, GlobalConfig
from sentiment_aggregator.contracts import FetchOptions, FetchResult, TokenUsage
from sentiment_aggregator.engine.items import (
    AnalysisConfidence,
    AnalysisResult,
    Cluster,
    ClusterConfidence,
    ClusterShare,
    ContentItem,
    Evidence,
    SourceType,
    Stance,
    StanceDistributionEntry,
)
from sentiment_aggregator.infra import DedupCache, SQLiteManager

SAMPLE_TEXTS = [
    "Remote work gives employees flexibility, saves commuting hours every week and lets families "
    "plan their days around school runs instead of office schedules.",
    "Critics argue that remote work weakens team culture, slows mentoring for junior staff and "
    "blurs the boundary between professional duties and private life at home.",
    "Many managers report mixed results: productivity rose for focused tasks while collaboration "
    "on complex projects became harder without spontaneous hallway conversations.",
    "City centres lost foot traffic as offices emptied, hurting cafes and small shops that "
    "depended on lunchtime crowds and after work gatherings near business districts.",
    "Surveys show most engineers prefer a hybrid arrangement with two office days, citing "
    "better focus at home and valuable face time with colleagues during planning weeks.",
    "Housing markets in smaller towns heated up because remote workers moved away from "
    "expensive metropolitan areas in search of larger homes and quieter neighbourhoods.",
]


class FakeClock:
    """Monotonic clock whose sleeps advance time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class StubPhraseGenerator:
    def __init__(self, phrases: list[str] | None = None, error: Exception | None = None) -> None:
        self.phrases = phrases if phrases is not None else ["alpha", "beta"]
        self.error = error
        self.calls: list[str] = []

    async def generate_phrases(self, topic: str) -> list[str]:
        self.calls.append(topic)
        if self.error is not None:
            raise self.error
        return list(self.phrases)


class StubFetcher:
    """Return canned items per phrase; ``hooks`` run before a phrase is served."""

    def __init__(
        self,
        items_by_phrase: dict[str, list[ContentItem]] | None = None,
        errors: dict[str, Exception] | None = None,
        hooks: dict[str, Callable[[], None]] | None = None,
    ) -> None:
        self.items_by_phrase = items_by_phrase or {}
        self.errors = errors or {}
        self.hooks = hooks or {}
        self.calls: list[str] = []

    async def fetch_content(self, query: str, options: FetchOptions) -> FetchResult:
        self.calls.append(query)
        hook = self.hooks.get(query)
        if hook is not None:
            hook()
        if query in self.errors:
            raise self.errors[query]
        return FetchResult(
            items=list(self.items_by_phrase.get(query, [])),
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


class StubAnalyzer:
    def __init__(self, result: AnalysisResult | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, int, dict[str, Any]]] = []

    async def analyze_content(self, topic, items, meta) -> AnalysisResult:
        self.calls.append((topic, len(items), dict(meta)))
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        first = items[0]
        return AnalysisResult(
            clusters=[
                Cluster(
                    id="cluster-1",
                    label="Supporters",
                    stance=Stance.SUPPORT,
                    share=ClusterShare(count=len(items), percent=100.0),
                    confidence=ClusterConfidence(score_0_1=0.8),
                    evidence=[Evidence.from_item(first, first.text)],
                )
            ],
            stance_distribution=[
                StanceDistributionEntry(stance=Stance.SUPPORT, count=len(items), percent=100)
            ],
            confidence=AnalysisConfidence(overall_score_0_1=0.8, limitations=["stub"]),
        )


@pytest.fixture
def make_item() -> Callable[..., ContentItem]:
    counter = iter(range(10_000))

    def _builder(**overrides: Any) -> ContentItem:
        index = next(counter)
        base: dict[str, Any] = {
            "source_name": "example.com",
            "url": f"https://example.com/article/{index}",
            "text": SAMPLE_TEXTS[index % len(SAMPLE_TEXTS)],
            "source_type": SourceType.OPEN_WEB,
        }
        base.update(overrides)
        return ContentItem(**base)

    return _builder


@pytest.fixture
def sample_items(make_item) -> list[ContentItem]:
    domains = ["news.example", "blog.example", "forum.example"]
    return [
        make_item(
            url=f"https://{domains[index % 3]}/post/{index}",
            source_name=domains[index % 3],
            text=text,
        )
        for index, text in enumerate(SAMPLE_TEXTS)
    ]


@pytest.fixture
def stubs() -> SimpleNamespace:
    return SimpleNamespace(
        PhraseGenerator=StubPhraseGenerator,
        Fetcher=StubFetcher,
        Analyzer=StubAnalyzer,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quiet_config() -> GlobalConfig:
    config = GlobalConfig()
    config.fetch.inter_request_delay = 0
    return config


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("SENTIMENT_AGGREGATOR_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def dedup_cache(tmp_path: Path) -> Iterable[DedupCache]:
    manager = SQLiteManager()
    cache = DedupCache(manager, tmp_path / "history" / "dedupe.db")
    yield cache
    manager.close_all()
