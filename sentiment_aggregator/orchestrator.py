"""Pipeline orchestrator wiring phrase generation, fetch, processing, analysis and assembly."""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

import structlog

from .config import AnalysisRequest, GlobalConfig, RequestFilters
from .contracts import (
    ContentAnalyzer,
    ContentFetcher,
    ContentNormalizer,
    FetchOptions,
    PhraseGenerator,
    TokenUsage,
)
from .engine.cancellation import CancellationToken
from .engine.canonical import domain_distribution, extract_domain
from .engine.dedup import DedupOptions, DedupStats, DeduplicationResult, Deduplicator
from .engine.fallbacks import attempt, fallback_analysis, fallback_phrases
from .engine.items import AnalysisResult, ContentItem, percent_of
from .engine.normalizer import TextNormalizer
from .engine.rate_limiter import RateLimitedExecutor
from .errors import CancellationError, ConnectorError, FatalPipelineError

SOURCES_USED = ("openrouter_web_search",)
WEIGHTING_DESCRIPTION = "Equal weight per item, with domain caps to prevent single-source dominance"
PHRASE_FALLBACK_LIMITATION = "Search phrase generation failed, default search phrases were used"
ANALYSIS_FALLBACK_LIMITATION = "Content analysis failed, results were grouped by source"


class Stage(str, Enum):
    SEARCH_PHRASES = "search_phrases"
    FETCH = "fetch"
    PROCESS = "process"
    ANALYZE = "analyze"
    ASSEMBLE = "assemble"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class PipelineProgress:
    stage: Stage
    progress: int
    message: str
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RunStats:
    phrases: list[str] = field(default_factory=list)
    failed_phrases: list[str] = field(default_factory=list)
    n_raw: int = 0
    n_normalized: int = 0
    n_after_dedupe: int = 0
    n_analyzed: int = 0
    domain_caps_applied: bool = False
    domains_capped: list[str] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    analysis_fallback: bool = False
    phrase_fallback: bool = False


@dataclass(slots=True)
class PipelineOutcome:
    """Terminal result of one run, including whatever partial state was gathered."""

    run_id: str
    status: RunStatus
    stage: Stage | None
    stats: RunStats
    output: dict[str, Any] | None = None
    error: str | None = None
    raw_items: list[ContentItem] = field(default_factory=list)
    dedup: DeduplicationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "stage": self.stage.value if self.stage else None,
            "error": self.error,
            "stats": asdict(self.stats),
            "output": self.output,
        }


ProgressCallback = Callable[[PipelineProgress], None]


@dataclass(slots=True)
class _RunContext:
    run_id: str
    request: AnalysisRequest
    token: CancellationToken
    started_at: datetime
    logger: Any
    on_progress: ProgressCallback | None
    stage: Stage | None = None
    stats: RunStats = field(default_factory=RunStats)
    raw_items: list[ContentItem] = field(default_factory=list)
    dedup: DeduplicationResult | None = None
    analysis: AnalysisResult | None = None
    limitations: list[str] = field(default_factory=list)

    def outcome(self, status: RunStatus, **kwargs: Any) -> PipelineOutcome:
        return PipelineOutcome(
            run_id=self.run_id,
            status=status,
            stage=self.stage,
            stats=self.stats,
            raw_items=list(self.raw_items),
            dedup=self.dedup,
            **kwargs,
        )


def apply_request_filters(items: Sequence[ContentItem], filters: RequestFilters) -> list[ContentItem]:
    """Apply the caller's domain, keyword and length filters."""

    if filters.is_empty():
        return list(items)
    keywords = [keyword.lower() for keyword in filters.exclude_keywords if keyword]
    kept: list[ContentItem] = []
    for item in items:
        domain = extract_domain(item.url)
        if any(_domain_matches(domain, d) for d in filters.exclude_domains):
            continue
        if filters.include_domains and not any(
            _domain_matches(domain, d) for d in filters.include_domains
        ):
            continue
        haystack = f"{item.title or ''} {item.text}".lower()
        if any(keyword in haystack for keyword in keywords):
            continue
        if filters.min_content_length and len(item.text) < filters.min_content_length:
            continue
        kept.append(item)
    return kept


def _domain_matches(domain: str, rule: str) -> bool:
    return domain == rule or domain.endswith(f".{rule}")


def source_type_breakdown(items: Sequence[ContentItem]) -> list[dict[str, Any]]:
    counts = Counter(item.source_type.value for item in items)
    total = len(items)
    return [
        {"source_type": source_type, "count": count, "percent": percent_of(count, total)}
        for source_type, count in counts.most_common()
    ]


class PipelineOrchestrator:
    """Run the five pipeline stages in order for one request at a time per call.

    Collaborator failures degrade the run (fallback phrases, fallback analysis,
    skipped fetch phrases) rather than failing it. Only unexpected errors end a
    run as ``failed``; a triggered token ends it as ``cancelled``.
    """

    def __init__(
        self,
        phrase_generator: PhraseGenerator,
        fetcher: ContentFetcher,
        analyzer: ContentAnalyzer,
        *,
        normalizer: ContentNormalizer | None = None,
        deduplicator: Deduplicator | None = None,
        executor: RateLimitedExecutor | None = None,
        settings: GlobalConfig | None = None,
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or GlobalConfig()
        self.phrase_generator = phrase_generator
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.normalizer = normalizer or TextNormalizer()
        self.deduplicator = deduplicator or Deduplicator()
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("sentiment_aggregator.pipeline")
        self.executor = executor or RateLimitedExecutor(
            self.settings.fetch.rate_limit, sleep=sleep, logger=self.logger
        )

    async def run(
        self,
        request: AnalysisRequest,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        run_id: str | None = None,
    ) -> PipelineOutcome:
        run_id = run_id or str(uuid.uuid4())
        ctx = _RunContext(
            run_id=run_id,
            request=request,
            token=token or CancellationToken(),
            started_at=datetime.now(timezone.utc),
            logger=self.logger.bind(run_id=run_id),
            on_progress=on_progress,
        )
        ctx.logger.info("run_started", topic=request.topic)
        try:
            await self._search_phrases(ctx)
            await self._fetch(ctx)
            self._process(ctx)
            await self._analyze(ctx)
            output = self._assemble(ctx)
        except CancellationError as exc:
            ctx.logger.info("run_cancelled", stage=_stage_name(ctx), reason=exc.reason)
            return ctx.outcome(RunStatus.CANCELLED, error=str(exc))
        except Exception as exc:
            fatal = FatalPipelineError(f"{type(exc).__name__}: {exc}", stage=_stage_name(ctx))
            ctx.logger.error("run_failed", stage=fatal.stage, error=str(fatal), exc_info=True)
            return ctx.outcome(RunStatus.FAILED, error=str(fatal))
        ctx.logger.info(
            "run_completed",
            n_raw=ctx.stats.n_raw,
            n_after_dedupe=ctx.stats.n_after_dedupe,
            clusters=len(output["clusters"]),
        )
        return ctx.outcome(RunStatus.COMPLETED, output=output)

    async def stream(
        self, request: AnalysisRequest, token: CancellationToken | None = None
    ) -> AsyncIterator[PipelineProgress | PipelineOutcome]:
        """Yield every progress event, then the final :class:`PipelineOutcome`."""

        token = token or CancellationToken()
        queue: asyncio.Queue[PipelineProgress | None] = asyncio.Queue()

        async def produce() -> PipelineOutcome:
            try:
                return await self.run(request, token, on_progress=queue.put_nowait)
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(produce())
        try:
            while (event := await queue.get()) is not None:
                yield event
            yield await task
        finally:
            if not task.done():
                token.cancel("stream closed")
                await task

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _enter(self, ctx: _RunContext, stage: Stage, message: str, **meta: Any) -> None:
        ctx.token.raise_if_cancelled(stage.value)
        ctx.stage = stage
        self._report(ctx, stage, 0, message, **meta)

    def _report(self, ctx: _RunContext, stage: Stage, progress: int, message: str, **meta: Any) -> None:
        ctx.logger.debug("stage_progress", stage=stage.value, progress=progress, message=message)
        if ctx.on_progress is not None:
            ctx.on_progress(PipelineProgress(stage=stage, progress=progress, message=message, meta=meta))

    async def _search_phrases(self, ctx: _RunContext) -> None:
        self._enter(ctx, Stage.SEARCH_PHRASES, "Generating search phrases...")
        topic = ctx.request.topic
        result = await attempt(lambda: self.phrase_generator.generate_phrases(topic))
        values = result.value if isinstance(result.value, list) else []
        phrases = [p.strip() for p in values if isinstance(p, str) and p.strip()]
        if not phrases:
            ctx.logger.warning(
                "phrase_fallback", error=str(result.error) if result.error else "empty result"
            )
            phrases = fallback_phrases(topic)
            ctx.stats.phrase_fallback = True
            ctx.limitations.append(PHRASE_FALLBACK_LIMITATION)
        ctx.stats.phrases = phrases
        self._report(ctx, Stage.SEARCH_PHRASES, 100, f"Generated {len(phrases)} search phrases")

    async def _fetch(self, ctx: _RunContext) -> None:
        self._enter(ctx, Stage.FETCH, "Searching the web...")
        fetch_cfg = self.settings.fetch
        options = FetchOptions(
            max_results=min(ctx.request.max_items_per_source, fetch_cfg.max_results),
            search_context_size=fetch_cfg.search_context_size,
            engine=fetch_cfg.engine,
        )
        phrases = ctx.stats.phrases
        for position, phrase in enumerate(phrases):
            ctx.token.raise_if_cancelled(Stage.FETCH.value)
            try:
                result = await self.executor.execute(
                    lambda: self.fetcher.fetch_content(phrase, options)
                )
            except CancellationError:
                ctx.logger.info("fetch_interrupted", phrase=phrase)
                break
            except Exception as exc:
                error = exc if isinstance(exc, ConnectorError) else ConnectorError(str(exc), query=phrase)
                ctx.logger.warning("fetch_phrase_failed", phrase=phrase, error=str(error))
                ctx.stats.failed_phrases.append(phrase)
            else:
                ctx.raw_items.extend(result.items)
                ctx.stats.usage = ctx.stats.usage + result.usage

            remaining = len(phrases) - position - 1
            if remaining:
                self._report(
                    ctx,
                    Stage.FETCH,
                    (position + 1) * 100 // len(phrases),
                    f"Searched {position + 1}/{len(phrases)} phrases",
                )
                if fetch_cfg.inter_request_delay > 0:
                    await self._sleep(fetch_cfg.inter_request_delay)

        if ctx.stats.failed_phrases:
            ctx.limitations.append(
                f"{len(ctx.stats.failed_phrases)} of {len(phrases)} search requests failed"
            )
        ctx.stats.n_raw = len(ctx.raw_items)
        self._report(ctx, Stage.FETCH, 100, f"Fetched {ctx.stats.n_raw} items from web")

    def _process(self, ctx: _RunContext) -> None:
        self._enter(ctx, Stage.PROCESS, "Processing content...")
        request = ctx.request
        filtered = apply_request_filters(ctx.raw_items, request.filters)
        normalized = self.normalizer.normalize(filtered, request.languages)
        ctx.stats.n_normalized = len(normalized.items)
        self._report(ctx, Stage.PROCESS, 50, f"Normalized {len(normalized.items)} items")

        if request.options.enable_deduplication:
            dedup_cfg = self.settings.deduplication
            ctx.dedup = self.deduplicator.deduplicate(
                normalized.items,
                DedupOptions(
                    check_cache=dedup_cfg.check_cache,
                    simhash_threshold=dedup_cfg.simhash_threshold,
                    apply_domain_caps=request.options.apply_domain_caps,
                    domain_cap_percent=request.options.domain_cap_percent,
                ),
            )
        else:
            count = len(normalized.items)
            ctx.dedup = DeduplicationResult(
                items=list(normalized.items),
                stats=DedupStats(original_count=count, final_count=count),
            )
        ctx.stats.n_after_dedupe = len(ctx.dedup.items)
        ctx.stats.domain_caps_applied = ctx.dedup.stats.domain_cap_applied
        ctx.stats.domains_capped = list(ctx.dedup.stats.domains_capped)
        self._report(ctx, Stage.PROCESS, 100, f"After dedup: {ctx.stats.n_after_dedupe} items")

    async def _analyze(self, ctx: _RunContext) -> None:
        meta = {"n_raw": ctx.stats.n_raw, "n_after_dedupe": ctx.stats.n_after_dedupe}
        self._enter(ctx, Stage.ANALYZE, "Analyzing content...", **meta)
        options = ctx.request.options
        analyzer_meta = {
            **meta,
            "min_cluster_size": options.min_cluster_size,
            "max_clusters": options.max_clusters,
        }
        items = ctx.dedup.items[: self.settings.analysis.max_items]
        ctx.stats.n_analyzed = len(items)

        analysis: AnalysisResult | None = None
        if items:
            topic = ctx.request.topic
            result = await attempt(lambda: self.analyzer.analyze_content(topic, items, analyzer_meta))
            if result.ok and isinstance(result.value, AnalysisResult):
                analysis = result.value
            else:
                ctx.logger.warning("analysis_fallback", error=str(result.error))
                ctx.stats.analysis_fallback = True
                ctx.limitations.append(ANALYSIS_FALLBACK_LIMITATION)
        ctx.analysis = analysis or fallback_analysis(items)
        self._report(
            ctx, Stage.ANALYZE, 100, f"Identified {len(ctx.analysis.clusters)} opinion clusters"
        )

    def _assemble(self, ctx: _RunContext) -> dict[str, Any]:
        self._enter(ctx, Stage.ASSEMBLE, "Assembling results...")
        request = ctx.request
        start, end = request.timeframe.resolve(ctx.started_at)
        analysis = ctx.analysis.to_dict()
        confidence = analysis["confidence"]
        confidence["limitations"] = [*ctx.limitations, *confidence["limitations"]]

        output = {
            "analysis_id": ctx.run_id,
            "created_at": ctx.started_at.isoformat(),
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "status": RunStatus.COMPLETED.value,
            "query": {
                "topic": request.topic,
                "timeframe": {"start": start.isoformat(), "end": end.isoformat()},
                "geo_scope": request.geo_scope,
                "language_scope": request.languages,
                "user_filters": request.filters.model_dump(mode="json"),
            },
            "sampling": {
                "sources_used": list(SOURCES_USED),
                "phrases": list(ctx.stats.phrases),
                "n_raw": ctx.stats.n_raw,
                "n_after_dedupe": ctx.stats.n_after_dedupe,
                "n_analyzed": ctx.stats.n_analyzed,
                "source_breakdown": source_type_breakdown(ctx.raw_items),
                "domain_breakdown": domain_distribution(item.url for item in ctx.raw_items),
                "domain_caps_applied": ctx.stats.domain_caps_applied,
                "domains_capped": list(ctx.stats.domains_capped),
                "weighting_policy": {
                    "description": WEIGHTING_DESCRIPTION,
                    "params": {"domain_cap_percent": request.options.domain_cap_percent},
                },
            },
            "stance_distribution": analysis["stance_distribution"],
            "clusters": analysis["clusters"],
            "confidence": confidence,
        }
        self._report(ctx, Stage.ASSEMBLE, 100, "Analysis complete")
        return output


def _stage_name(ctx: _RunContext) -> str | None:
    return ctx.stage.value if ctx.stage else None


def create_default_orchestrator(
    config: GlobalConfig,
    cache=None,
    *,
    api_key: str | None = None,
    logger: structlog.BoundLogger | None = None,
):
    """Wire the OpenRouter-backed collaborators; returns ``(orchestrator, client)``.

    The caller owns the returned client and should close it after the run.
    """

    from .connectors import OpenRouterSearchConnector
    from .llm import LLMContentAnalyzer, OpenRouterClient, SearchPhraseGenerator

    client = OpenRouterClient(config.openrouter, api_key=api_key, logger=logger)
    orchestrator = PipelineOrchestrator(
        phrase_generator=SearchPhraseGenerator(
            client,
            count=config.analysis.search_phrases_count,
            temperature=config.analysis.phrase_temperature,
            logger=logger,
        ),
        fetcher=OpenRouterSearchConnector(client, logger=logger),
        analyzer=LLMContentAnalyzer(
            client,
            temperature=config.analysis.analysis_temperature,
            max_tokens=config.analysis.max_tokens,
            logger=logger,
        ),
        normalizer=TextNormalizer(logger=logger),
        deduplicator=Deduplicator(cache=cache, logger=logger),
        settings=config,
        logger=logger,
    )
    return orchestrator, client


__all__ = [
    "ANALYSIS_FALLBACK_LIMITATION",
    "PHRASE_FALLBACK_LIMITATION",
    "PipelineOrchestrator",
    "PipelineOutcome",
    "PipelineProgress",
    "RunStats",
    "RunStatus",
    "Stage",
    "apply_request_filters",
    "create_default_orchestrator",
    "source_type_breakdown",
]
