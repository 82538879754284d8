"""Pydantic models used across the aggregator configuration and request flow."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class RateLimitConfig(BaseModel):
    """Sliding-window admission plus exponential backoff settings."""

    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay: float = Field(default=1.0, ge=0, description="Seconds before the first retry.")
    max_delay: float = Field(default=30.0, ge=0)
    requests_per_window: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def _validate_delays(self) -> "RateLimitConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class DeduplicationConfig(BaseModel):
    # Cross-run cache lookups are off for normal runs so each analysis sees fresh results.
    check_cache: bool = False
    simhash_threshold: int = Field(default=10, ge=0, le=64)
    store_path: Path = Field(default=Path("history/dedupe.db"))


class FetchConfig(BaseModel):
    max_results: int = Field(default=10, ge=1, le=50)
    search_context_size: Literal["low", "medium", "high"] = "high"
    engine: Literal["native", "exa"] = "exa"
    inter_request_delay: float = Field(default=0.5, ge=0)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class OpenRouterConfig(BaseModel):
    base_url: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "openai/gpt-4o-mini"
    search_model: str = "openai/gpt-4o-mini"
    api_key_env: str = "OPENROUTER_API_KEY"
    referer: str = "http://localhost:3000"
    title: str = "Internet Sentiment Aggregator"
    timeout: float = Field(default=60.0, gt=0)
    rate_limit: RateLimitConfig = Field(
        default_factory=lambda: RateLimitConfig(requests_per_window=20)
    )

    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


class AnalysisConfig(BaseModel):
    max_items: int = Field(default=50, ge=1)
    search_phrases_count: int = Field(default=5, ge=1, le=20)
    phrase_temperature: float = Field(default=0.7, ge=0, le=2)
    analysis_temperature: float = Field(default=0.5, ge=0, le=2)
    max_tokens: int = Field(default=4096, ge=64)


class GlobalConfig(BaseModel):
    """Global configuration stored in ``data/global_config.yaml``."""

    history_dir: Path = Field(default=Path("data/history"))
    outputs_dir: Path = Field(default=Path("data/outputs"))
    enable_progress_bar: bool = True
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    openrouter: OpenRouterConfig = Field(default_factory=OpenRouterConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)


class TimeframePreset(str, Enum):
    LAST_24H = "last_24h"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    LAST_3_MONTHS = "last_3_months"
    LAST_YEAR = "last_year"
    CUSTOM = "custom"


_PRESET_SPANS = {
    TimeframePreset.LAST_24H: timedelta(hours=24),
    TimeframePreset.LAST_WEEK: timedelta(days=7),
    TimeframePreset.LAST_MONTH: timedelta(days=30),
    TimeframePreset.LAST_3_MONTHS: timedelta(days=90),
    TimeframePreset.LAST_YEAR: timedelta(days=365),
}


class Timeframe(BaseModel):
    """Either a relative preset or an explicit ``start``/``end`` window."""

    preset: TimeframePreset = TimeframePreset.LAST_WEEK
    start: datetime | None = None
    end: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Any:
        if isinstance(value, (str, TimeframePreset)):
            return {"preset": value}
        if isinstance(value, dict) and "start" in value and "preset" not in value:
            return {**value, "preset": TimeframePreset.CUSTOM}
        return value

    @model_validator(mode="after")
    def _validate_window(self) -> "Timeframe":
        if (self.start is None) != (self.end is None):
            raise ValueError("custom timeframe requires both start and end")
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError("timeframe end must be after start")
        return self

    def resolve(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Return a concrete UTC ``(start, end)`` window."""

        if self.start is not None and self.end is not None:
            return _as_utc(self.start), _as_utc(self.end)
        end = _as_utc(now or datetime.now(timezone.utc))
        # custom without dates behaves like last_week
        span = _PRESET_SPANS.get(self.preset, _PRESET_SPANS[TimeframePreset.LAST_WEEK])
        return end - span, end


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RequestFilters(BaseModel):
    exclude_domains: list[str] = Field(default_factory=list)
    include_domains: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    min_content_length: int | None = Field(default=None, ge=0)

    @field_validator("exclude_domains", "include_domains")
    @classmethod
    def _normalise_domains(cls, value: list[str]) -> list[str]:
        return [domain.strip().lower().removeprefix("www.") for domain in value if domain.strip()]

    def is_empty(self) -> bool:
        return not (
            self.exclude_domains
            or self.include_domains
            or self.exclude_keywords
            or self.min_content_length
        )


class AnalysisOptions(BaseModel):
    apply_domain_caps: bool = True
    domain_cap_percent: float = Field(default=10, ge=5, le=50)
    enable_deduplication: bool = True
    min_cluster_size: int = Field(default=3, ge=2)
    max_clusters: int = Field(default=15, ge=3, le=50)


class AnalysisRequest(BaseModel):
    """Validated input for one pipeline run."""

    topic: str = Field(min_length=2, max_length=500)
    timeframe: Timeframe = Field(default_factory=Timeframe)
    geo_scope: str | None = None
    languages: list[str] | None = None
    max_items_per_source: int = Field(default=100, ge=10, le=500)
    filters: RequestFilters = Field(default_factory=RequestFilters)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)

    @field_validator("topic")
    @classmethod
    def _strip_topic(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 2:
            raise ValueError("Topic must be at least 2 characters")
        return stripped

    @field_validator("geo_scope")
    @classmethod
    def _lower_geo(cls, value: str | None) -> str | None:
        return value.lower() if value else None

    @field_validator("languages")
    @classmethod
    def _validate_languages(cls, value: list[str] | None) -> list[str] | None:
        if not value:
            return None
        codes = [code.strip().lower() for code in value]
        for code in codes:
            if len(code) != 2 or not code.isalpha():
                raise ValueError(f"Language codes must be ISO 639-1 (two letters): {code!r}")
        return codes


__all__ = [
    "AnalysisConfig",
    "AnalysisOptions",
    "AnalysisRequest",
    "DeduplicationConfig",
    "FetchConfig",
    "GlobalConfig",
    "OpenRouterConfig",
    "RateLimitConfig",
    "RequestFilters",
    "Timeframe",
    "TimeframePreset",
]
