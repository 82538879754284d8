"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    AnalysisConfig,
    AnalysisOptions,
    AnalysisRequest,
    DeduplicationConfig,
    FetchConfig,
    GlobalConfig,
    OpenRouterConfig,
    RateLimitConfig,
    RequestFilters,
    Timeframe,
    TimeframePreset,
)

__all__ = [
    "AnalysisConfig",
    "AnalysisOptions",
    "AnalysisRequest",
    "ConfigLocator",
    "ConfigRepository",
    "DeduplicationConfig",
    "FetchConfig",
    "GlobalConfig",
    "OpenRouterConfig",
    "RateLimitConfig",
    "RequestFilters",
    "Timeframe",
    "TimeframePreset",
]
