"""Exception taxonomy shared by pipeline components."""

from __future__ import annotations


class SentimentAggregatorError(Exception):
    """Base class for all errors raised by the aggregator."""


class CancellationError(SentimentAggregatorError):
    """Raised when a run's cancellation token has been triggered."""

    def __init__(self, stage: str | None = None, reason: str | None = None) -> None:
        self.stage = stage
        self.reason = reason
        message = "Run cancelled"
        if stage:
            message += f" during {stage}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ConnectorError(SentimentAggregatorError):
    """A single fetch sub-request failed."""

    def __init__(self, message: str, query: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.query = query
        self.status_code = status_code


class RateLimitError(ConnectorError):
    """Upstream signalled throttling (HTTP 429 or an explicit rate-limit message)."""


class AnalysisError(SentimentAggregatorError):
    """Phrase generation or content analysis could not produce a usable result."""


class PersistenceError(SentimentAggregatorError):
    """Dedup cache read or write failed."""


class FatalPipelineError(SentimentAggregatorError):
    """Unexpected failure that moves a run into the failed state."""

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class FingerprintMismatchError(ValueError, SentimentAggregatorError):
    """Two fingerprints of different widths were compared."""


__all__ = [
    "AnalysisError",
    "CancellationError",
    "ConnectorError",
    "FatalPipelineError",
    "FingerprintMismatchError",
    "PersistenceError",
    "RateLimitError",
    "SentimentAggregatorError",
]
