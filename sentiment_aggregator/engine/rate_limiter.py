"""Sliding-window admission control with exponential-backoff retries."""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from ..config.models import RateLimitConfig
from ..errors import CancellationError, RateLimitError

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")
JITTER_RATIO = 0.1


def is_rate_limit_error(exc: BaseException) -> bool:
    """Classify throttling errors by type or by message content."""

    if isinstance(exc, RateLimitError):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


@dataclass(slots=True)
class RateLimitStatus:
    remaining: int
    limit: int
    window_seconds: float


class RateLimitedExecutor:
    """Admit at most ``requests_per_window`` calls per window and retry failures.

    One instance owns one window. Share an instance to make the window global
    for every caller using it; admission is serialized so concurrent callers
    observe a consistent timestamp list.
    """

    def __init__(
        self,
        settings: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._timestamps: deque[float] = deque()
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None
        self.logger = logger or structlog.get_logger("sentiment_aggregator.rate_limiter")

    def _admission_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _purge(self, now: float) -> None:
        window_start = now - self.settings.window_seconds
        while self._timestamps and self._timestamps[0] <= window_start:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        """Wait until the window has room, then record the admission."""

        async with self._admission_lock():
            now = self._clock()
            self._purge(now)
            if len(self._timestamps) >= self.settings.requests_per_window:
                wait = self._timestamps[0] + self.settings.window_seconds - now
                if wait > 0:
                    self.logger.info("rate_limit_wait", seconds=round(wait, 3))
                    await self._sleep(wait)
                now = self._clock()
                self._purge(now)
            self._timestamps.append(now)

    def backoff_delay(self, attempt: int) -> float:
        delay = min(self.settings.base_delay * (2**attempt), self.settings.max_delay)
        jitter = delay * JITTER_RATIO * (self._rng() * 2 - 1)
        return max(0.0, delay + jitter)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        should_retry: Callable[[BaseException], bool] = is_rate_limit_error,
    ) -> T:
        """Run ``operation`` under admission control, retrying retryable failures.

        The last error propagates unchanged once ``should_retry`` rejects it or
        ``max_retries`` extra attempts have been used. Cancellation is never retried.
        """

        max_retries = self.settings.max_retries
        for attempt in range(max_retries + 1):
            await self.acquire()
            try:
                return await operation()
            except CancellationError:
                raise
            except Exception as exc:
                if attempt >= max_retries or not should_retry(exc):
                    raise
                delay = self.backoff_delay(attempt)
                self.logger.warning(
                    "retry_scheduled",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    def status(self) -> RateLimitStatus:
        self._purge(self._clock())
        limit = self.settings.requests_per_window
        return RateLimitStatus(
            remaining=max(0, limit - len(self._timestamps)),
            limit=limit,
            window_seconds=self.settings.window_seconds,
        )


__all__ = ["RateLimitStatus", "RateLimitedExecutor", "is_rate_limit_error"]
