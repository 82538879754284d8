"""Cooperative cancellation for pipeline runs."""

from __future__ import annotations

from threading import Event

from ..errors import CancellationError


class CancellationToken:
    """Flag checked by the pipeline at stage boundaries and between fetches.

    Safe to trigger from another thread (e.g. a signal handler) while the run
    executes on an event loop.
    """

    def __init__(self) -> None:
        self._event = Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self._event.is_set():
            raise CancellationError(stage=stage, reason=self.reason)


__all__ = ["CancellationToken"]
