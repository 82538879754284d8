"""User interaction helpers."""

from .progress import StageProgressReporter, StageProgressState

__all__ = ["StageProgressReporter", "StageProgressState"]
