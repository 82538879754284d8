"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable


class BaseExporter(ABC):
    """Uniform exporter contract for analysis outputs and item dumps."""

    path: Path

    @abstractmethod
    def export(self, record: dict) -> None:
        """Persist a single record."""

    def export_many(self, records: Iterable[dict]) -> None:
        for record in records:
            self.export(record)

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""

    def __enter__(self) -> "BaseExporter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["BaseExporter"]
