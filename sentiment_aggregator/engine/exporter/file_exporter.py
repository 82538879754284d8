"""File based exporter writing analysis documents as JSON or item dumps as JSON lines."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .base import BaseExporter

SUPPORTED_FORMATS = ("json", "jsonl")


class FileExporter(BaseExporter):
    """Write records to ``<output_dir>/<slug>-<run_tag>.<format>``.

    ``json`` buffers records and writes one document on flush (a single object
    when exactly one record was exported, otherwise an array); ``jsonl``
    streams one record per line.
    """

    def __init__(self, output_dir: Path, name: str, fmt: str = "json", run_tag: str | None = None) -> None:
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        self.output_dir = output_dir
        self.format = fmt
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_tag = run_tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", name.strip()).strip("_")[:60] or "analysis"
        self.path = self.output_dir / f"{slug}-{self.run_tag}.{fmt}"
        self._buffer: list[dict] = []
        self._file = self.path.open("w", encoding="utf-8") if fmt == "jsonl" else None

    def export(self, record: dict) -> None:
        if self._file is not None:
            json.dump(record, self._file, ensure_ascii=False, default=_json_default)
            self._file.write("\n")
        else:
            self._buffer.append(record)

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()
            return
        payload: Any = self._buffer[0] if len(self._buffer) == 1 else self._buffer
        self.path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default),
            encoding="utf-8",
        )

    def close(self) -> None:
        self.flush()
        if self._file is not None:
            self._file.close()
            self._file = None


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


__all__ = ["FileExporter", "SUPPORTED_FORMATS"]
