"""Persistent cross-run dedup records keyed by canonical URL hash."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock

from ..engine.simhash import hamming_distance
from ..errors import FingerprintMismatchError, PersistenceError
from .storage import SQLiteManager


@dataclass(slots=True)
class DedupCacheStats:
    total_entries: int
    with_simhash: int
    oldest: str | None
    newest: str | None


class DedupCache:
    """SQLite-backed store of ``(url_hash, simhash, source_url)`` records.

    Writes are insert-if-absent, so concurrent runs racing on the same URL hash
    never error and the later write is a no-op. Every sqlite failure surfaces
    as :class:`PersistenceError`.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    def exists_by_url_hash(self, url_hash: str) -> bool:
        with self._lock:
            try:
                cur = self._conn.execute(
                    "SELECT 1 FROM dedupe_cache WHERE url_hash = ?", (url_hash,)
                )
                return cur.fetchone() is not None
            except sqlite3.Error as exc:
                raise PersistenceError(f"dedup cache lookup failed: {exc}") from exc

    def insert_if_absent(self, url_hash: str, simhash: str | None, source_url: str) -> bool:
        """Store a record; return ``True`` when a new row was written."""

        with self._lock:
            try:
                cur = self._conn.execute(
                    "INSERT OR IGNORE INTO dedupe_cache(id, url_hash, content_simhash, source_url) "
                    "VALUES (?, ?, ?, ?)",
                    (str(uuid.uuid4()), url_hash, simhash, source_url),
                )
                self._conn.commit()
                return cur.rowcount > 0
            except sqlite3.Error as exc:
                raise PersistenceError(f"dedup cache write failed: {exc}") from exc

    def find_by_simhash(self, simhash: str, max_distance: int = 3) -> list[str]:
        """Return source URLs whose stored fingerprint is within ``max_distance``.

        Linear scan over every stored fingerprint.
        """

        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT content_simhash, source_url FROM dedupe_cache "
                    "WHERE content_simhash IS NOT NULL"
                ).fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(f"dedup cache scan failed: {exc}") from exc
        matches: list[str] = []
        for row in rows:
            try:
                distance = hamming_distance(simhash, row["content_simhash"])
            except FingerprintMismatchError:
                continue
            if distance <= max_distance:
                matches.append(row["source_url"])
        return matches

    def stats(self) -> DedupCacheStats:
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS total, COUNT(content_simhash) AS hashed, "
                    "MIN(created_at) AS oldest, MAX(created_at) AS newest FROM dedupe_cache"
                ).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(f"dedup cache stats failed: {exc}") from exc
        return DedupCacheStats(
            total_entries=row["total"],
            with_simhash=row["hashed"],
            oldest=row["oldest"],
            newest=row["newest"],
        )

    def prune(self, older_than: datetime) -> int:
        """Delete records created before ``older_than``; return rows removed."""

        if older_than.tzinfo is not None:
            older_than = older_than.astimezone(timezone.utc).replace(tzinfo=None)
        cutoff = older_than.strftime("%Y-%m-%d %H:%M:%S")
        with self._lock:
            try:
                cur = self._conn.execute(
                    "DELETE FROM dedupe_cache WHERE created_at < ?", (cutoff,)
                )
                self._conn.commit()
                return cur.rowcount
            except sqlite3.Error as exc:
                raise PersistenceError(f"dedup cache prune failed: {exc}") from exc

    def reset(self) -> None:
        with self._lock:
            self.manager.reset(self.db_path)
            self._conn = self.manager.connect(self.db_path)


__all__ = ["DedupCache", "DedupCacheStats"]
