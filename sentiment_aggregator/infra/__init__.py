"""Infra layer utilities (SQLite storage, dedup cache)."""

from .dedup_cache import DedupCache, DedupCacheStats
from .storage import SQLiteManager

__all__ = ["DedupCache", "DedupCacheStats", "SQLiteManager"]
