from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .config import (
    CACHE_BACKEND_MEMORY,
    CACHE_BACKEND_SQLITE,
    DEFAULT_RECOMMENDER_CONFIG,
    RecommenderConfig,
)
from .models import CacheEntry

logger = logging.getLogger(__name__)

_POPULAR_LIMIT = 10
_RECENT_WINDOW = timedelta(hours=24)


def description_hash(description: str) -> str:
    """SHA-256 of the lowercased, trimmed description."""
    normalized = description.strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _project_key(project_id: str | None) -> str:
    return project_id or ""


def _is_expired(entry: CacheEntry, now: datetime) -> bool:
    return now >= entry.expires_at


class RecommendationCache:
    """
    Keyed TTL store interface plus hit/miss bookkeeping shared by backends.

    Expiry is lazy: an entry past ``expires_at`` is never returned, whether or
    not a sweep has removed it yet.
    """

    def __init__(self) -> None:
        self._hits = 0
        self._misses = 0
        self._counter_lock = threading.Lock()

    # -- backend hooks ---------------------------------------------------

    def _load(self, key: tuple[str, str]) -> CacheEntry | None:
        raise NotImplementedError

    def _store(self, entry: CacheEntry) -> None:
        raise NotImplementedError

    def _touch(self, key: tuple[str, str], now: datetime) -> CacheEntry | None:
        raise NotImplementedError

    def _entries(self) -> list[CacheEntry]:
        raise NotImplementedError

    def clear_expired(self) -> int:
        raise NotImplementedError

    def _clear_entries(self) -> None:
        raise NotImplementedError

    # -- public API ------------------------------------------------------

    def get(self, description_hash: str, project_id: str | None = None) -> CacheEntry | None:
        entry = self._load((_project_key(project_id), description_hash))
        hit = entry is not None and not _is_expired(entry, _utcnow())
        with self._counter_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
        return entry if hit else None

    def put(self, entry: CacheEntry) -> None:
        """Insert or replace the entry for its ``(project_id, description_hash)``."""
        self._store(entry)

    def record_access(
        self, description_hash: str, project_id: str | None = None
    ) -> CacheEntry | None:
        """Increment the access count and stamp ``last_accessed_at``."""
        return self._touch((_project_key(project_id), description_hash), _utcnow())

    def stats(self) -> dict[str, Any]:
        now = _utcnow()
        live = [e for e in self._entries() if not _is_expired(e, now)]
        recent = [e for e in live if e.last_accessed_at > now - _RECENT_WINDOW]
        popular = sorted(live, key=lambda e: e.access_count, reverse=True)[:_POPULAR_LIMIT]
        with self._counter_lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        return {
            "total_cached_requests": len(live),
            "recently_used_24h": len(recent),
            "popular_queries": [
                {
                    "description": e.description,
                    "project_id": e.project_id,
                    "access_count": e.access_count,
                    "last_accessed_at": e.last_accessed_at.isoformat(),
                }
                for e in popular
            ],
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / total * 100, 1) if total > 0 else 0.0,
        }

    def clear(self) -> None:
        self._clear_entries()
        with self._counter_lock:
            self._hits = 0
            self._misses = 0


class InMemoryRecommendationCache(RecommendationCache):
    def __init__(self) -> None:
        super().__init__()
        self._data: dict[tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()

    def _load(self, key: tuple[str, str]) -> CacheEntry | None:
        with self._lock:
            entry = self._data.get(key)
            return entry.model_copy(deep=True) if entry else None

    def _store(self, entry: CacheEntry) -> None:
        key = (_project_key(entry.project_id), entry.description_hash)
        with self._lock:
            self._data[key] = entry.model_copy(deep=True)

    def _touch(self, key: tuple[str, str], now: datetime) -> CacheEntry | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            entry.access_count += 1
            entry.last_accessed_at = now
            return entry.model_copy(deep=True)

    def _entries(self) -> list[CacheEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._data.values()]

    def clear_expired(self) -> int:
        now = _utcnow()
        with self._lock:
            expired = [k for k, e in self._data.items() if _is_expired(e, now)]
            for key in expired:
                del self._data[key]
        logger.info("Cleared %d expired cache entries", len(expired))
        return len(expired)

    def _clear_entries(self) -> None:
        with self._lock:
            self._data.clear()


class SQLiteRecommendationCache(RecommendationCache):
    def __init__(self, db_path: Path | str) -> None:
        super().__init__()
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS recommendation_cache (
                    project_key TEXT NOT NULL,
                    description_hash TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0,
                    last_accessed_at REAL NOT NULL,
                    PRIMARY KEY (project_key, description_hash)
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_recommendation_cache_expires
                ON recommendation_cache(expires_at)
                """
            )
            self._conn.commit()

    @staticmethod
    def _row_to_entry(row: tuple) -> CacheEntry:
        payload_json, access_count, last_accessed_at = row
        entry = CacheEntry.model_validate(json.loads(payload_json))
        entry.access_count = int(access_count)
        entry.last_accessed_at = datetime.fromtimestamp(last_accessed_at, tz=timezone.utc)
        return entry

    def _load(self, key: tuple[str, str]) -> CacheEntry | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT payload_json, access_count, last_accessed_at
                FROM recommendation_cache
                WHERE project_key=? AND description_hash=?
                """,
                key,
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def _store(self, entry: CacheEntry) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO recommendation_cache
                (project_key, description_hash, payload_json, expires_at, access_count, last_accessed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    _project_key(entry.project_id),
                    entry.description_hash,
                    entry.model_dump_json(),
                    entry.expires_at.timestamp(),
                    entry.access_count,
                    entry.last_accessed_at.timestamp(),
                ),
            )
            self._conn.commit()

    def _touch(self, key: tuple[str, str], now: datetime) -> CacheEntry | None:
        with self._lock:
            cur = self._conn.execute(
                """
                UPDATE recommendation_cache
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE project_key=? AND description_hash=?
                """,
                (now.timestamp(), *key),
            )
            self._conn.commit()
            if cur.rowcount == 0:
                return None
        return self._load(key)

    def _entries(self) -> list[CacheEntry]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT payload_json, access_count, last_accessed_at FROM recommendation_cache"
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def clear_expired(self) -> int:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM recommendation_cache WHERE expires_at <= ?",
                (_utcnow().timestamp(),),
            )
            self._conn.commit()
        logger.info("Cleared %d expired cache entries", cur.rowcount)
        return cur.rowcount

    def _clear_entries(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM recommendation_cache")
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()


def create_cache(config: RecommenderConfig = DEFAULT_RECOMMENDER_CONFIG) -> RecommendationCache:
    """Build the cache backend named by ``config.cache_backend``."""
    logger.info("Creating recommendation cache of type %s", config.cache_backend)
    if config.cache_backend == CACHE_BACKEND_MEMORY:
        return InMemoryRecommendationCache()
    if config.cache_backend == CACHE_BACKEND_SQLITE:
        return SQLiteRecommendationCache(config.cache_path)
    raise ValueError(
        f"Invalid cache backend: {config.cache_backend}. "
        f"Use '{CACHE_BACKEND_MEMORY}' or '{CACHE_BACKEND_SQLITE}'."
    )
