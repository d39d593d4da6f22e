from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from scout.recommendations.cache import (
    InMemoryRecommendationCache,
    SQLiteRecommendationCache,
    create_cache,
    description_hash,
)
from scout.recommendations.config import DEFAULT_RECOMMENDER_CONFIG
from scout.recommendations.models import CacheEntry, Candidate, ResultMetadata


def _entry(
    description: str = "Rainy alley at night",
    project_id: str | None = None,
    ttl: timedelta = timedelta(days=7),
    created_at: datetime | None = None,
    access_count: int = 0,
) -> CacheEntry:
    now = created_at or datetime.now(timezone.utc)
    return CacheEntry(
        description=description,
        description_hash=description_hash(description),
        project_id=project_id,
        results=[Candidate(name="Chor Bazaar lane", verified=True, place_id="p1")],
        metadata=ResultMetadata(total_generated=1, total_verified=1),
        created_at=now,
        expires_at=now + ttl,
        access_count=access_count,
        last_accessed_at=now,
    )


@pytest.fixture(params=["memory", "sqlite"])
def cache(request, tmp_path):
    if request.param == "memory":
        yield InMemoryRecommendationCache()
    else:
        backend = SQLiteRecommendationCache(tmp_path / "cache.sqlite")
        yield backend
        backend.close()


# ── Hashing ──────────────────────────────────────────────────────────────


def test_hash_ignores_case_and_surrounding_whitespace():
    assert description_hash("  Rainy Alley at NIGHT ") == description_hash("rainy alley at night")


def test_hash_is_sha256_hex():
    key = description_hash("beach at dawn")
    assert len(key) == 64
    assert key == description_hash("beach at dawn")


def test_hash_keeps_inner_whitespace():
    assert description_hash("beach  at dawn") != description_hash("beach at dawn")


# ── Get / put ────────────────────────────────────────────────────────────


def test_put_then_get_returns_entry(cache):
    entry = _entry()
    cache.put(entry)
    found = cache.get(entry.description_hash)
    assert found is not None
    assert found.description == "Rainy alley at night"
    assert found.results[0].name == "Chor Bazaar lane"
    assert found.results[0].verified is True


def test_missing_key_is_a_miss(cache):
    assert cache.get(description_hash("nothing here")) is None
    assert cache.stats()["misses"] == 1


def test_expired_entry_is_never_returned(cache):
    entry = _entry(ttl=timedelta(seconds=-1))
    cache.put(entry)
    assert cache.get(entry.description_hash) is None


def test_put_replaces_existing_entry(cache):
    cache.put(_entry(access_count=5))
    replacement = _entry()
    replacement.results = [Candidate(name="Marine Drive")]
    cache.put(replacement)

    found = cache.get(replacement.description_hash)
    assert found.results[0].name == "Marine Drive"
    assert found.access_count == 0


def test_entries_are_partitioned_by_project(cache):
    cache.put(_entry(project_id="film-a"))
    key = description_hash("Rainy alley at night")
    assert cache.get(key, "film-a") is not None
    assert cache.get(key, "film-b") is None
    assert cache.get(key) is None


# ── Access accounting ────────────────────────────────────────────────────


def test_record_access_increments_count_and_timestamp(cache):
    old = datetime.now(timezone.utc) - timedelta(hours=3)
    entry = _entry(created_at=old, ttl=timedelta(days=7))
    cache.put(entry)

    touched = cache.record_access(entry.description_hash)
    assert touched.access_count == 1
    assert touched.last_accessed_at > old

    touched = cache.record_access(entry.description_hash)
    assert touched.access_count == 2
    assert cache.get(entry.description_hash).access_count == 2


def test_record_access_on_missing_key_returns_none(cache):
    assert cache.record_access(description_hash("missing")) is None


# ── Maintenance ──────────────────────────────────────────────────────────


def test_clear_expired_removes_only_expired(cache):
    cache.put(_entry("old one", ttl=timedelta(seconds=-5)))
    cache.put(_entry("older one", ttl=timedelta(days=-1)))
    cache.put(_entry("fresh one"))

    assert cache.clear_expired() == 2
    assert cache.get(description_hash("fresh one")) is not None
    assert cache.clear_expired() == 0


def test_stats_counts_live_recent_and_popular(cache):
    stale_access = datetime.now(timezone.utc) - timedelta(days=2)
    cache.put(_entry("quiet library", created_at=stale_access, access_count=1))
    cache.put(_entry("busy market", access_count=7))
    cache.put(_entry("expired rooftop", ttl=timedelta(seconds=-1), access_count=99))

    cache.get(description_hash("busy market"))
    cache.get(description_hash("unknown"))

    stats = cache.stats()
    assert stats["total_cached_requests"] == 2
    assert stats["recently_used_24h"] == 1
    assert [q["description"] for q in stats["popular_queries"]] == ["busy market", "quiet library"]
    assert stats["popular_queries"][0]["access_count"] == 7
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0


def test_counters_are_exact_under_concurrent_lookups(cache):
    entry = _entry()
    cache.put(entry)
    missing = description_hash("never stored")

    def worker():
        for _ in range(200):
            cache.get(entry.description_hash)
            cache.get(missing)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = cache.stats()
    assert stats["hits"] == 1600
    assert stats["misses"] == 1600
    assert stats["hit_rate"] == 50.0


def test_clear_resets_entries_and_counters(cache):
    cache.put(_entry())
    cache.get(description_hash("Rainy alley at night"))
    cache.clear()
    stats = cache.stats()
    assert stats["total_cached_requests"] == 0
    assert stats["hits"] == 0
    assert stats["hit_rate"] == 0.0


# ── Backends ─────────────────────────────────────────────────────────────


def test_memory_cache_returns_copies():
    cache = InMemoryRecommendationCache()
    entry = _entry()
    cache.put(entry)
    found = cache.get(entry.description_hash)
    found.results[0].name = "mutated"
    assert cache.get(entry.description_hash).results[0].name == "Chor Bazaar lane"


def test_sqlite_cache_survives_reopen(tmp_path):
    path = tmp_path / "nested" / "cache.sqlite"
    first = SQLiteRecommendationCache(path)
    first.put(_entry(project_id="film-a"))
    first.record_access(description_hash("Rainy alley at night"), "film-a")
    first.close()

    second = SQLiteRecommendationCache(path)
    found = second.get(description_hash("Rainy alley at night"), "film-a")
    second.close()
    assert found is not None
    assert found.access_count == 1


def test_create_cache_memory():
    config = replace(DEFAULT_RECOMMENDER_CONFIG, cache_backend="memory")
    assert isinstance(create_cache(config), InMemoryRecommendationCache)


def test_create_cache_sqlite(tmp_path):
    config = replace(
        DEFAULT_RECOMMENDER_CONFIG,
        cache_backend="sqlite",
        cache_path=tmp_path / "cache.sqlite",
    )
    cache = create_cache(config)
    assert isinstance(cache, SQLiteRecommendationCache)
    cache.close()


def test_create_cache_unknown_backend():
    config = replace(DEFAULT_RECOMMENDER_CONFIG, cache_backend="redis")
    with pytest.raises(ValueError, match="Invalid cache backend"):
        create_cache(config)
