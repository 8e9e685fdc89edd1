import sqlite3

import pytest

from metascore.cache import (
    CacheEntry,
    CacheUnavailable,
    MemoryKeyValueStore,
    ScoreCache,
    SqliteKeyValueStore,
)
from metascore.config import CACHE_TTL_SECONDS, STORAGE_KEY_PREFIX
from metascore.parser import ScorePair


@pytest.mark.asyncio
async def test_round_trip_then_expiry(clock):
    cache = ScoreCache(MemoryKeyValueStore(), clock=clock)
    await cache.put("matrix", ScorePair(critic=75, user=7.2))

    entry = await cache.get("matrix")
    assert entry is not None
    assert entry.scores == ScorePair(critic=75, user=7.2)
    assert entry.created_at == clock.now

    clock.advance(14 * 24 * 60 * 60 + 0.001)
    assert await cache.get("matrix") is None


@pytest.mark.asyncio
async def test_entry_is_still_valid_at_exactly_the_ttl(clock):
    cache = ScoreCache(MemoryKeyValueStore(), clock=clock)
    await cache.put("matrix", ScorePair(critic=75))

    clock.advance(CACHE_TTL_SECONDS)
    assert (await cache.get("matrix")).scores.critic == 75


@pytest.mark.asyncio
async def test_put_overwrites_whole_entry_and_restamps(clock):
    cache = ScoreCache(MemoryKeyValueStore(), clock=clock)
    await cache.put("dune", ScorePair(critic=79, user=8.4))

    clock.advance(3600)
    await cache.put("dune", ScorePair(critic=None, user=None))

    entry = await cache.get("dune")
    assert entry.scores.is_empty
    assert entry.created_at == clock.now


@pytest.mark.asyncio
async def test_empty_result_is_cached_as_a_hit(clock):
    cache = ScoreCache(MemoryKeyValueStore(), clock=clock)
    await cache.put("unknown film", ScorePair.empty())

    entry = await cache.get("unknown film")
    assert entry is not None
    assert entry.scores.is_empty


@pytest.mark.asyncio
async def test_keys_are_namespaced_by_prefix(clock):
    store = MemoryKeyValueStore()
    cache = ScoreCache(store, clock=clock)
    await cache.put("matrix", ScorePair(critic=73))

    assert await store.keys() == [STORAGE_KEY_PREFIX + "matrix"]
    record = await store.get(STORAGE_KEY_PREFIX + "matrix")
    assert record == {"critic": 73, "user": None, "timestamp": clock.now}


@pytest.mark.asyncio
async def test_malformed_record_is_a_miss(clock):
    store = MemoryKeyValueStore()
    await store.set(STORAGE_KEY_PREFIX + "broken", {"critic": 80})
    cache = ScoreCache(store, clock=clock)

    assert await cache.get("broken") is None


@pytest.mark.asyncio
async def test_purge_expired_and_stats(clock):
    store = MemoryKeyValueStore()
    cache = ScoreCache(store, clock=clock)
    await cache.put("old", ScorePair(critic=60))
    clock.advance(CACHE_TTL_SECONDS + 1)
    await cache.put("fresh", ScorePair(critic=70))
    await cache.put("missing", ScorePair.empty())
    await store.set("other:key", {"x": 1})

    stats = await cache.stats()
    assert stats["entries"] == 3
    assert stats["expired"] == 1
    assert stats["not_found"] == 1

    assert await cache.purge_expired() == 1
    assert await store.keys(STORAGE_KEY_PREFIX) == [
        STORAGE_KEY_PREFIX + "fresh",
        STORAGE_KEY_PREFIX + "missing",
    ]
    # Keys outside the namespace are left alone
    assert await store.get("other:key") == {"x": 1}

    assert await cache.clear() == 2
    assert await store.keys(STORAGE_KEY_PREFIX) == []


def test_cache_entry_record_round_trip():
    entry = CacheEntry(scores=ScorePair(critic=75, user=7.2), created_at=123.5)
    assert CacheEntry.from_record(entry.to_record()) == entry
    assert entry.age(200.0) == 76.5


@pytest.mark.asyncio
async def test_sqlite_store_persists_entries(fresh_db, clock):
    cache = ScoreCache(SqliteKeyValueStore(), clock=clock)
    await cache.put("sociedad de la nieve", ScorePair(critic=72, user=8.0))

    # A new store over the same database sees the entry
    other = ScoreCache(SqliteKeyValueStore(), clock=clock)
    entry = await other.get("sociedad de la nieve")
    assert entry.scores == ScorePair(critic=72, user=8.0)

    assert fresh_db.kv_get(STORAGE_KEY_PREFIX + "sociedad de la nieve")["critic"] == 72


@pytest.mark.asyncio
async def test_sqlite_store_wraps_database_errors(fresh_db, monkeypatch):
    def broken(*args):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(fresh_db, "kv_get", broken)
    store = SqliteKeyValueStore()

    with pytest.raises(CacheUnavailable):
        await store.get("mc:title:anything")
