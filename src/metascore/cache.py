"""
Time-bounded score cache on top of a pluggable async key-value store.

Entries are written whole and never patched. Expiry is checked lazily on
read; purge_expired() is an optional sweep for keeping the store small.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from . import database
from .config import CACHE_TTL_SECONDS, STORAGE_KEY_PREFIX
from .parser import ScorePair

logger = logging.getLogger(__name__)


class CacheUnavailable(RuntimeError):
    """Raised when the backing store cannot be read or written."""


@dataclass(frozen=True)
class CacheEntry:
    scores: ScorePair
    created_at: float

    def age(self, now: float) -> float:
        return now - self.created_at

    def to_record(self) -> dict:
        return {**self.scores.to_dict(), "timestamp": self.created_at}

    @classmethod
    def from_record(cls, record: dict) -> "CacheEntry":
        return cls(scores=ScorePair.from_dict(record), created_at=float(record["timestamp"]))


class KeyValueStore(ABC):
    """Async get/set capability the cache is built on."""

    @abstractmethod
    async def get(self, key: str) -> dict | None:
        """Return the stored value, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: dict) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with prefix."""


class MemoryKeyValueStore(KeyValueStore):
    """In-process store; contents are lost on exit."""

    def __init__(self):
        self._data: dict[str, dict] = {}

    async def get(self, key: str) -> dict | None:
        value = self._data.get(key)
        return dict(value) if value is not None else None

    async def set(self, key: str, value: dict) -> None:
        self._data[key] = dict(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqliteKeyValueStore(KeyValueStore):
    """
    Durable store backed by the kv_store table.

    SQLite calls block, so they run in worker threads. Database errors are
    surfaced as CacheUnavailable.
    """

    def __init__(self):
        self._initialized = False

    async def _call(self, func, *args):
        try:
            if not self._initialized:
                await asyncio.to_thread(database.init_db)
                self._initialized = True
            return await asyncio.to_thread(func, *args)
        except (sqlite3.Error, OSError) as exc:
            raise CacheUnavailable(f"{func.__name__} failed: {exc}") from exc

    async def get(self, key: str) -> dict | None:
        return await self._call(database.kv_get, key)

    async def set(self, key: str, value: dict) -> None:
        await self._call(database.kv_set, key, value)

    async def delete(self, key: str) -> None:
        await self._call(database.kv_delete, key)

    async def keys(self, prefix: str = "") -> list[str]:
        return await self._call(database.kv_keys, prefix)


class ScoreCache:
    """Maps normalized titles to ScorePairs for ttl_seconds."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        prefix: str = STORAGE_KEY_PREFIX,
    ):
        self.store = store if store is not None else MemoryKeyValueStore()
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.prefix = prefix

    def _key(self, normalized_title: str) -> str:
        return self.prefix + normalized_title

    def _decode(self, key: str, record: dict | None) -> CacheEntry | None:
        if not record:
            return None
        try:
            return CacheEntry.from_record(record)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Ignoring malformed cache entry '{key}': {exc}")
            return None

    def _is_expired(self, entry: CacheEntry) -> bool:
        return entry.age(self.clock()) > self.ttl_seconds

    async def get(self, normalized_title: str) -> CacheEntry | None:
        """Return the entry if present and not older than the TTL."""
        key = self._key(normalized_title)
        entry = self._decode(key, await self.store.get(key))
        if entry is None:
            return None
        if self._is_expired(entry):
            logger.debug(f"Cache entry expired for '{normalized_title}'")
            return None
        return entry

    async def put(self, normalized_title: str, scores: ScorePair) -> CacheEntry:
        """Write a fresh entry, overwriting any previous one."""
        entry = CacheEntry(scores=scores, created_at=self.clock())
        await self.store.set(self._key(normalized_title), entry.to_record())
        return entry

    async def purge_expired(self) -> int:
        """
        Delete expired or unreadable entries.

        Returns:
            Count of entries deleted
        """
        removed = 0
        for key in await self.store.keys(self.prefix):
            entry = self._decode(key, await self.store.get(key))
            if entry is None or self._is_expired(entry):
                await self.store.delete(key)
                removed += 1
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    async def clear(self) -> int:
        keys = await self.store.keys(self.prefix)
        for key in keys:
            await self.store.delete(key)
        return len(keys)

    async def stats(self) -> dict:
        total = 0
        expired = 0
        empty = 0
        for key in await self.store.keys(self.prefix):
            entry = self._decode(key, await self.store.get(key))
            total += 1
            if entry is None or self._is_expired(entry):
                expired += 1
            elif entry.scores.is_empty:
                empty += 1
        return {
            'entries': total,
            'expired': expired,
            'not_found': empty,
            'ttl_days': self.ttl_seconds / 86400,
        }


def default_cache() -> ScoreCache:
    """Score cache persisted in the configured SQLite database."""
    return ScoreCache(SqliteKeyValueStore())
