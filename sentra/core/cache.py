from __future__ import annotations

import base64
import json
import logging
import pickle
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, TypeVar

import redis

from sentra.core.config import get_settings
from sentra.metrics import observe_cache_lookup

T = TypeVar("T")

logger = logging.getLogger("sentra.cache")


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


def build_key(*parts: Any) -> str:
    return ":".join(str(part) for part in parts)


def fingerprint(query: dict[str, Any]) -> str:
    raw = json.dumps(query, sort_keys=True, default=str).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


class MemoryStore:
    """Bounded per-process store. Expired entries are swept on every write."""

    def __init__(self, max_size: int = 2000, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _CacheEntry] = {}
        self._generations: dict[str, int] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            expired = [name for name, entry in self._entries.items() if entry.expires_at <= now]
            for name in expired:
                del self._entries[name]
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                # Insertion order, so this drops the oldest write.
                del self._entries[next(iter(self._entries))]
            self._entries[key] = _CacheEntry(value=value, expires_at=now + ttl_seconds)

    def generation(self, namespace: str) -> int:
        with self._lock:
            return self._generations.get(namespace, 0)

    def bump(self, namespace: str) -> None:
        prefix = build_key(namespace, "")
        with self._lock:
            self._generations[namespace] = self._generations.get(namespace, 0) + 1
            stale = [key for key in self._entries if key.startswith(prefix)]
            for key in stale:
                del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisStore:
    """Shared store so an invalidation in one worker is seen by all of them.

    Generations live under ``{prefix}gen:{namespace}`` and never expire; values
    are pickled and stored with ``SETEX``.
    """

    def __init__(self, client: Any, *, prefix: str = "sentra:cache:") -> None:
        self._client = client
        self._prefix = prefix

    def get(self, key: str) -> Any | None:
        raw = self._client.get(self._prefix + key)
        return None if raw is None else pickle.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._client.setex(self._prefix + key, ttl_seconds, pickle.dumps(value))

    def generation(self, namespace: str) -> int:
        raw = self._client.get(f"{self._prefix}gen:{namespace}")
        return int(raw) if raw is not None else 0

    def bump(self, namespace: str) -> None:
        self._client.incr(f"{self._prefix}gen:{namespace}")


class ReadCache:
    """TTL cache for list/detail reads, keyed ``{org}:{entity}:{generation}:{fingerprint}``.

    Mutating service calls bump the ``{org}:{entity}`` generation before they
    return, so a read issued after a write never sees the old rows, and a load
    that started before the write is stored under a generation nobody reads.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        *,
        enabled: bool = True,
        store: MemoryStore | RedisStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self.store = store if store is not None else MemoryStore(clock=clock)

    def get(self, key: str) -> Any | None:
        return self.store.get(key)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self.store.set(key, value, self.ttl_seconds if ttl_seconds is None else ttl_seconds)

    def get_or_load(self, organization_id: Any, entity: str, query: dict[str, Any], loader: Callable[[], T]) -> T:
        if not self.enabled:
            return loader()

        namespace = build_key(organization_id, entity)
        try:
            generation = self.store.generation(namespace)
            key = build_key(namespace, generation, fingerprint(query))
            cached = self.get(key)
        except redis.RedisError as exc:
            logger.warning("cache.read_failed", extra={"entity": entity, "error": str(exc)})
            return loader()

        observe_cache_lookup(entity, cached is not None)
        if cached is not None:
            return cached

        value = loader()
        try:
            if self.store.generation(namespace) == generation:
                self.set(key, value)
        except redis.RedisError as exc:
            logger.warning("cache.write_failed", extra={"entity": entity, "error": str(exc)})
        return value

    def invalidate(self, organization_id: Any, *entities: str) -> None:
        for entity in entities:
            try:
                self.store.bump(build_key(organization_id, entity))
            except redis.RedisError as exc:
                logger.error(
                    "cache.invalidate_failed",
                    extra={"organization_id": str(organization_id), "entity": entity, "error": str(exc)},
                )


@lru_cache
def get_read_cache() -> ReadCache:
    settings = get_settings()
    if settings.redis_url:
        store: MemoryStore | RedisStore = RedisStore(redis.Redis.from_url(settings.redis_url))
    else:
        store = MemoryStore(settings.cache_max_entries)
    return ReadCache(settings.cache_ttl_seconds, enabled=settings.cache_enabled, store=store)
