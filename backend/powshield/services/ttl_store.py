"""
Key/value storage with expiry.

Backs challenge records and used-nonce markers. Values are strings; callers
serialize structured records themselves so both backends behave identically.
"""

import math
import threading
import time
from abc import ABC, abstractmethod

import redis
import structlog

from powshield.config import Settings

logger = structlog.get_logger()


class TTLStore(ABC):
    @abstractmethod
    def put(self, key: str, value: str, ttl: float) -> None: ...

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def put_if_absent(self, key: str, value: str, ttl: float) -> bool:
        """Atomically insert key unless a live entry exists. Returns True if inserted."""

    @abstractmethod
    def sweep(self, now: float | None = None) -> int:
        """Evict expired entries. Returns count evicted."""


class MemoryTTLStore(TTLStore):
    """In-process store. A single lock makes every operation atomic."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> tuple[str, float] | None:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._entries[key]
            return None
        return entry

    def put(self, key: str, value: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key, self._clock()) is not None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def put_if_absent(self, key: str, value: str, ttl: float) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return False
            self._entries[key] = (value, now + ttl)
            return True

    def sweep(self, now: float | None = None) -> int:
        """Scan a snapshot outside the lock, then delete expired keys one at a time."""
        now = self._clock() if now is None else now
        with self._lock:
            snapshot = list(self._entries.items())

        expired = [(key, entry) for key, entry in snapshot if entry[1] <= now]
        evicted = 0
        for key, entry in expired:
            with self._lock:
                # Skip keys rewritten since the snapshot
                if self._entries.get(key) is entry:
                    del self._entries[key]
                    evicted += 1
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisTTLStore(TTLStore):
    """Shared store for multi-process deployments. Redis handles expiry itself."""

    def __init__(self, client: redis.Redis, prefix: str = "powshield:"):
        self._redis = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    @staticmethod
    def _seconds(ttl: float) -> int:
        return max(1, math.ceil(ttl))

    def put(self, key: str, value: str, ttl: float) -> None:
        self._redis.set(self._key(key), value, ex=self._seconds(ttl))

    def get(self, key: str) -> str | None:
        value = self._redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode()
        return value

    def exists(self, key: str) -> bool:
        return bool(self._redis.exists(self._key(key)))

    def delete(self, key: str) -> bool:
        return bool(self._redis.delete(self._key(key)))

    def put_if_absent(self, key: str, value: str, ttl: float) -> bool:
        # SET NX EX is a single atomic command
        return bool(self._redis.set(self._key(key), value, nx=True, ex=self._seconds(ttl)))

    def sweep(self, now: float | None = None) -> int:
        return 0


def build_store(settings: Settings) -> TTLStore:
    """Create the TTL store selected by settings."""
    if settings.store_backend == "redis":
        logger.info("ttl_store_selected", backend="redis")
        return RedisTTLStore(redis.Redis.from_url(settings.redis_url, decode_responses=True))
    logger.info("ttl_store_selected", backend="memory")
    return MemoryTTLStore()
