"""Redis-backed cache so several service instances can share warmed entries."""

from __future__ import annotations

import math
import pickle
from typing import Any, Optional

from parcel_insight.cache.base import DEFAULT_TTL_SECONDS, Cache

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/redis_cache")


class RedisCache(Cache):
    """Cache backed by Redis ``SETEX``; values are pickled, expiry is native."""

    def __init__(self, client, default_ttl: float = DEFAULT_TTL_SECONDS, prefix: str = "parcel:") -> None:
        """Initialize with an existing redis client and key prefix."""
        self.client = client
        self.default_ttl = default_ttl
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisCache":
        """Connect via ``redis.Redis.from_url``."""
        import redis

        return cls(redis.Redis.from_url(url), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        seconds = max(1, int(math.ceil(self.default_ttl if ttl is None else ttl)))
        try:
            self.client.setex(self._key(key), seconds, pickle.dumps(value))
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to write cache entry to Redis: %s", exc, extra={"key": key})

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to read cache entry from Redis: %s", exc, extra={"key": key})
            return None
        if not raw:
            return None
        try:
            return pickle.loads(raw)
        except (pickle.UnpicklingError, AttributeError, EOFError, ImportError, TypeError) as exc:
            logger.warning("Dropping unreadable cache entry: %s", exc, extra={"key": key})
            self.delete(key)
            return None

    def has(self, key: str) -> bool:
        try:
            return bool(self.client.exists(self._key(key)))
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to check cache key in Redis: %s", exc, extra={"key": key})
            return False

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to delete cache entry from Redis: %s", exc, extra={"key": key})

    def _scan(self) -> list[str]:
        keys = []
        for raw in self.client.scan_iter(f"{self.prefix}*"):
            name = raw.decode() if isinstance(raw, bytes) else raw
            keys.append(name[len(self.prefix):])
        return keys

    def clear(self) -> None:
        """Best-effort clear for all entries under the configured prefix."""
        try:
            for key in self._scan():
                self.client.delete(self._key(key))
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to clear cache entries from Redis: %s", exc)

    def cleanup(self) -> int:
        """Redis expires keys itself; nothing to sweep."""
        return 0

    def size(self) -> int:
        return len(self.keys())

    def keys(self) -> list[str]:
        try:
            return self._scan()
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to list cache keys from Redis: %s", exc)
            return []

    def start(self) -> None:
        return None

    def stop(self) -> None:
        try:
            self.client.close()
        except Exception as exc:  # pragma: no cover
            logger.warning("Failed to close Redis client: %s", exc)
