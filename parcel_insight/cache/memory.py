"""In-memory TTL cache with a background sweep thread."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

from parcel_insight.cache.base import DEFAULT_TTL_SECONDS, Cache

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/in_memory_cache")


class InMemoryCache(Cache):
    """Thread-safe, TTL-aware process-local cache."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize with a default TTL, sweep interval (seconds) and clock."""
        logger.debug("Initializing InMemoryCache")
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, tuple[Any, float, float]] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def _expired(self, created_at: float, ttl: float) -> bool:
        """Return True once ``ttl`` seconds have elapsed since ``created_at``."""
        return self._clock() - created_at >= ttl

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock(), self.default_ttl if ttl is None else ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the value or None, evicting the entry if it has expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, created_at, ttl = entry
            if self._expired(created_at, ttl):
                self._entries.pop(key, None)
                return None
            return value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Evict every expired entry; returns the number removed."""
        with self._lock:
            stale = [k for k, (_, created_at, ttl) in self._entries.items() if self._expired(created_at, ttl)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Evicted expired cache entries", extra={"removed": len(stale)})
        return len(stale)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            try:
                self.cleanup()
            except Exception:  # pragma: no cover - keep the sweeper alive
                logger.exception("Cache sweep failed")

    def start(self) -> None:
        """Start the periodic sweep thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="cache-sweeper", daemon=True)
        self._sweeper.start()
        logger.info("Cache sweeper started", extra={"interval_s": self.sweep_interval})

    def stop(self) -> None:
        """Stop the sweep thread and wait briefly for it to exit."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
            logger.info("Cache sweeper stopped")

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()
