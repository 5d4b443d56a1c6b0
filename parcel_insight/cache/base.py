"""Shared protocol, key builder and memoizing helper for cache backends."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, TypeVar

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 5 * 60
AMENITIES_TTL_SECONDS = 10 * 60
INFRASTRUCTURE_TTL_SECONDS = 30 * 60
MARKET_PRICES_TTL_SECONDS = 60 * 60
GEOCODING_TTL_SECONDS = 24 * 60 * 60


class Cache(Protocol):
    """Protocol for TTL key/value stores used by the pipeline."""

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (backend default when None)."""

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if missing or expired."""

    def has(self, key: str) -> bool:
        """Return True if ``key`` holds a live entry."""

    def delete(self, key: str) -> None:
        """Remove ``key`` without raising if it is absent."""

    def clear(self) -> None:
        """Drop every entry."""

    def cleanup(self) -> int:
        """Evict expired entries and return how many were removed."""

    def size(self) -> int:
        """Number of stored entries (expired ones may still be counted)."""

    def keys(self) -> list[str]:
        """Snapshot of stored keys."""

    def start(self) -> None:
        """Begin any background maintenance."""

    def stop(self) -> None:
        """Stop background maintenance."""


def _encode_value(value: Any) -> str:
    """Render a parameter value deterministically; collections are sorted."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_encode_value(v) for v in value))
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return str(value)


def build_cache_key(data_type: str, params: Mapping[str, Any]) -> str:
    """
    Build ``"<data_type>:k1=v1|k2=v2"`` with keys sorted.

    Identical parameter sets always produce the same key regardless of
    insertion order, and list values are order-insensitive.
    """
    parts: Iterable[str] = (f"{k}={_encode_value(params[k])}" for k in sorted(params))
    return f"{data_type}:{'|'.join(parts)}"


def cached(
    key_fn: Callable[..., str],
    inner_fn: Callable[..., T],
    ttl: Optional[float],
    cache: Cache,
) -> Callable[..., T]:
    """
    Wrap ``inner_fn`` so results are read from and written to ``cache``.

    ``key_fn`` receives the same arguments as ``inner_fn``. ``None`` results
    are passed through without being stored.
    """

    def wrapper(*args: Any, **kwargs: Any) -> T:
        key = key_fn(*args, **kwargs)
        hit = cache.get(key)
        if hit is not None:
            return hit
        value = inner_fn(*args, **kwargs)
        if value is not None:
            cache.set(key, value, ttl)
        return value

    wrapper.__name__ = f"cached_{getattr(inner_fn, '__name__', 'call')}"
    wrapper.__wrapped__ = inner_fn  # type: ignore[attr-defined]
    return wrapper
