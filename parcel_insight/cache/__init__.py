"""TTL cache backends and key helpers."""

from .base import (
    AMENITIES_TTL_SECONDS,
    DEFAULT_TTL_SECONDS,
    GEOCODING_TTL_SECONDS,
    INFRASTRUCTURE_TTL_SECONDS,
    MARKET_PRICES_TTL_SECONDS,
    Cache,
    build_cache_key,
    cached,
)
from .factory import build_cache
from .memory import InMemoryCache
from .redis import RedisCache

__all__ = [
    "AMENITIES_TTL_SECONDS",
    "DEFAULT_TTL_SECONDS",
    "GEOCODING_TTL_SECONDS",
    "INFRASTRUCTURE_TTL_SECONDS",
    "MARKET_PRICES_TTL_SECONDS",
    "Cache",
    "InMemoryCache",
    "RedisCache",
    "build_cache",
    "build_cache_key",
    "cached",
]
