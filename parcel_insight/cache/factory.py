"""Pick a cache backend at startup."""

from __future__ import annotations

from parcel_insight import config
from parcel_insight.cache.base import Cache
from parcel_insight.cache.memory import InMemoryCache
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="cache/factory")


def build_cache(settings: config.Settings | None = None) -> Cache:
    """Instantiate the configured cache backend."""
    settings = settings or config.settings
    backend = settings.cache_backend

    if backend == "memory":
        logger.info("Using in-memory cache")
        return InMemoryCache(
            default_ttl=settings.cache_default_ttl_seconds,
            sweep_interval=settings.cache_sweep_interval_seconds,
        )

    if backend == "redis":
        from .redis import RedisCache

        if not settings.cache_redis_url:
            raise ValueError("cache_redis_url must be set for the Redis cache backend")
        logger.info("Using Redis cache", extra={"redis_url": mask_url(settings.cache_redis_url)})
        return RedisCache.from_url(
            settings.cache_redis_url,
            default_ttl=settings.cache_default_ttl_seconds,
            prefix=settings.cache_key_prefix,
        )

    raise ValueError(f"Unknown cache backend '{backend}'")
