"""FastAPI application setup and service wiring for parcel-insight."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import FastAPI

from . import config
from .amenity_service import AmenityFetcher
from .api import router as api_router
from .cache import Cache, build_cache
from .data_sources import build_listing_sources, build_places_source
from .market_service import MarketPriceEstimator
from .narration import SummaryWriter
from .ollama_client import OllamaClient
from .pipeline import PropertyAnalysisPipeline
from .prefetch import PrefetchScheduler
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="main")


@dataclass
class Services:
    """Long-lived collaborators shared by every request."""
    cache: Cache
    pipeline: PropertyAnalysisPipeline
    prefetcher: Optional[PrefetchScheduler] = None

    def start(self) -> None:
        self.cache.start()
        if self.prefetcher is not None:
            self.prefetcher.start()

    def stop(self) -> None:
        if self.prefetcher is not None:
            self.prefetcher.stop()
        self.cache.stop()


def build_services(settings: config.Settings | None = None) -> Services:
    """Wire cache, sources, fetcher, estimator, scheduler and pipeline from settings."""
    settings = settings or config.settings
    cache = build_cache(settings)
    fetcher = AmenityFetcher(
        build_places_source(settings),
        cache,
        amenities_ttl=settings.amenities_ttl_seconds,
        infrastructure_ttl=settings.infrastructure_ttl_seconds,
        query_timeout=settings.overpass_query_timeout,
    )
    estimator = MarketPriceEstimator(build_listing_sources(settings), cache, ttl=settings.market_prices_ttl_seconds)
    prefetcher = (
        PrefetchScheduler.from_settings(fetcher, estimator, cache, settings) if settings.prefetch_enabled else None
    )
    writer = SummaryWriter(OllamaClient.from_settings(settings) if settings.narration_enabled else None)
    pipeline = PropertyAnalysisPipeline(
        fetcher, estimator, writer, prefetcher, max_workers=settings.pipeline_workers
    )
    logger.info(
        "Services built",
        extra={
            "cache_backend": settings.cache_backend,
            "prefetch": settings.prefetch_enabled,
            "narration": settings.narration_enabled,
        },
    )
    return Services(cache=cache, pipeline=pipeline, prefetcher=prefetcher)


def create_app(build: Callable[[], Services] = build_services) -> FastAPI:
    """Create the app; ``build`` is called once at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = build()
        services.start()
        app.state.services = services
        try:
            yield
        finally:
            services.stop()
            app.state.services = None

    application = FastAPI(title="Parcel Insight", lifespan=lifespan)
    application.include_router(api_router, prefix="/v1")
    return application


app = create_app()
