"""Factory helpers for choosing POI and listing sources at startup."""

from __future__ import annotations

from typing import List

from parcel_insight import config
from parcel_insight.data_sources.base import ListingSource, PlacesSource
from parcel_insight.data_sources.listing_sources import BatdongsanSource, ChototSource
from parcel_insight.data_sources.overpass_client import OverpassClient
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="data_sources/factory")


LISTING_SOURCES = {
    "batdongsan": BatdongsanSource,
    "chotot": ChototSource,
}


def build_places_source(settings: config.Settings | None = None) -> PlacesSource:
    """Instantiate the Overpass client used for amenities and infrastructure."""
    settings = settings or config.settings
    logger.info("Using Overpass places source", extra={"url": mask_url(settings.overpass_url)})
    return OverpassClient.from_settings(settings)


def build_listing_sources(settings: config.Settings | None = None) -> List[ListingSource]:
    """Instantiate every configured listing source, in configuration order."""
    settings = settings or config.settings
    sources: List[ListingSource] = []
    for name in settings.listing_sources:
        key = str(name).strip().lower()
        if key not in LISTING_SOURCES:
            raise ValueError(f"Unknown listing source '{name}'")
        sources.append(
            LISTING_SOURCES[key](timeout=settings.listing_timeout_seconds, attempts=settings.listing_attempts)
        )
    logger.info("Using listing sources", extra={"sources": [s.name for s in sources]})
    return sources
