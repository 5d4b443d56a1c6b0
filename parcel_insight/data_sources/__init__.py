"""Data source factories for POI queries and market listings."""

from .base import CallableListingSource, ListingSource, PlacesSource, RawListing
from .factory import build_listing_sources, build_places_source
from .listing_sources import BatdongsanSource, ChototSource, normalize_listing
from .overpass_client import OverpassClient

__all__ = [
    "build_listing_sources",
    "build_places_source",
    "BatdongsanSource",
    "CallableListingSource",
    "ChototSource",
    "ListingSource",
    "OverpassClient",
    "PlacesSource",
    "RawListing",
    "normalize_listing",
]
