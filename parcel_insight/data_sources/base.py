"""Interfaces and helpers for POI and listing data sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol


class PlacesSource(Protocol):
    """Anything that can answer an Overpass QL query with a JSON document."""

    def query(self, query: str) -> dict:
        """Return the decoded response (``{"elements": [...]}``)."""
        ...


@dataclass
class RawListing:
    """Listing fields as scraped, before price/area normalization."""
    source: str
    listing_id: Optional[str] = None
    price: Any = None
    area: Any = None
    address: Optional[str] = None
    url: Optional[str] = None
    posted_at: Any = None
    extra: dict = field(default_factory=dict)


class ListingSource(Protocol):
    """Interface for market listing providers."""

    name: str
    source_type: str

    def fetch_listings(self, lat: float, lng: float, radius: int) -> List[RawListing]:
        """Return raw listings near the point; raise ExternalSourceError on failure."""
        ...


@dataclass
class CallableListingSource(ListingSource):
    """Wrap a callable so ad-hoc or test providers can be plugged in."""

    name: str
    source_type: str
    fetch: Callable[[float, float, int], List[RawListing]]

    def fetch_listings(self, lat: float, lng: float, radius: int) -> List[RawListing]:
        """Delegate to the configured callable."""
        return self.fetch(lat, lng, radius)
