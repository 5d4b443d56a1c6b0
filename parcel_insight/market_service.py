"""Market price estimation with multi-source scraping and layered fallbacks.

Order of preference:

1. listings scraped from every configured source (each isolated);
2. a statistical estimate from a location-keyed base price;
3. a floor snapshot derived from the base price alone.

:meth:`MarketPriceEstimator.estimate_prices` never raises.
"""

from __future__ import annotations

import random
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .cache import MARKET_PRICES_TTL_SECONDS, Cache, build_cache_key
from .concurrency import gather_isolated
from .data_sources.base import ListingSource, RawListing
from .data_sources.listing_sources import normalize_listing
from .domain import LatLng, MarketPriceSnapshot, PriceListing, PriceTrend, SourceSummary
from .market_stats import analyze_price_trends, determine_trend, generate_price_history, summarize_prices
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="market_service")

MAX_SAMPLE_LISTINGS = 20
FLOOR_REFERENCE_AREA_SQM = 100
DEFAULT_BASE_PRICE_PER_SQM = 4_000_000

HCMC_CENTER = (10.8231, 106.6297)
HANOI_CENTER = (21.0285, 105.8542)

# (lat, lng, radius in degrees)
INDUSTRIAL_ZONES = (
    (10.9041, 106.6523, 0.3),   # Thu Dau Mot
    (10.8963, 106.6314, 0.2),   # Di An
    (10.8606, 106.7701, 0.25),  # Binh Duong south
    (10.9456, 106.8448, 0.3),   # Bien Hoa
    (10.7663, 106.7010, 0.25),  # Long Thanh corridor
    (11.0447, 106.6531, 0.25),  # Chon Thanh
    (11.2945, 106.1334, 0.25),  # Trang Bang
)

ESTIMATE_SOURCE_NAME = "Market estimate"


def market_cache_key(center: LatLng, radius: int) -> str:
    return build_cache_key(
        "market_prices", {"lat": round(center.lat, 4), "lng": round(center.lng, 4), "radius": int(radius)}
    )


def _degree_distance(lat: float, lng: float, point: tuple[float, float]) -> float:
    return ((lat - point[0]) ** 2 + (lng - point[1]) ** 2) ** 0.5


def recount_sources(summaries: Sequence[SourceSummary], listings: Sequence[PriceListing]) -> List[SourceSummary]:
    """Per-source counts for the listings actually kept; sources left with none are dropped."""
    counts = Counter(listing.source for listing in listings)
    return [s.model_copy(update={"listing_count": counts[s.name]}) for s in summaries if counts[s.name]]


def is_industrial_zone(lat: float, lng: float) -> bool:
    return any(_degree_distance(lat, lng, (z_lat, z_lng)) <= radius for z_lat, z_lng, radius in INDUSTRIAL_ZONES)


def calculate_base_price_for_location(lat: float, lng: float, rng: Optional[random.Random] = None) -> float:
    """Base price in VND/m², piecewise by distance to metro centres and industrial zones."""
    rng = rng or random.Random()
    to_hcmc = _degree_distance(lat, lng, HCMC_CENTER)
    to_hanoi = _degree_distance(lat, lng, HANOI_CENTER)
    if to_hcmc < 0.05:
        return rng.uniform(15e6, 25e6)
    if to_hcmc < 0.15:
        return rng.uniform(8e6, 15e6)
    if to_hanoi < 0.05:
        return rng.uniform(12e6, 20e6)
    if to_hanoi < 0.15:
        return rng.uniform(6e6, 12e6)
    if is_industrial_zone(lat, lng):
        return rng.uniform(3e6, 8e6)
    return rng.uniform(2e6, 6e6)


def filter_listings_by_distance(listings: Sequence[PriceListing], radius: int) -> List[PriceListing]:
    """Keep fewer listings for tighter searches: <5 km → 10, <15 km → 20, else all."""
    if radius < 5000:
        return list(listings[:10])
    if radius < 15000:
        return list(listings[:20])
    return list(listings)


class MarketPriceEstimator:
    """Aggregate listing sources into a MarketPriceSnapshot, caching per location."""

    def __init__(
        self,
        sources: Sequence[ListingSource],
        cache: Cache,
        *,
        ttl: float = MARKET_PRICES_TTL_SECONDS,
        rng: Optional[random.Random] = None,
        max_workers: int = 4,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.sources = list(sources)
        self.cache = cache
        self.ttl = ttl
        self.rng = rng or random.Random()
        self.max_workers = max_workers
        self._now = now

    def estimate_prices(self, center: LatLng, radius: int) -> MarketPriceSnapshot:
        """Return a snapshot for the area; degrades to estimates instead of raising."""
        try:
            key = market_cache_key(center, radius)
            hit = self.cache.get(key)
            if hit is not None:
                logger.debug("Market cache hit", extra={"key": key})
                return hit.model_copy(update={"last_updated": self._now()})
            snapshot = self._estimate(center, radius)
            self.cache.set(key, snapshot, self.ttl)
            return snapshot
        except Exception:
            logger.exception("Market estimation failed; returning floor snapshot")
            return self.floor_snapshot(center, source_type="estimated_fallback")

    # -- stages ------------------------------------------------------------

    def collect_listings(self, center: LatLng, radius: int) -> tuple[List[PriceListing], List[SourceSummary]]:
        """Fetch all sources concurrently; a failing source contributes nothing."""

        def _on_failure(name: str, exc: Exception) -> List[RawListing]:
            logger.warning("Listing source failed", extra={"source": name, "error": str(exc)})
            return []

        raw_by_source = gather_isolated(
            {src.name: (lambda s=src: s.fetch_listings(center.lat, center.lng, radius)) for src in self.sources},
            _on_failure,
            max_workers=self.max_workers,
        )
        listings: List[PriceListing] = []
        summaries: List[SourceSummary] = []
        for src in self.sources:
            normalized = []
            for idx, raw in enumerate(raw_by_source.get(src.name, [])):
                listing = normalize_listing(raw, idx)
                if listing is None:
                    continue
                if listing.source != src.name:
                    listing = listing.model_copy(update={"source": src.name})
                normalized.append(listing)
            if normalized:
                summaries.append(SourceSummary(name=src.name, type=src.source_type, listing_count=len(normalized)))
            listings.extend(normalized)
        return listings, summaries

    def _estimate(self, center: LatLng, radius: int) -> MarketPriceSnapshot:
        listings, summaries = self.collect_listings(center, radius)
        listings = filter_listings_by_distance(listings, radius)
        summaries = recount_sources(summaries, listings)
        if listings:
            base = calculate_base_price_for_location(center.lat, center.lng, self.rng)
            snapshot = self._snapshot_from_listings(listings, summaries, base, include_sample=True)
            logger.info("Market prices from listings", extra={"listing_count": snapshot.listing_count})
        else:
            try:
                snapshot = self.statistical_snapshot(center, radius)
                logger.info("Market prices from statistical estimate", extra={"listing_count": snapshot.listing_count})
            except Exception:
                logger.exception("Statistical estimate failed; using floor snapshot")
                return self.floor_snapshot(center)
        return self._with_history(snapshot)

    def _snapshot_from_listings(
        self,
        listings: Sequence[PriceListing],
        summaries: List[SourceSummary],
        base_per_sqm: float,
        *,
        include_sample: bool,
    ) -> MarketPriceSnapshot:
        stats = summarize_prices(listings)
        return MarketPriceSnapshot(
            **stats,
            trend=determine_trend(stats["price_per_sqm"], base_per_sqm),
            sources=summaries,
            listings=list(listings[:MAX_SAMPLE_LISTINGS]) if include_sample else [],
            last_updated=self._now(),
        )

    def statistical_snapshot(self, center: LatLng, radius: int) -> MarketPriceSnapshot:
        """Synthetic listing set around the location's base price."""
        base = calculate_base_price_for_location(center.lat, center.lng, self.rng)
        variation = min(0.8, 0.2 + 0.05 * (radius / 1000))
        count = self.rng.randint(20, 59)
        synthetic: List[PriceListing] = []
        for i in range(count):
            area = self.rng.uniform(50, 500) if self.rng.random() < 0.7 else self.rng.uniform(500, 2000)
            per_sqm = base * (1 + (self.rng.random() * 2 - 1) * variation)
            synthetic.append(
                PriceListing(
                    id=f"estimate-{i}",
                    price=max(1, int(round(per_sqm * area))),
                    price_per_sqm=int(round(per_sqm)),
                    area=max(1, int(round(area))),
                    address="Regional estimate",
                    source=ESTIMATE_SOURCE_NAME,
                )
            )
        summaries = [SourceSummary(name=ESTIMATE_SOURCE_NAME, type="estimated", listing_count=count)]
        return self._snapshot_from_listings(synthetic, summaries, base, include_sample=False)

    def floor_snapshot(self, center: LatLng, *, source_type: str = "minimal_fallback") -> MarketPriceSnapshot:
        """Minimal valid snapshot from the base price alone (reference 100 m² lot)."""
        try:
            base = calculate_base_price_for_location(center.lat, center.lng, self.rng)
        except Exception:
            logger.exception("Base price lookup failed; using default")
            base = DEFAULT_BASE_PRICE_PER_SQM
        avg = int(round(base * FLOOR_REFERENCE_AREA_SQM))
        return MarketPriceSnapshot(
            min_price=int(round(avg * 0.8)),
            avg_price=avg,
            max_price=int(round(avg * 1.2)),
            median_price=avg,
            listing_count=0,
            price_per_sqm=int(round(base)),
            trend=PriceTrend.STABLE,
            sources=[SourceSummary(name=ESTIMATE_SOURCE_NAME, type=source_type, listing_count=0)],
            last_updated=self._now(),
        )

    def _with_history(self, snapshot: MarketPriceSnapshot) -> MarketPriceSnapshot:
        history = generate_price_history(
            snapshot.avg_price, snapshot.price_per_sqm, snapshot.listing_count, rng=self.rng, now=self._now()
        )
        return snapshot.model_copy(update={"price_history": history, "trend_analysis": analyze_price_trends(history)})
