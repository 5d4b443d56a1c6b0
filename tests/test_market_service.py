import random
import unittest
from datetime import datetime, timedelta, timezone

from parcel_insight.cache.memory import InMemoryCache
from parcel_insight.data_sources.base import CallableListingSource, RawListing
from parcel_insight.domain import LatLng, PriceTrend
from parcel_insight.errors import ExternalSourceError
from parcel_insight.market_service import (
    MarketPriceEstimator,
    calculate_base_price_for_location,
    filter_listings_by_distance,
    is_industrial_zone,
    market_cache_key,
)

HCMC_D1 = LatLng(lat=10.7769, lng=106.7009)


def _raw_listings(source, count):
    return [
        RawListing(source=source, listing_id=f"{source}-{i}", price=f"{2 + i % 5} tỷ", area=f"{60 + i} m²")
        for i in range(count)
    ]


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 10, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _source(name, fetch, source_type="real_estate_portal"):
    return CallableListingSource(name=name, source_type=source_type, fetch=fetch)


class TestMarketPriceEstimator(unittest.TestCase):
    def setUp(self):
        self.cache = InMemoryCache(default_ttl=3600)
        self.clock = Clock()
        self.fetch_calls = []

    def _estimator(self, sources):
        return MarketPriceEstimator(sources, self.cache, rng=random.Random(42), now=self.clock)

    def _counting(self, name, count):
        def fetch(lat, lng, radius):
            self.fetch_calls.append(name)
            return _raw_listings(name, count)
        return fetch

    def test_listings_produce_consistent_snapshot(self):
        estimator = self._estimator([_source("A", self._counting("A", 4)), _source("B", self._counting("B", 3))])
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.listing_count, 7)
        self.assertTrue(snapshot.min_price <= snapshot.median_price <= snapshot.max_price)
        self.assertTrue(snapshot.min_price <= snapshot.avg_price <= snapshot.max_price)
        self.assertEqual([(s.name, s.listing_count) for s in snapshot.sources], [("A", 4), ("B", 3)])
        self.assertEqual(len(snapshot.listings), 7)
        self.assertEqual(len(snapshot.price_history), 12)
        self.assertIsNotNone(snapshot.trend_analysis)
        self.assertEqual(snapshot.last_updated, self.clock.now)

    def test_tight_radius_keeps_ten_listings(self):
        estimator = self._estimator([_source("A", self._counting("A", 25))])
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.listing_count, 10)

    def test_failing_source_is_isolated(self):
        def broken(lat, lng, radius):
            raise ExternalSourceError("B", "blocked with HTTP 403", 403)

        estimator = self._estimator([_source("A", self._counting("A", 3)), _source("B", broken)])
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.listing_count, 3)
        self.assertEqual([s.name for s in snapshot.sources], ["A"])

    def test_malformed_listing_only_drops_that_row(self):
        def fetch(lat, lng, radius):
            good = [RawListing(source="A", listing_id=f"a-{i}", price="3 tỷ", area="100 m2") for i in range(5)]
            return good + [RawListing(source="A", listing_id="tiny", price=1e-10, area="100 m2")]

        snapshot = self._estimator([_source("A", fetch)]).estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.listing_count, 5)
        self.assertEqual(snapshot.avg_price, 3_000_000_000)
        self.assertEqual([(s.name, s.type, s.listing_count) for s in snapshot.sources], [("A", "real_estate_portal", 5)])

    def test_source_counts_match_kept_listings(self):
        estimator = self._estimator([_source("A", self._counting("A", 8)), _source("B", self._counting("B", 8))])
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.listing_count, 10)
        self.assertEqual([(s.name, s.listing_count) for s in snapshot.sources], [("A", 8), ("B", 2)])

        only_first = self._estimator([_source("C", self._counting("C", 12)), _source("D", self._counting("D", 3))])
        snapshot = only_first.estimate_prices(LatLng(lat=21.0285, lng=105.8542), 1000)
        self.assertEqual([(s.name, s.listing_count) for s in snapshot.sources], [("C", 10)])

    def test_no_listings_falls_back_to_statistical_estimate(self):
        estimator = self._estimator([_source("A", lambda lat, lng, radius: [])])
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertTrue(20 <= snapshot.listing_count <= 59)
        self.assertEqual(snapshot.listings, [])
        self.assertEqual(snapshot.sources[0].type, "estimated")
        self.assertTrue(snapshot.min_price <= snapshot.avg_price <= snapshot.max_price)
        self.assertEqual(len(snapshot.price_history), 12)

    def test_statistical_failure_uses_floor_snapshot(self):
        estimator = self._estimator([])

        def broken(center, radius):
            raise RuntimeError("rng exploded")

        estimator.statistical_snapshot = broken
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.listing_count, 0)
        self.assertEqual(snapshot.sources[0].type, "minimal_fallback")
        self.assertEqual(snapshot.trend, PriceTrend.STABLE)
        self.assertTrue(snapshot.min_price <= snapshot.avg_price <= snapshot.max_price)

    def test_never_raises(self):
        estimator = self._estimator([])

        def broken(center, radius):
            raise RuntimeError("unexpected")

        estimator.collect_listings = broken
        snapshot = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(snapshot.sources[0].type, "estimated_fallback")
        self.assertGreater(snapshot.avg_price, 0)

    def test_cached_snapshot_is_reused_with_fresh_timestamp(self):
        estimator = self._estimator([_source("A", self._counting("A", 3))])
        first = estimator.estimate_prices(HCMC_D1, 1000)
        self.clock.now += timedelta(minutes=5)
        second = estimator.estimate_prices(HCMC_D1, 1000)
        self.assertEqual(self.fetch_calls, ["A"])
        self.assertEqual(second.avg_price, first.avg_price)
        self.assertEqual(second.last_updated, self.clock.now)
        self.assertTrue(self.cache.has(market_cache_key(HCMC_D1, 1000)))

    def test_floor_snapshot_uses_reference_lot(self):
        snapshot = self._estimator([]).floor_snapshot(HCMC_D1)
        self.assertLessEqual(abs(snapshot.avg_price - snapshot.price_per_sqm * 100), 50)
        self.assertEqual(snapshot.min_price, round(snapshot.avg_price * 0.8))


class TestLocationPricing(unittest.TestCase):
    def test_base_price_bands(self):
        rng = random.Random(3)
        self.assertTrue(15e6 <= calculate_base_price_for_location(10.8231, 106.6297, rng) <= 25e6)
        self.assertTrue(12e6 <= calculate_base_price_for_location(21.0285, 105.8542, rng) <= 20e6)
        self.assertTrue(3e6 <= calculate_base_price_for_location(10.9456, 106.8448, rng) <= 8e6)
        self.assertTrue(2e6 <= calculate_base_price_for_location(12.0, 108.0, rng) <= 6e6)

    def test_industrial_zone_lookup(self):
        self.assertTrue(is_industrial_zone(10.9456, 106.8448))
        self.assertFalse(is_industrial_zone(16.0544, 108.2022))

    def test_filter_by_search_radius(self):
        items = list(range(30))
        self.assertEqual(len(filter_listings_by_distance(items, 1000)), 10)
        self.assertEqual(len(filter_listings_by_distance(items, 10000)), 20)
        self.assertEqual(len(filter_listings_by_distance(items, 20000)), 30)


if __name__ == "__main__":
    unittest.main()
