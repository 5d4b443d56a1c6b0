import random
import unittest
from datetime import datetime, timezone

from parcel_insight.amenity_service import AmenityFetcher
from parcel_insight.cache.memory import InMemoryCache
from parcel_insight.domain import AnalysisRequest, Category, LatLng, Layer, RiskLevel, Severity
from parcel_insight.errors import InvalidGeometry
from parcel_insight.geometry import destination_point
from parcel_insight.market_service import MarketPriceEstimator
from parcel_insight.pipeline import PropertyAnalysisPipeline

PARCEL = [
    [106.7000, 10.8000],
    [106.7002, 10.8000],
    [106.7002, 10.8002],
    [106.7000, 10.8002],
    [106.7000, 10.8000],
]
CENTER = LatLng(lat=10.8001, lng=106.7001)
FIXED_NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _node(node_id, distance_m, bearing=0, **tags):
    p = destination_point(CENTER, bearing, distance_m)
    return {"type": "node", "id": node_id, "lat": p.lat, "lon": p.lng, "tags": tags}


class FakePlaces:
    def __init__(self, responses):
        self.responses = responses
        self.queries = []

    def query(self, query):
        self.queries.append(query)
        for marker, response in self.responses:
            if marker in query:
                return response
        return {"elements": []}


RESPONSES = [
    ("hospital", {"elements": [_node(1, 400, name="Bệnh viện Quận 3", amenity="hospital")]}),
    ('"power"', {"elements": [_node(2, 150, bearing=90, power="substation")]}),
]


class FailingFetcher:
    def fetch_amenities(self, *args, **kwargs):
        raise RuntimeError("amenities down")

    def fetch_infrastructure(self, *args, **kwargs):
        raise RuntimeError("infrastructure down")


class FailingEstimator(MarketPriceEstimator):
    def estimate_prices(self, center, radius):
        raise RuntimeError("market down")


class RecordingPrefetcher:
    def __init__(self):
        self.calls = []

    def notify(self, center, radius, categories, layers):
        self.calls.append((center, radius, list(categories), list(layers)))
        return 9


class TestPropertyAnalysisPipeline(unittest.TestCase):
    def setUp(self):
        self.cache = InMemoryCache(default_ttl=600)
        self.prefetcher = RecordingPrefetcher()
        self.estimator = MarketPriceEstimator([], self.cache, rng=random.Random(7), now=lambda: FIXED_NOW)

    def _pipeline(self, fetcher=None, estimator=None):
        return PropertyAnalysisPipeline(
            fetcher or AmenityFetcher(FakePlaces(RESPONSES), self.cache),
            estimator or self.estimator,
            prefetcher=self.prefetcher,
            max_workers=3,
            now=lambda: FIXED_NOW,
        )

    def test_analysis_end_to_end(self):
        request = AnalysisRequest(
            coordinates=PARCEL,
            radius=1000,
            categories=[Category.HEALTHCARE],
            layers=[Layer.POWER, Layer.METRO],
        )
        result = self._pipeline().analyze(request)

        self.assertTrue(450 <= result.area <= 520, result.area)
        self.assertEqual(result.frontage_count, 4)
        self.assertEqual([a.name for a in result.amenities], ["Bệnh viện Quận 3"])
        self.assertEqual(set(result.infrastructure), {Layer.POWER, Layer.METRO})
        self.assertEqual(len(result.infrastructure[Layer.POWER]), 1)
        self.assertEqual(result.infrastructure[Layer.METRO], [])

        self.assertEqual([r.id for r in result.risks], ["power_close"])
        self.assertEqual(result.risks[0].severity, Severity.HIGH)
        self.assertEqual(result.risk_score, 25)
        self.assertEqual(result.overall_risk_level, RiskLevel.MEDIUM)

        self.assertTrue(0 <= result.ai_analysis.overall <= 100)
        self.assertEqual(result.ai_analysis.scores.risk, 25)
        self.assertTrue(result.ai_analysis.summary)
        self.assertTrue(result.market_data.min_price <= result.market_data.avg_price <= result.market_data.max_price)
        self.assertEqual(result.generated_at, FIXED_NOW)
        self.assertEqual(result.meta["amenity_count"], 1)
        self.assertEqual(result.meta["layers"], ["power", "metro"])

    def test_prefetcher_is_notified_with_parcel_center(self):
        request = AnalysisRequest(coordinates=PARCEL, radius=800, categories=[Category.HEALTHCARE], layers=[Layer.POWER])
        self._pipeline().analyze(request)
        self.assertEqual(len(self.prefetcher.calls), 1)
        center, radius, categories, layers = self.prefetcher.calls[0]
        self.assertAlmostEqual(center.lat, CENTER.lat, places=5)
        self.assertAlmostEqual(center.lng, CENTER.lng, places=5)
        self.assertEqual(radius, 800)
        self.assertEqual(categories, [Category.HEALTHCARE])
        self.assertEqual(layers, [Layer.POWER])

    def test_failed_stages_fall_back(self):
        estimator = FailingEstimator([], self.cache, rng=random.Random(7), now=lambda: FIXED_NOW)
        request = AnalysisRequest(coordinates=PARCEL, layers=[Layer.POWER, Layer.WATER])
        result = self._pipeline(FailingFetcher(), estimator).analyze(request)

        self.assertEqual(result.amenities, [])
        self.assertEqual(result.infrastructure, {Layer.POWER: [], Layer.WATER: []})
        self.assertEqual(result.risks, [])
        self.assertEqual(result.risk_score, 0)
        self.assertEqual(result.market_data.listing_count, 0)
        self.assertEqual(result.market_data.sources[0].type, "estimated_fallback")
        self.assertEqual(len(result.ai_analysis.improvements), 4)

    def test_invalid_geometry_propagates(self):
        request = AnalysisRequest(coordinates=[[106.7, 10.8], [106.7001, 10.8]])
        with self.assertRaises(InvalidGeometry):
            self._pipeline().analyze(request)
        self.assertEqual(self.prefetcher.calls, [])


if __name__ == "__main__":
    unittest.main()
