import unittest

from parcel_insight.amenity_service import (
    AmenityFetcher,
    amenities_cache_key,
    category_cache_key,
    extract_line_geometry,
)
from parcel_insight.cache.memory import InMemoryCache
from parcel_insight.domain import Category, FeatureKind, LatLng, Layer
from parcel_insight.errors import ExternalSourceError
from parcel_insight.geometry import destination_point

CENTER = LatLng(lat=10.7769, lng=106.7009)


def _node(node_id, distance_m, bearing=0, **tags):
    p = destination_point(CENTER, bearing, distance_m)
    return {"type": "node", "id": node_id, "lat": p.lat, "lon": p.lng, "tags": tags}


def _way_with_center(way_id, distance_m, bearing=0, **tags):
    p = destination_point(CENTER, bearing, distance_m)
    return {"type": "way", "id": way_id, "center": {"lat": p.lat, "lon": p.lng}, "tags": tags}


class FakePlaces:
    """Answers a query with the first response whose marker appears in the query text."""

    def __init__(self, responses):
        self.responses = responses
        self.queries = []

    def query(self, query):
        self.queries.append(query)
        for marker, response in self.responses:
            if marker in query:
                if isinstance(response, Exception):
                    raise response
                return response
        return {"elements": []}

    def count(self, marker):
        return sum(1 for q in self.queries if marker in q)


HEALTHCARE = {
    "elements": [
        _node(1, 300, name="Bệnh viện Chợ Rẫy", amenity="hospital"),
        _node(2, 50, amenity="clinic"),  # unnamed clinic: not notable
        _way_with_center(3, 120, bearing=90, name="Pharmacity", amenity="pharmacy"),
        {"type": "node", "id": 4, "tags": {"name": "No position", "amenity": "hospital"}},
    ]
}
SHOPPING = {"elements": [_node(10, 800, bearing=180, shop="supermarket")]}


class TestFetchAmenities(unittest.TestCase):
    def setUp(self):
        self.cache = InMemoryCache(default_ttl=600)

    def _fetcher(self, places):
        return AmenityFetcher(places, self.cache, max_workers=4)

    def test_filters_and_sorts_by_distance(self):
        places = FakePlaces([("hospital", HEALTHCARE)])
        amenities = self._fetcher(places).fetch_amenities(CENTER, 1000, [Category.HEALTHCARE])
        self.assertEqual([a.id for a in amenities], ["way/3", "node/1"])
        pharmacy = amenities[0]
        self.assertEqual(pharmacy.name, "Pharmacity")
        self.assertEqual(pharmacy.type, "pharmacy")
        self.assertEqual(pharmacy.category, Category.HEALTHCARE)
        self.assertTrue(115 <= pharmacy.distance <= 125)
        self.assertEqual(pharmacy.walk_time, round(pharmacy.distance / 80))

    def test_unnamed_notable_place_gets_default_name(self):
        places = FakePlaces([("supermarket", SHOPPING)])
        amenities = self._fetcher(places).fetch_amenities(CENTER, 1000, [Category.SHOPPING])
        self.assertEqual(amenities[0].name, "Shop")

    def test_category_results_are_reused_across_category_sets(self):
        places = FakePlaces([("hospital", HEALTHCARE), ("supermarket", SHOPPING)])
        fetcher = self._fetcher(places)
        fetcher.fetch_amenities(CENTER, 1000, [Category.HEALTHCARE])
        combined = fetcher.fetch_amenities(CENTER, 1000, [Category.SHOPPING, Category.HEALTHCARE])
        self.assertEqual(places.count("hospital"), 1)
        self.assertEqual(places.count("supermarket"), 1)
        self.assertEqual(len(combined), 3)
        self.assertTrue(self.cache.has(amenities_cache_key(CENTER, 1000, [Category.HEALTHCARE, Category.SHOPPING])))

    def test_combined_hit_skips_all_queries(self):
        places = FakePlaces([("hospital", HEALTHCARE)])
        fetcher = self._fetcher(places)
        first = fetcher.fetch_amenities(CENTER, 1000, [Category.HEALTHCARE])
        second = fetcher.fetch_amenities(CENTER, 1000, [Category.HEALTHCARE])
        self.assertEqual(first, second)
        self.assertEqual(len(places.queries), 1)

    def test_failed_category_is_isolated_and_not_cached(self):
        places = FakePlaces([("hospital", HEALTHCARE), ("supermarket", ExternalSourceError("overpass", "HTTP 504"))])
        fetcher = self._fetcher(places)
        amenities = fetcher.fetch_amenities(CENTER, 1000, [Category.HEALTHCARE, Category.SHOPPING])
        self.assertEqual({a.category for a in amenities}, {Category.HEALTHCARE})
        self.assertFalse(self.cache.has(category_cache_key(CENTER, 1000, Category.SHOPPING)))
        self.assertFalse(self.cache.has(amenities_cache_key(CENTER, 1000, [Category.HEALTHCARE, Category.SHOPPING])))

        places.responses[1] = ("supermarket", SHOPPING)
        amenities = fetcher.fetch_amenities(CENTER, 1000, [Category.HEALTHCARE, Category.SHOPPING])
        self.assertEqual(len(amenities), 3)
        self.assertEqual(places.count("hospital"), 1)

    def test_small_shop_flag_changes_cache_key(self):
        self.assertNotEqual(
            category_cache_key(CENTER, 1000, Category.SHOPPING, False),
            category_cache_key(CENTER, 1000, Category.SHOPPING, True),
        )

    def test_max_results_truncates_nearest_first(self):
        places = FakePlaces([("hospital", HEALTHCARE)])
        amenities = self._fetcher(places).fetch_amenities(CENTER, 1000, [Category.HEALTHCARE], max_results=1)
        self.assertEqual([a.id for a in amenities], ["way/3"])

    def test_no_categories_returns_empty(self):
        places = FakePlaces([])
        self.assertEqual(self._fetcher(places).fetch_amenities(CENTER, 1000, []), [])
        self.assertEqual(places.queries, [])


class TestFetchInfrastructure(unittest.TestCase):
    def setUp(self):
        self.cache = InMemoryCache(default_ttl=600)

    def test_point_and_line_layers(self):
        a = destination_point(CENTER, 0, 200)
        b = destination_point(CENTER, 0, 400)
        bus = {
            "elements": [
                {
                    "type": "relation",
                    "id": 77,
                    "tags": {"route": "bus", "name": "Tuyến 19"},
                    "members": [
                        {"type": "way", "ref": 5, "geometry": [{"lat": a.lat, "lon": a.lng}, {"lat": b.lat, "lon": b.lng}]},
                        {"type": "node", "ref": 6},
                    ],
                }
            ]
        }
        roads = {"elements": [_way_with_center(20, 90, highway="primary", name="Nguyễn Huệ")]}
        places = FakePlaces([('"route"="bus"', bus), ('"highway"~"^(motorway', roads)])
        result = AmenityFetcher(places, self.cache).fetch_infrastructure(CENTER, 1000, [Layer.BUS_ROUTES, Layer.ROADS])

        self.assertEqual(set(result), {Layer.BUS_ROUTES, Layer.ROADS})
        route = result[Layer.BUS_ROUTES][0]
        self.assertEqual(route.kind, FeatureKind.LINE)
        self.assertEqual(route.name, "Tuyến 19")
        self.assertEqual(len(route.geometry), 1)
        self.assertEqual(route.geometry[0][0], [a.lng, a.lat])
        road = result[Layer.ROADS][0]
        self.assertEqual(road.kind, FeatureKind.POINT)
        self.assertEqual(road.id, "way/20")

    def test_failed_layer_maps_to_empty_list(self):
        places = FakePlaces([('"power"', ExternalSourceError("overpass", "timeout"))])
        result = AmenityFetcher(places, self.cache).fetch_infrastructure(CENTER, 1000, [Layer.POWER, Layer.WATER])
        self.assertEqual(result, {Layer.POWER: [], Layer.WATER: []})

    def test_extract_line_geometry_resolves_way_refs(self):
        elements = [
            {"type": "way", "id": 5, "geometry": [{"lat": 10.0, "lon": 106.0}, {"lat": 10.1, "lon": 106.1}]},
        ]
        relation = {"type": "relation", "members": [{"type": "way", "ref": 5}, {"type": "way", "ref": 999}]}
        self.assertEqual(extract_line_geometry(elements, relation), [[[106.0, 10.0], [106.1, 10.1]]])


if __name__ == "__main__":
    unittest.main()
