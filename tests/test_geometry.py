import math
import unittest

from parcel_insight.domain import LatLng, Orientation
from parcel_insight.errors import InvalidGeometry
from parcel_insight.geometry import (
    calculate_parcel_metrics,
    destination_point,
    distance_meters,
    initial_bearing,
    orientation_from_bearing,
)

# ~22 m x 22 m square in Ho Chi Minh City, first edge pointing east.
HCMC_SQUARE = [
    [106.7000, 10.8000],
    [106.7002, 10.8000],
    [106.7002, 10.8002],
    [106.7000, 10.8002],
    [106.7000, 10.8000],
]


class TestParcelMetrics(unittest.TestCase):
    def test_square_area_orientation_and_frontage(self):
        metrics = calculate_parcel_metrics(HCMC_SQUARE)
        self.assertTrue(450 <= metrics.area <= 520, metrics.area)
        self.assertEqual(metrics.orientation, Orientation.EAST)
        self.assertEqual(metrics.frontage_count, 4)
        self.assertAlmostEqual(metrics.center.lat, 10.8001, places=5)
        self.assertAlmostEqual(metrics.center.lng, 106.7001, places=5)

    def test_open_ring_has_same_area_as_closed_ring(self):
        closed = calculate_parcel_metrics(HCMC_SQUARE)
        opened = calculate_parcel_metrics(HCMC_SQUARE[:-1])
        self.assertEqual(closed.area, opened.area)
        self.assertEqual(opened.frontage_count, 3)

    def test_vertex_order_does_not_change_area(self):
        forward = calculate_parcel_metrics(HCMC_SQUARE)
        backward = calculate_parcel_metrics(list(reversed(HCMC_SQUARE)))
        self.assertEqual(forward.area, backward.area)

    def test_first_edge_north_gives_north(self):
        coords = [[106.7, 10.8], [106.7, 10.801], [106.701, 10.801]]
        self.assertEqual(calculate_parcel_metrics(coords).orientation, Orientation.NORTH)

    def test_too_few_vertices_rejected(self):
        with self.assertRaises(InvalidGeometry):
            calculate_parcel_metrics([[106.7, 10.8], [106.71, 10.8]])

    def test_closed_two_point_ring_rejected(self):
        with self.assertRaises(InvalidGeometry):
            calculate_parcel_metrics([[106.7, 10.8], [106.71, 10.8], [106.7, 10.8]])

    def test_out_of_range_coordinates_rejected(self):
        with self.assertRaises(InvalidGeometry):
            calculate_parcel_metrics([[200.0, 10.8], [106.71, 10.8], [106.71, 10.81]])

    def test_non_finite_coordinates_rejected(self):
        with self.assertRaises(InvalidGeometry):
            calculate_parcel_metrics([[math.nan, 10.8], [106.71, 10.8], [106.71, 10.81]])

    def test_invalid_geometry_is_a_value_error(self):
        self.assertTrue(issubclass(InvalidGeometry, ValueError))


class TestOrientation(unittest.TestCase):
    def test_sector_boundaries(self):
        cases = {
            0: Orientation.NORTH,
            22.4: Orientation.NORTH,
            22.5: Orientation.NORTHEAST,
            22.6: Orientation.NORTHEAST,
            45: Orientation.NORTHEAST,
            90: Orientation.EAST,
            135: Orientation.SOUTHEAST,
            180: Orientation.SOUTH,
            225: Orientation.SOUTHWEST,
            270: Orientation.WEST,
            315: Orientation.NORTHWEST,
            337.4: Orientation.NORTHWEST,
            337.5: Orientation.NORTH,
            359.9: Orientation.NORTH,
            -10: Orientation.NORTH,
            720 + 90: Orientation.EAST,
        }
        for bearing, expected in cases.items():
            with self.subTest(bearing=bearing):
                self.assertEqual(orientation_from_bearing(bearing), expected)

    def test_initial_bearing_cardinal_directions(self):
        self.assertAlmostEqual(initial_bearing((106.7, 10.8), (106.7, 10.9)), 0.0, places=3)
        self.assertAlmostEqual(initial_bearing((106.7, 10.8), (106.7, 10.7)), 180.0, places=3)
        east = initial_bearing((106.7, 10.8), (106.8, 10.8))
        self.assertTrue(89.9 < east < 90.1, east)


class TestDistances(unittest.TestCase):
    def test_distance_is_symmetric_and_zero_at_origin(self):
        a = LatLng(lat=10.8, lng=106.7)
        b = LatLng(lat=10.81, lng=106.7)
        self.assertEqual(distance_meters(a, a), 0)
        self.assertAlmostEqual(distance_meters(a, b), distance_meters(b, a), places=6)
        self.assertTrue(1100 < distance_meters(a, b) < 1110)

    def test_destination_point_travels_requested_distance(self):
        origin = LatLng(lat=10.8, lng=106.7)
        target = destination_point(origin, 90, 700)
        self.assertAlmostEqual(target.lat, origin.lat, places=3)
        self.assertGreater(target.lng, origin.lng)
        self.assertTrue(abs(distance_meters(origin, target) - 700) < 5)


if __name__ == "__main__":
    unittest.main()
