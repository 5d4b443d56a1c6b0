"""Pure geometry helpers for parcels: area, centre, orientation and distances."""

from __future__ import annotations

import math
from typing import Sequence

from geopy.distance import geodesic, great_circle
from shapely.geometry import Polygon

from .domain import LatLng, Orientation, ParcelMetrics
from .errors import InvalidGeometry

# Equatorial radius used by turf's ring area, kept so areas match map tooling.
EARTH_RADIUS_M = 6378137.0

_ORIENTATIONS = (
    Orientation.NORTH,
    Orientation.NORTHEAST,
    Orientation.EAST,
    Orientation.SOUTHEAST,
    Orientation.SOUTH,
    Orientation.SOUTHWEST,
    Orientation.WEST,
    Orientation.NORTHWEST,
)


def _validate(coordinates: Sequence[Sequence[float]]) -> list[tuple[float, float]]:
    """Return the vertices as (lng, lat) tuples or raise InvalidGeometry."""
    if coordinates is None or len(coordinates) < 3:
        raise InvalidGeometry("A parcel needs at least 3 vertices")
    vertices: list[tuple[float, float]] = []
    for idx, point in enumerate(coordinates):
        if len(point) < 2:
            raise InvalidGeometry(f"Vertex {idx} must be a [lng, lat] pair")
        lng, lat = float(point[0]), float(point[1])
        if not (math.isfinite(lng) and math.isfinite(lat)):
            raise InvalidGeometry(f"Vertex {idx} is not finite")
        if abs(lat) > 90 or abs(lng) > 180:
            raise InvalidGeometry(f"Vertex {idx} is outside WGS84 bounds: [{lng}, {lat}]")
        vertices.append((lng, lat))
    return vertices


def _open_ring(vertices: list[tuple[float, float]]) -> list[tuple[float, float]]:
    """Drop an explicit closing vertex if present."""
    if len(vertices) > 1 and vertices[0] == vertices[-1]:
        return vertices[:-1]
    return vertices


def ring_area(vertices: Sequence[tuple[float, float]]) -> float:
    """Spherical area in m² of an open ring of (lng, lat) vertices."""
    n = len(vertices)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        lower = vertices[i]
        middle = vertices[(i + 1) % n]
        upper = vertices[(i + 2) % n]
        total += (math.radians(upper[0]) - math.radians(lower[0])) * math.sin(math.radians(middle[1]))
    return abs(total * EARTH_RADIUS_M * EARTH_RADIUS_M / 2.0)


def initial_bearing(start: tuple[float, float], end: tuple[float, float]) -> float:
    """Great-circle bearing in [0, 360) from ``start`` to ``end`` (both (lng, lat))."""
    lng1, lat1 = map(math.radians, start)
    lng2, lat2 = map(math.radians, end)
    d_lng = lng2 - lng1
    x = math.sin(d_lng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lng)
    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360.0) % 360.0


def orientation_from_bearing(bearing: float) -> Orientation:
    """Bucket a bearing into one of eight 45° sectors centred on the compass points."""
    normalized = (float(bearing) % 360.0 + 22.5) % 360.0
    return _ORIENTATIONS[int(normalized // 45.0) % 8]


def _centroid(ring: list[tuple[float, float]]) -> LatLng:
    polygon = Polygon(ring)
    if polygon.area > 0:
        point = polygon.centroid
        return LatLng(lat=point.y, lng=point.x)
    lng = sum(p[0] for p in ring) / len(ring)
    lat = sum(p[1] for p in ring) / len(ring)
    return LatLng(lat=lat, lng=lng)


def calculate_parcel_metrics(coordinates: Sequence[Sequence[float]]) -> ParcelMetrics:
    """Compute area, orientation, frontage count and centre for a polygon of [lng, lat] vertices."""
    vertices = _validate(coordinates)
    ring = _open_ring(vertices)
    if len(ring) < 3:
        raise InvalidGeometry("A parcel needs at least 3 distinct vertices")

    bearing = initial_bearing(vertices[0], vertices[1])
    return ParcelMetrics(
        area=int(round(ring_area(ring))),
        orientation=orientation_from_bearing(bearing),
        frontage_count=len(vertices) - 1,
        center=_centroid(ring),
        bearing=round(bearing, 6) % 360.0,
    )


def distance_meters(a: LatLng, b: LatLng) -> float:
    """Geodesic distance in meters."""
    return geodesic((a.lat, a.lng), (b.lat, b.lng)).meters


def destination_point(origin: LatLng, bearing: float, distance_m: float) -> LatLng:
    """Point reached from ``origin`` travelling ``distance_m`` along ``bearing`` on a great circle."""
    point = great_circle(meters=distance_m).destination((origin.lat, origin.lng), bearing=bearing)
    return LatLng(lat=point.latitude, lng=point.longitude)
