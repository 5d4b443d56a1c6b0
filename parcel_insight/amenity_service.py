"""Fetch notable amenities and infrastructure around a point.

Each category and layer is queried and cached under its own key, so a request
for ``[healthcare, shopping]`` reuses a cached ``healthcare`` result from an
earlier ``[healthcare]`` request. A failing query empties only its own slot.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .cache import AMENITIES_TTL_SECONDS, INFRASTRUCTURE_TTL_SECONDS, Cache, build_cache_key, cached
from .categories import (
    CATEGORY_DEFINITIONS,
    LAYER_DEFINITIONS,
    amenity_type,
    build_category_query,
    build_layer_query,
    display_name,
    is_notable,
)
from .concurrency import gather_isolated
from .data_sources.base import PlacesSource
from .domain import Amenity, Category, FeatureKind, InfrastructureFeature, LatLng, Layer
from .geometry import distance_meters
from utils.logging_utils import get_tagged_logger, log_duration

logger = get_tagged_logger(__name__, tag="amenity_service")

WALKING_METERS_PER_MINUTE = 80


def _coord_params(center: LatLng, radius: int) -> dict:
    return {"lat": round(center.lat, 4), "lng": round(center.lng, 4), "radius": int(radius)}


def category_cache_key(center: LatLng, radius: int, category: Category, include_small_shops: bool = False) -> str:
    params = _coord_params(center, radius)
    params.update(category=Category(category), small_shops=include_small_shops)
    return build_cache_key("amenity_category", params)


def amenities_cache_key(
    center: LatLng, radius: int, categories: Iterable[Category], include_small_shops: bool = False
) -> str:
    """Key for the merged result of a whole category set."""
    params = _coord_params(center, radius)
    params.update(categories=[Category(c) for c in categories], small_shops=include_small_shops)
    return build_cache_key("amenities", params)


def layer_cache_key(center: LatLng, radius: int, layer: Layer) -> str:
    params = _coord_params(center, radius)
    params.update(layer=Layer(layer))
    return build_cache_key("infrastructure_layer", params)


def infrastructure_cache_key(center: LatLng, radius: int, layers: Iterable[Layer]) -> str:
    """Key for the merged result of a whole layer set."""
    params = _coord_params(center, radius)
    params.update(layers=[Layer(layer) for layer in layers])
    return build_cache_key("infrastructure", params)


def _str_tags(tags: Optional[dict]) -> Dict[str, str]:
    return {str(k): str(v) for k, v in (tags or {}).items()}


def _element_point(element: dict) -> Optional[LatLng]:
    lat, lng = element.get("lat"), element.get("lon")
    if lat is None or lng is None:
        center = element.get("center") or {}
        lat, lng = center.get("lat"), center.get("lon")
    if lat is None or lng is None:
        return None
    return LatLng(lat=float(lat), lng=float(lng))


def _element_id(element: dict) -> str:
    return f"{element.get('type', 'node')}/{element.get('id')}"


def _way_line(geometry: Optional[list]) -> Optional[List[List[float]]]:
    coords = [[float(node["lon"]), float(node["lat"])] for node in (geometry or []) if "lat" in node and "lon" in node]
    return coords if len(coords) > 1 else None


def extract_line_geometry(elements: Sequence[dict], relation: dict) -> List[List[List[float]]]:
    """Resolve a relation's way members into ``[[lng, lat], ...]`` line-strings."""
    ways_by_id = {e.get("id"): e for e in elements if e.get("type") == "way"}
    lines: List[List[List[float]]] = []
    for member in relation.get("members") or []:
        if member.get("type") != "way":
            continue
        geometry = member.get("geometry") or (ways_by_id.get(member.get("ref")) or {}).get("geometry")
        line = _way_line(geometry)
        if line:
            lines.append(line)
    return lines


class AmenityFetcher:
    """Query a POI source per category/layer with per-key caching."""

    def __init__(
        self,
        places: PlacesSource,
        cache: Cache,
        *,
        amenities_ttl: float = AMENITIES_TTL_SECONDS,
        infrastructure_ttl: float = INFRASTRUCTURE_TTL_SECONDS,
        query_timeout: int = 25,
        max_workers: int = 5,
    ) -> None:
        self.places = places
        self.cache = cache
        self.amenities_ttl = amenities_ttl
        self.infrastructure_ttl = infrastructure_ttl
        self.query_timeout = query_timeout
        self.max_workers = max_workers

    # -- amenities ---------------------------------------------------------

    def _query_category(
        self, center: LatLng, radius: int, category: Category, include_small_shops: bool = False
    ) -> List[Amenity]:
        data = self.places.query(build_category_query(category, center.lat, center.lng, radius, self.query_timeout))
        default_name = CATEGORY_DEFINITIONS[category].default_name
        amenities: List[Amenity] = []
        for element in data.get("elements") or []:
            tags = _str_tags(element.get("tags"))
            if not is_notable(tags, category, include_small_shops):
                continue
            point = _element_point(element)
            if point is None:
                continue
            distance = int(round(distance_meters(center, point)))
            amenities.append(
                Amenity(
                    id=_element_id(element),
                    name=display_name(tags) or default_name,
                    category=category,
                    distance=distance,
                    walk_time=int(round(distance / WALKING_METERS_PER_MINUTE)),
                    lat=point.lat,
                    lng=point.lng,
                    type=amenity_type(tags),
                    tags=tags,
                )
            )
        return amenities

    def fetch_amenities(
        self,
        center: LatLng,
        radius: int,
        categories: Sequence[Category],
        *,
        include_small_shops: bool = False,
        max_results: int = 1000,
    ) -> List[Amenity]:
        """Return notable amenities sorted by distance; never raises for source failures."""
        categories = sorted({Category(c) for c in categories}, key=lambda c: c.value)
        if not categories:
            return []
        combined_key = amenities_cache_key(center, radius, categories, include_small_shops)
        hit = self.cache.get(combined_key)
        if hit is not None:
            logger.debug("Amenities cache hit", extra={"key": combined_key})
            return hit[:max_results]

        fetch_one = cached(
            lambda cat: category_cache_key(center, radius, cat, include_small_shops),
            lambda cat: self._query_category(center, radius, cat, include_small_shops),
            self.amenities_ttl,
            self.cache,
        )
        failed: list[Category] = []

        def _on_failure(cat: Category, exc: Exception) -> List[Amenity]:
            logger.warning("Amenity query failed", extra={"category": cat.value, "error": str(exc)})
            failed.append(cat)
            return []

        with log_duration(logger, "Fetched amenities", radius=radius) as stats:
            per_category = gather_isolated(
                {cat: (lambda c=cat: fetch_one(c)) for cat in categories},
                _on_failure,
                max_workers=self.max_workers,
            )
            seen: set[str] = set()
            merged: List[Amenity] = []
            for items in per_category.values():
                for amenity in items:
                    if amenity.id not in seen:
                        seen.add(amenity.id)
                        merged.append(amenity)
            merged.sort(key=lambda a: a.distance)
            stats.update(count=len(merged), failed=[c.value for c in failed])

        if not failed:
            self.cache.set(combined_key, merged, self.amenities_ttl)
        return merged[:max_results]

    # -- infrastructure ----------------------------------------------------

    def _query_layer(self, center: LatLng, radius: int, layer: Layer) -> List[InfrastructureFeature]:
        definition = LAYER_DEFINITIONS[layer]
        data = self.places.query(build_layer_query(layer, center.lat, center.lng, radius, self.query_timeout))
        elements = data.get("elements") or []
        features: List[InfrastructureFeature] = []
        for element in elements:
            tags = _str_tags(element.get("tags"))
            if not any(rule.matches(tags) for rule in definition.rules):
                continue
            name = display_name(tags) or definition.default_name
            if definition.kind is FeatureKind.LINE:
                if element.get("type") == "relation":
                    geometry = extract_line_geometry(elements, element)
                else:
                    line = _way_line(element.get("geometry"))
                    geometry = [line] if line else []
                if not geometry:
                    continue
                features.append(
                    InfrastructureFeature(
                        id=_element_id(element), name=name, layer=layer,
                        kind=FeatureKind.LINE, geometry=geometry, tags=tags,
                    )
                )
            else:
                point = _element_point(element)
                if point is None:
                    continue
                features.append(
                    InfrastructureFeature(
                        id=_element_id(element), name=name, layer=layer,
                        kind=FeatureKind.POINT, lat=point.lat, lng=point.lng, tags=tags,
                    )
                )
        return features

    def fetch_infrastructure(
        self, center: LatLng, radius: int, layers: Sequence[Layer]
    ) -> Dict[Layer, List[InfrastructureFeature]]:
        """Return features per requested layer; a failed layer maps to ``[]``."""
        layers = sorted({Layer(layer) for layer in layers}, key=lambda item: item.value)
        if not layers:
            return {}
        combined_key = infrastructure_cache_key(center, radius, layers)
        hit = self.cache.get(combined_key)
        if hit is not None:
            logger.debug("Infrastructure cache hit", extra={"key": combined_key})
            return hit

        fetch_one = cached(
            lambda layer: layer_cache_key(center, radius, layer),
            lambda layer: self._query_layer(center, radius, layer),
            self.infrastructure_ttl,
            self.cache,
        )
        failed: list[Layer] = []

        def _on_failure(layer: Layer, exc: Exception) -> List[InfrastructureFeature]:
            logger.warning("Infrastructure query failed", extra={"layer": layer.value, "error": str(exc)})
            failed.append(layer)
            return []

        with log_duration(logger, "Fetched infrastructure", radius=radius) as stats:
            result = gather_isolated(
                {layer: (lambda lyr=layer: fetch_one(lyr)) for layer in layers},
                _on_failure,
                max_workers=self.max_workers,
            )
            stats.update(counts={layer.value: len(items) for layer, items in result.items()})

        if not failed:
            self.cache.set(combined_key, result, self.infrastructure_ttl)
        return result
