"""Fixed tag-matching rules for amenity categories and infrastructure layers.

Each :class:`Category` and :class:`Layer` maps to one immutable definition. The
Overpass query text and the notability rules are both derived from these
tables, so adding a category means adding one entry here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from .domain import Category, FeatureKind, Layer


@dataclass(frozen=True)
class TagRule:
    """Match elements whose ``key`` tag equals one of ``values``."""
    key: str
    values: tuple[str, ...]
    element_types: tuple[str, ...] = ("node", "way")

    def selector(self) -> str:
        """Overpass tag selector, e.g. ``["amenity"~"^(school|college)$"]``."""
        if len(self.values) == 1:
            return f'["{self.key}"="{self.values[0]}"]'
        return f'["{self.key}"~"^({"|".join(self.values)})$"]'

    def matches(self, tags: Mapping[str, str]) -> bool:
        return tags.get(self.key) in self.values


@dataclass(frozen=True)
class CategoryDefinition:
    category: Category
    rules: tuple[TagRule, ...]
    default_name: str


@dataclass(frozen=True)
class LayerDefinition:
    layer: Layer
    rules: tuple[TagRule, ...]
    kind: FeatureKind
    default_name: str


CATEGORY_DEFINITIONS: dict[Category, CategoryDefinition] = {
    Category.EDUCATION: CategoryDefinition(
        Category.EDUCATION,
        (TagRule("amenity", ("school", "college", "university", "kindergarten", "library")),),
        "School",
    ),
    Category.HEALTHCARE: CategoryDefinition(
        Category.HEALTHCARE,
        (TagRule("amenity", ("hospital", "clinic", "doctors", "pharmacy", "dentist")),),
        "Medical facility",
    ),
    Category.SHOPPING: CategoryDefinition(
        Category.SHOPPING,
        (
            TagRule("shop", (
                "supermarket", "mall", "department_store", "convenience", "electronics",
                "mobile_phone", "furniture", "clothing", "shoes", "bakery", "butcher",
                "greengrocer", "beverages",
            )),
            TagRule("amenity", ("bank", "atm", "post_office")),
        ),
        "Shop",
    ),
    Category.ENTERTAINMENT: CategoryDefinition(
        Category.ENTERTAINMENT,
        (
            TagRule("amenity", ("cinema", "theatre", "restaurant", "cafe", "fast_food", "food_court", "bar", "pub")),
            TagRule("leisure", ("fitness_centre", "sports_centre", "stadium", "park", "garden")),
            TagRule("tourism", ("hotel", "museum", "artwork", "gallery")),
        ),
        "Entertainment venue",
    ),
    Category.TRANSPORT: CategoryDefinition(
        Category.TRANSPORT,
        (
            TagRule("aeroway", ("aerodrome",)),
            TagRule("railway", ("station", "halt", "tram_stop")),
            TagRule("amenity", ("bus_station", "bus_stop", "taxi", "car_sharing", "bicycle_rental")),
            TagRule("highway", ("bus_stop",)),
        ),
        "Transit stop",
    ),
}

LAYER_DEFINITIONS: dict[Layer, LayerDefinition] = {
    Layer.ROADS: LayerDefinition(
        Layer.ROADS,
        (TagRule("highway", ("motorway", "trunk", "primary", "secondary", "tertiary", "residential"), ("way",)),),
        FeatureKind.POINT,
        "Road",
    ),
    Layer.METRO: LayerDefinition(
        Layer.METRO,
        (TagRule("railway", ("station",)),),
        FeatureKind.POINT,
        "Metro station",
    ),
    Layer.BUS_ROUTES: LayerDefinition(
        Layer.BUS_ROUTES,
        (TagRule("route", ("bus",), ("relation",)), TagRule("highway", ("bus_stop",), ("way",))),
        FeatureKind.LINE,
        "Bus route",
    ),
    Layer.METRO_LINES: LayerDefinition(
        Layer.METRO_LINES,
        (TagRule("route", ("subway", "light_rail"), ("relation",)),),
        FeatureKind.LINE,
        "Metro line",
    ),
    Layer.INDUSTRIAL: LayerDefinition(
        Layer.INDUSTRIAL,
        (TagRule("landuse", ("industrial",), ("way", "relation")),),
        FeatureKind.POINT,
        "Industrial area",
    ),
    Layer.POWER: LayerDefinition(
        Layer.POWER,
        (TagRule("power", ("tower", "substation"), ("node",)), TagRule("power", ("line",), ("way",))),
        FeatureKind.POINT,
        "Power infrastructure",
    ),
    Layer.CEMETERY: LayerDefinition(
        Layer.CEMETERY,
        (TagRule("landuse", ("cemetery",), ("way", "relation")),),
        FeatureKind.POINT,
        "Cemetery",
    ),
    Layer.WATER: LayerDefinition(
        Layer.WATER,
        (TagRule("waterway", ("river", "canal", "stream", "ditch"), ("way",)),),
        FeatureKind.POINT,
        "Waterway",
    ),
}

# Well-known Vietnamese chains, matched as substrings of name/brand/operator.
CHAIN_LEXICON: dict[str, tuple[str, ...]] = {
    "electronics": ("thế giới di động", "tgdd", "fpt shop", "dien may xanh", "điện máy xanh", "nguyen kim", "mediamart"),
    "pharmacy": ("pharmacity", "long chau", "long châu", "an khang"),
    "supermarket": ("co.opmart", "coopmart", "big c", "go!", "lotte mart", "emart", "aeon", "bach hoa xanh", "bách hóa xanh"),
    "convenience": ("circle k", "7-eleven", "familymart", "gs25", "ministop"),
    "banking": ("vietcombank", "vcb", "techcombank", "acb", "sacombank", "bidv", "vietinbank", "mb bank", "agribank"),
    "coffee": ("highlands coffee", "starbucks", "the coffee house", "phúc long", "trung nguyên", "katinat"),
    "fashion": ("zara", "h&m", "uniqlo", "mango", "adidas", "nike", "puma"),
    "restaurants": ("kfc", "mcdonald's", "pizza hut", "domino's", "lotteria", "jollibee", "subway"),
    "entertainment": ("cgv", "lotte cinema", "bhd star", "cinestar", "galaxy cinema", "mega gs"),
    "education": ("vinschool", "apollo english", "british council", "wall street english"),
}

# Tags used to pick an amenity's display type, in priority order.
TYPE_KEYS = ("aeroway", "railway", "amenity", "shop", "leisure", "tourism", "highway")


def display_name(tags: Mapping[str, str]) -> Optional[str]:
    return tags.get("name") or tags.get("name:vi") or tags.get("name:en")


def is_known_chain(tags: Mapping[str, str]) -> bool:
    """True when name, brand or operator contains a known chain name."""
    haystacks = [
        (display_name(tags) or "").lower(),
        (tags.get("brand") or tags.get("brand:vi") or "").lower(),
        (tags.get("operator") or tags.get("operator:vi") or "").lower(),
    ]
    return any(
        chain in hay
        for chains in CHAIN_LEXICON.values()
        for chain in chains
        for hay in haystacks
        if hay
    )


# Category rules only see places that are unnamed, unbranded and not
# cross-referenced; they keep the facilities worth reporting anyway.

def _education(tags: Mapping[str, str], include_small_shops: bool) -> bool:
    return tags.get("amenity") in CATEGORY_DEFINITIONS[Category.EDUCATION].rules[0].values


def _healthcare(tags: Mapping[str, str], include_small_shops: bool) -> bool:
    return tags.get("amenity") in ("hospital", "pharmacy") or tags.get("healthcare") == "hospital"


def _transport(tags: Mapping[str, str], include_small_shops: bool) -> bool:
    if tags.get("aeroway") == "aerodrome" or tags.get("railway") == "station":
        return True
    if tags.get("amenity") == "bus_station":
        return True
    if tags.get("highway") == "bus_stop" or tags.get("amenity") == "bus_stop":
        return bool(tags.get("operator"))
    return False


def _shopping(tags: Mapping[str, str], include_small_shops: bool) -> bool:
    if tags.get("shop") in ("mall", "supermarket", "department_store") or tags.get("amenity") == "bank":
        return True
    return include_small_shops


def _entertainment(tags: Mapping[str, str], include_small_shops: bool) -> bool:
    if tags.get("amenity") == "cinema" or tags.get("leisure") in ("stadium", "park", "garden"):
        return True
    return tags.get("tourism") in ("museum", "gallery")


_CATEGORY_RULES = {
    Category.EDUCATION: _education,
    Category.HEALTHCARE: _healthcare,
    Category.TRANSPORT: _transport,
    Category.SHOPPING: _shopping,
    Category.ENTERTAINMENT: _entertainment,
}


def is_notable(tags: Optional[Mapping[str, str]], category: Category, include_small_shops: bool = False) -> bool:
    """
    Decide whether a raw place is significant enough to report.

    Named places, known chains, branded places and places with wiki
    cross-references always pass. Anything else must be a facility its
    category always reports (hospitals, pharmacies, banks, schools, major
    transit hubs, parks). Small unnamed shops only pass when
    ``include_small_shops`` is set.
    """
    if not tags:
        return False
    if display_name(tags) or is_known_chain(tags):
        return True
    if tags.get("brand") or tags.get("brand:wikidata") or tags.get("wikidata") or tags.get("wikipedia"):
        return True
    return _CATEGORY_RULES[Category(category)](tags, include_small_shops)


def amenity_type(tags: Mapping[str, str]) -> str:
    for key in TYPE_KEYS:
        if tags.get(key):
            return tags[key]
    return "unknown"


def _statements(rules: tuple[TagRule, ...], radius: int, lat: float, lng: float) -> list[str]:
    around = f"(around:{int(radius)},{lat},{lng})"
    return [f"  {element}{rule.selector()}{around};" for rule in rules for element in rule.element_types]


def build_category_query(category: Category, lat: float, lng: float, radius: int, timeout: int = 25) -> str:
    """Overpass QL returning nodes and way centres for one category."""
    body = "\n".join(_statements(CATEGORY_DEFINITIONS[Category(category)].rules, radius, lat, lng))
    return f"[out:json][timeout:{timeout}];\n(\n{body}\n);\nout center;"


def build_layer_query(layer: Layer, lat: float, lng: float, radius: int, timeout: int = 25) -> str:
    """Overpass QL for one layer; line layers return full way geometry."""
    definition = LAYER_DEFINITIONS[Layer(layer)]
    body = "\n".join(_statements(definition.rules, radius, lat, lng))
    if definition.kind is FeatureKind.LINE:
        return f"[out:json][timeout:{timeout}];\n(\n{body}\n);\nout geom;\n>;\nout geom;"
    return f"[out:json][timeout:{timeout}];\n(\n{body}\n);\nout center;"
