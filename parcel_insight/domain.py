"""Domain vocabulary and strict schemas for property analysis results.

This module defines the stable contract between the pipeline stages (geometry,
POI fetching, risk assessment, market estimation, scoring) and the HTTP layer:
enums and Pydantic models for the payloads that flow through the system. No
interpretation logic lives here.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class Category(str, Enum):
    """Amenity categories a caller can request."""
    EDUCATION = "education"
    HEALTHCARE = "healthcare"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    TRANSPORT = "transport"


class Layer(str, Enum):
    """Infrastructure layers a caller can request."""
    ROADS = "roads"
    METRO = "metro"
    BUS_ROUTES = "bus_routes"
    METRO_LINES = "metro_lines"
    INDUSTRIAL = "industrial"
    POWER = "power"
    CEMETERY = "cemetery"
    WATER = "water"


class FeatureKind(str, Enum):
    """Geometry kind of an infrastructure feature."""
    POINT = "point"
    LINE = "line"


class Orientation(str, Enum):
    """Eight-way compass label for a parcel's frontage."""
    NORTH = "North"
    NORTHEAST = "Northeast"
    EAST = "East"
    SOUTHEAST = "Southeast"
    SOUTH = "South"
    SOUTHWEST = "Southwest"
    WEST = "West"
    NORTHWEST = "Northwest"


class Severity(str, Enum):
    """Severity of a single risk finding."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskLevel(str, Enum):
    """Aggregate risk level for a location."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PriceTrend(str, Enum):
    """Direction of the local market relative to its baseline."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class Recommendation(str, Enum):
    """Final buy/consider/avoid call."""
    BUY = "buy"
    CONSIDER = "consider"
    AVOID = "avoid"


class LatLng(_StrictBaseModel):
    """A WGS84 point."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    lat: float
    lng: float


class ParcelMetrics(_StrictBaseModel):
    """Geometry derived from the submitted polygon."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    area: int = Field(..., ge=0, description="Square meters, rounded.")
    orientation: Orientation
    frontage_count: int = Field(..., ge=0)
    center: LatLng
    bearing: float = Field(..., ge=0, lt=360, description="Bearing of the first edge in degrees.")


class Amenity(_StrictBaseModel):
    """A notable point of interest near the parcel."""
    id: str
    name: str
    category: Category
    distance: int = Field(..., ge=0, description="Meters from the parcel center.")
    walk_time: int = Field(..., ge=0, description="Minutes at roughly 80 m/min.")
    lat: float
    lng: float
    type: str
    tags: Dict[str, str] = Field(default_factory=dict)


class InfrastructureFeature(_StrictBaseModel):
    """A road, transit, land-use or utility feature near the parcel."""
    id: str
    name: str
    layer: Layer
    kind: FeatureKind
    lat: Optional[float] = None
    lng: Optional[float] = None
    geometry: List[List[List[float]]] = Field(
        default_factory=list,
        description="Line-strings as lists of [lng, lat] pairs; empty for point features.",
    )
    tags: Dict[str, str] = Field(default_factory=dict)


class RiskFinding(_StrictBaseModel):
    """A single proximity-based risk."""
    id: str
    severity: Severity
    title: str
    description: str
    distance: Optional[int] = None
    icon: str


class RiskAssessment(_StrictBaseModel):
    """Findings plus their aggregate score and level."""
    findings: List[RiskFinding] = Field(default_factory=list)
    overall_level: RiskLevel = RiskLevel.LOW
    risk_score: int = Field(0, ge=0, le=100)


class PriceListing(_StrictBaseModel):
    """A normalized market listing (prices in VND)."""
    id: str
    price: int = Field(..., gt=0)
    price_per_sqm: int = Field(..., ge=0)
    area: int = Field(..., gt=0)
    address: str
    source: str
    url: Optional[str] = None
    posted_at: Optional[datetime] = None


class SourceSummary(_StrictBaseModel):
    """How many listings one source contributed."""
    name: str
    type: str
    listing_count: int = Field(0, ge=0)


class PriceHistoryPoint(_StrictBaseModel):
    """One month of synthesized price history."""
    month: str = Field(..., description="YYYY-MM")
    avg_price: int
    price_per_sqm: int
    listing_count: int


class TrendAnalysis(_StrictBaseModel):
    """Derived percentage changes and a short outlook."""
    monthly_change: float = 0.0
    quarterly_change: float = 0.0
    yearly_change: float = 0.0
    direction: PriceTrend = PriceTrend.STABLE
    volatility: float = Field(0.0, ge=0, le=1)
    confidence: int = Field(0, ge=0, le=100)
    narrative: str = ""
    projected_price: int = 0


class MarketPriceSnapshot(_StrictBaseModel):
    """Aggregated market pricing for the parcel's surroundings."""
    min_price: int = Field(..., ge=0)
    avg_price: int = Field(..., ge=0)
    max_price: int = Field(..., ge=0)
    median_price: int = Field(..., ge=0)
    listing_count: int = Field(..., ge=0)
    price_per_sqm: int = Field(..., ge=0)
    trend: PriceTrend = PriceTrend.STABLE
    sources: List[SourceSummary] = Field(default_factory=list)
    listings: List[PriceListing] = Field(default_factory=list)
    last_updated: datetime
    price_history: List[PriceHistoryPoint] = Field(default_factory=list)
    trend_analysis: Optional[TrendAnalysis] = None


class SubScores(_StrictBaseModel):
    """Per-dimension scores, each on a 0-100 scale."""
    amenities: int = Field(..., ge=0, le=100)
    planning: int = Field(..., ge=0, le=100)
    residential: int = Field(..., ge=0, le=100)
    investment: int = Field(..., ge=0, le=100)
    risk: int = Field(..., ge=0, le=100)


class AnalysisScore(_StrictBaseModel):
    """Composite score, recommendation and narrative."""
    scores: SubScores
    overall: int = Field(..., ge=0, le=100)
    recommendation: Recommendation
    estimated_price: str
    summary: str
    explanations: Dict[str, str] = Field(default_factory=dict)
    improvements: List[str] = Field(default_factory=list)
    investment_timeline: Dict[str, str] = Field(default_factory=dict)


class AnalysisRequest(_StrictBaseModel):
    """Input accepted by the pipeline."""
    coordinates: List[List[float]] = Field(..., description="Polygon vertices as [lng, lat] pairs.")
    radius: int = Field(1000, ge=100, le=30000)
    categories: List[Category] = Field(default_factory=lambda: list(Category))
    layers: List[Layer] = Field(default_factory=lambda: list(Layer))
    include_small_shops: bool = False
    max_amenities: int = Field(1000, ge=1, le=5000)


class AnalysisResult(_StrictBaseModel):
    """Complete output of one analysis run."""
    area: int
    orientation: Orientation
    frontage_count: int
    center: LatLng
    amenities: List[Amenity]
    infrastructure: Dict[Layer, List[InfrastructureFeature]]
    market_data: MarketPriceSnapshot
    ai_analysis: AnalysisScore
    risks: List[RiskFinding]
    overall_risk_level: RiskLevel
    risk_score: int
    generated_at: datetime
    meta: Dict[str, Any] = Field(default_factory=dict)
