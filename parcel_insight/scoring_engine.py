"""Deterministic multi-factor scoring and the buy/consider/avoid recommendation."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from .domain import (
    Amenity,
    AnalysisScore,
    Category,
    InfrastructureFeature,
    Layer,
    MarketPriceSnapshot,
    Orientation,
    ParcelMetrics,
    PriceTrend,
    Recommendation,
    RiskAssessment,
    Severity,
    SubScores,
)
from .narration import SummaryContext, SummaryWriter
from .risk_assessor import nearest_distance
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="scoring_engine")

SCORED_CATEGORIES = (Category.EDUCATION, Category.HEALTHCARE, Category.SHOPPING, Category.ENTERTAINMENT)
FAVOURED_ORIENTATIONS = (Orientation.EAST, Orientation.SOUTHEAST, Orientation.SOUTH)

WEIGHTS = {
    "amenities": 0.25,
    "planning": 0.20,
    "safety": 0.20,
    "residential": 0.20,
    "investment": 0.15,
}


def _clamp_score(value: float, lower: float = 0.0, upper: float = 100.0) -> int:
    """Round and clamp a score into [lower, upper]."""
    return int(round(max(lower, min(upper, value))))


def _count(amenities: Sequence[Amenity], category: Category, max_distance: float, min_distance: float = 0) -> int:
    return sum(1 for a in amenities if a.category == category and min_distance <= a.distance < max_distance)


def amenities_score(amenities: Sequence[Amenity]) -> int:
    """Per category: +10 per place under 1 km, +5 per place at 1-3 km, capped at 25."""
    total = 0
    for category in SCORED_CATEGORIES:
        close = _count(amenities, category, 1000)
        medium = _count(amenities, category, 3000, 1000)
        total += min(25, close * 10 + medium * 5)
    return _clamp_score(total)


def planning_score(center, infrastructure: Mapping[Layer, List[InfrastructureFeature]]) -> int:
    score = 50
    if infrastructure.get(Layer.ROADS):
        score += 15
    if infrastructure.get(Layer.METRO):
        score += 20
    water = nearest_distance(center, infrastructure.get(Layer.WATER) or [])
    if water is not None and 100 <= water <= 2000:
        score += 10
    return _clamp_score(score)


def residential_score(metrics: ParcelMetrics, amenities: Sequence[Amenity], risks: RiskAssessment) -> int:
    score = 60
    score += min(15, _count(amenities, Category.EDUCATION, 1000) * 5)
    score += min(10, _count(amenities, Category.HEALTHCARE, 2000) * 3)
    score += min(10, _count(amenities, Category.SHOPPING, 1000) * 3)
    score -= 15 * sum(1 for f in risks.findings if f.severity is Severity.HIGH)
    if metrics.orientation in FAVOURED_ORIENTATIONS:
        score += 5
    return _clamp_score(score)


def investment_score(
    metrics: ParcelMetrics,
    infrastructure: Mapping[Layer, List[InfrastructureFeature]],
    market: Optional[MarketPriceSnapshot],
) -> int:
    score = 50
    trend = market.trend if market else PriceTrend.STABLE
    if trend is PriceTrend.UP:
        score += 15
    elif trend is PriceTrend.DOWN:
        score -= 10
    if infrastructure.get(Layer.METRO):
        score += 20
    if len(infrastructure.get(Layer.ROADS) or []) >= 3:
        score += 10
    if 100 < metrics.area < 500:
        score += 5
    return _clamp_score(score)


def overall_score(sub: SubScores) -> int:
    return _clamp_score(
        WEIGHTS["amenities"] * sub.amenities
        + WEIGHTS["planning"] * sub.planning
        + WEIGHTS["safety"] * (100 - sub.risk)
        + WEIGHTS["residential"] * sub.residential
        + WEIGHTS["investment"] * sub.investment
    )


def recommend(overall: int, risk_score: int) -> Recommendation:
    if overall >= 70 and risk_score < 30:
        return Recommendation.BUY
    if overall >= 50 or risk_score < 50:
        return Recommendation.CONSIDER
    return Recommendation.AVOID


def format_price(amount: Optional[float]) -> str:
    """Human-readable VND amount, e.g. ``"3.5 billion VND"``."""
    if not amount or amount <= 0:
        return "N/A"
    if amount >= 1e9:
        return f"{amount / 1e9:.1f} billion VND"
    if amount >= 1e6:
        return f"{amount / 1e6:.0f} million VND"
    return f"{amount:,.0f} VND"


def explain_scores(sub: SubScores, amenities: Sequence[Amenity]) -> tuple[Dict[str, str], List[str]]:
    """Short per-dimension explanations plus improvement hints for missing categories."""
    explanations = {
        "amenities": f"{len([a for a in amenities if a.distance < 1000])} notable places within 1 km "
                     f"({sub.amenities}/100).",
        "planning": f"Road, transit and waterfront access rate {sub.planning}/100.",
        "residential": f"Livability for households rates {sub.residential}/100.",
        "investment": f"Market momentum and connectivity rate {sub.investment}/100.",
        "risk": f"Proximity risk score is {sub.risk}/100 (lower is better).",
    }
    improvements = [
        f"No {category.value} facilities within 1 km; check access by vehicle."
        for category in SCORED_CATEGORIES
        if _count(amenities, category, 1000) == 0
    ]
    return explanations, improvements


def investment_timeline(market: Optional[MarketPriceSnapshot]) -> Dict[str, str]:
    """Short/medium/long-term outlook derived from the market trend analysis."""
    analysis = market.trend_analysis if market else None
    if analysis is None:
        return {
            "short_term": "Not enough market data for a short-term view.",
            "medium_term": "Track local listings for 3-6 months before committing.",
            "long_term": "Long-term value depends on infrastructure delivery in the area.",
        }
    projected = format_price(analysis.projected_price * 100) if analysis.projected_price else "N/A"
    if analysis.direction is PriceTrend.UP:
        short = f"Momentum is positive ({analysis.monthly_change:+.1f}% last month)."
    elif analysis.direction is PriceTrend.DOWN:
        short = f"Prices are easing ({analysis.monthly_change:+.1f}% last month); room to negotiate."
    else:
        short = "Prices are flat; little short-term upside."
    return {
        "short_term": short,
        "medium_term": f"3-month projection for a 100 m² lot is about {projected} "
                       f"(confidence {analysis.confidence}%).",
        "long_term": f"Year-on-year change of {analysis.yearly_change:+.1f}% suggests "
                     f"{'sustained growth' if analysis.yearly_change > 0 else 'a slow market'}.",
    }


def score(
    metrics: ParcelMetrics,
    amenities: Sequence[Amenity],
    infrastructure: Mapping[Layer, List[InfrastructureFeature]],
    market: Optional[MarketPriceSnapshot],
    risks: RiskAssessment,
    writer: Optional[SummaryWriter] = None,
) -> AnalysisScore:
    """Compute every sub-score, the weighted overall, recommendation and summary."""
    sub = SubScores(
        amenities=amenities_score(amenities),
        planning=planning_score(metrics.center, infrastructure),
        residential=residential_score(metrics, amenities, risks),
        investment=investment_score(metrics, infrastructure, market),
        risk=_clamp_score(risks.risk_score),
    )
    overall = overall_score(sub)
    recommendation = recommend(overall, sub.risk)
    estimated_price = format_price(market.avg_price if market else None)
    explanations, improvements = explain_scores(sub, amenities)

    ctx = SummaryContext(
        overall=overall,
        recommendation=recommendation,
        scores=sub.model_dump(),
        amenity_counts={c.value: _count(amenities, c, 1000) for c in SCORED_CATEGORIES},
        risk_level=risks.overall_level,
        risks=list(risks.findings),
        market_trend=market.trend if market else PriceTrend.STABLE,
        estimated_price=estimated_price,
        area=metrics.area,
        orientation=metrics.orientation.value,
    )
    summary = (writer or SummaryWriter()).write(ctx)
    logger.info("Scored parcel", extra={"overall": overall, "recommendation": recommendation.value})

    return AnalysisScore(
        scores=sub,
        overall=overall,
        recommendation=recommendation,
        estimated_price=estimated_price,
        summary=summary,
        explanations=explanations,
        improvements=improvements,
        investment_timeline=investment_timeline(market),
    )
