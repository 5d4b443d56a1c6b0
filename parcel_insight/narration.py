"""Summary text for an analysis: LLM narration with a deterministic template fallback."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .domain import PriceTrend, Recommendation, RiskFinding, RiskLevel
from .ollama_client import OllamaClient
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="narration")


SYSTEM_PROMPT = """You are a concise real-estate analyst. All scores, risks and prices are precomputed.
Never recompute numbers or change the recommendation. Use the provided values.

Respond with one short paragraph of plain text (no JSON, no headings, no bullet lists) that covers:
- the overall score and what the recommendation means for a buyer;
- how well served the area is by nearby amenities;
- the main location risks, or that none were found;
- the direction of the local market;
- who the parcel suits (family home, investment, business)."""


@dataclass
class SummaryContext:
    """Precomputed facts the summary is written from."""
    overall: int
    recommendation: Recommendation
    scores: Dict[str, int]
    amenity_counts: Dict[str, int] = field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.LOW
    risks: List[RiskFinding] = field(default_factory=list)
    market_trend: PriceTrend = PriceTrend.STABLE
    estimated_price: str = "N/A"
    area: int = 0
    orientation: str = ""


def _strip_markdown_fences(text: str) -> str:
    """Remove surrounding Markdown code fences from text."""
    if not text:
        return text
    t = text.strip()
    if not t.startswith("```"):
        return t
    lines = t.splitlines()
    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def build_summary_messages(ctx: SummaryContext) -> list[dict]:
    """Prepare system+user messages describing the precomputed analysis."""
    lines = [
        f"Parcel: {ctx.area} m², facing {ctx.orientation or 'unknown'}",
        f"Overall score: {ctx.overall}/100, recommendation: {ctx.recommendation.value}",
        "Sub-scores: " + ", ".join(f"{k}={v}" for k, v in ctx.scores.items()),
    ]
    if ctx.amenity_counts:
        lines.append("Amenities within 1 km: " + ", ".join(f"{k}={v}" for k, v in ctx.amenity_counts.items()))
    if ctx.risks:
        lines.append("Risks: " + "; ".join(f"{r.title} ({r.severity.value}, {r.distance} m)" for r in ctx.risks))
    else:
        lines.append("Risks: none found")
    lines.append(f"Market trend: {ctx.market_trend.value}; estimated price: {ctx.estimated_price}")

    user_msg = "\n".join([
        "Precomputed property analysis follows. Do not recompute numbers.",
        *lines,
        "Write the summary paragraph.",
    ])
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_msg},
    ]


def validate_summary_output(raw_text: str, *, min_chars: int = 40, banned_openers: Sequence[str] = ("{", "[")) -> str:
    """Strip fences and reject empty, too-short or JSON-looking replies."""
    text = _strip_markdown_fences(raw_text or "").strip()
    if len(text) < min_chars:
        raise ValueError("Summary too short")
    if text.startswith(tuple(banned_openers)):
        raise ValueError("Summary looks like structured data")
    return text


def _overall_sentence(ctx: SummaryContext) -> str:
    if ctx.recommendation is Recommendation.BUY:
        verdict = "a strong candidate worth pursuing"
    elif ctx.recommendation is Recommendation.CONSIDER:
        verdict = "worth considering after a closer look"
    else:
        verdict = "hard to recommend at this time"
    return f"This {ctx.area} m² parcel scores {ctx.overall}/100 overall and is {verdict}."


def _amenity_sentence(ctx: SummaryContext) -> str:
    total = sum(ctx.amenity_counts.values())
    amenity_score = ctx.scores.get("amenities", 0)
    if amenity_score >= 70:
        density = "very well served"
    elif amenity_score >= 40:
        density = "reasonably served"
    else:
        density = "thinly served"
    missing = [name for name, count in ctx.amenity_counts.items() if count == 0]
    sentence = f"The area is {density} by amenities, with {total} notable places within 1 km"
    if missing:
        sentence += f" but none for {', '.join(missing)}"
    return sentence + "."


def _risk_sentence(ctx: SummaryContext) -> str:
    if not ctx.risks:
        return "No industrial, power-line or cemetery risks were found nearby."
    worst = ", ".join(r.title.lower() for r in ctx.risks)
    return f"Location risk is {ctx.risk_level.value} ({worst})."


def _market_sentence(ctx: SummaryContext) -> str:
    trend_text = {
        PriceTrend.UP: "rising",
        PriceTrend.DOWN: "softening",
        PriceTrend.STABLE: "stable",
    }[ctx.market_trend]
    return f"Local prices are {trend_text}, with a typical listing around {ctx.estimated_price}."


def _suitability_sentence(ctx: SummaryContext) -> str:
    residential = ctx.scores.get("residential", 0)
    investment = ctx.scores.get("investment", 0)
    uses = []
    if residential >= 65:
        uses.append("a family home")
    if investment >= 65:
        uses.append("a medium-term investment")
    if not uses:
        uses.append("buyers with a specific use in mind")
    return f"It best suits {' or '.join(uses)}."


def fallback_summary(ctx: SummaryContext) -> str:
    """Deterministic summary covering score, amenities, risk, market and suitability."""
    return " ".join([
        _overall_sentence(ctx),
        _amenity_sentence(ctx),
        _risk_sentence(ctx),
        _market_sentence(ctx),
        _suitability_sentence(ctx),
    ])


class SummaryWriter:
    """Produce the summary via Ollama when configured, otherwise from the template."""

    def __init__(self, client: Optional[OllamaClient] = None) -> None:
        self.client = client

    def write(self, ctx: SummaryContext) -> str:
        if self.client is None:
            return fallback_summary(ctx)
        try:
            return validate_summary_output(self.client.chat(build_summary_messages(ctx)))
        except (RuntimeError, ValueError) as exc:
            logger.warning("Narration unavailable; using template summary", extra={"error": str(exc)})
            return fallback_summary(ctx)
