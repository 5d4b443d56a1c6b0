"""Price statistics, synthetic monthly history and trend analysis."""

from __future__ import annotations

import math
import random
from datetime import datetime, timezone
from statistics import pstdev
from typing import List, Optional, Sequence

from .domain import PriceHistoryPoint, PriceListing, PriceTrend, TrendAnalysis

TREND_THRESHOLD = 0.05
HISTORY_MONTHS = 12


def determine_trend(current_avg_per_sqm: float, base_per_sqm: float) -> PriceTrend:
    """``up``/``down`` when the realized price deviates more than 5% from the baseline."""
    if base_per_sqm <= 0:
        return PriceTrend.STABLE
    diff = (current_avg_per_sqm - base_per_sqm) / base_per_sqm
    if diff > TREND_THRESHOLD:
        return PriceTrend.UP
    if diff < -TREND_THRESHOLD:
        return PriceTrend.DOWN
    return PriceTrend.STABLE


def summarize_prices(listings: Sequence[PriceListing]) -> dict:
    """min/avg/max/median and mean price per m² of a non-empty listing set."""
    prices = sorted(listing.price for listing in listings)
    count = len(prices)
    per_sqm = [listing.price_per_sqm for listing in listings if listing.price_per_sqm > 0]
    avg = sum(prices) / count
    return {
        "min_price": int(prices[0]),
        "max_price": int(prices[-1]),
        "avg_price": int(round(avg)),
        "median_price": int(prices[count // 2]),
        "listing_count": count,
        "price_per_sqm": int(round(sum(per_sqm) / len(per_sqm))) if per_sqm else int(round(avg / 100)),
    }


def _month_shift(now: datetime, months_back: int) -> datetime:
    year = now.year
    month = now.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return now.replace(year=year, month=month, day=1)


def generate_price_history(
    avg_price: int,
    price_per_sqm: int,
    listing_count: int,
    *,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> List[PriceHistoryPoint]:
    """
    Synthesize twelve monthly points ending at the current values.

    Older months are discounted by a long-term growth factor (0.8% a month)
    and modulated by a ±10% seasonal wave and ±5% noise.
    """
    rng = rng or random.Random()
    now = now or datetime.now(timezone.utc)
    points: List[PriceHistoryPoint] = []
    for i in range(HISTORY_MONTHS - 1, -1, -1):
        when = _month_shift(now, i)
        seasonal = 1 + math.sin(when.month / 12 * 2 * math.pi) * 0.1
        growth = 1 + (HISTORY_MONTHS - 1 - i) * 0.008
        base_growth = 1 + (HISTORY_MONTHS - 1) * 0.008
        noise = 0.95 + rng.random() * 0.1
        factor = seasonal * noise * growth / base_growth
        points.append(
            PriceHistoryPoint(
                month=when.strftime("%Y-%m"),
                avg_price=int(round(avg_price * factor)),
                price_per_sqm=int(round(price_per_sqm * factor)),
                listing_count=max(10, int(round(listing_count * (0.8 + rng.random() * 0.4)))),
            )
        )
    points[-1] = points[-1].model_copy(
        update={"avg_price": avg_price, "price_per_sqm": price_per_sqm, "listing_count": max(listing_count, 0)}
    )
    return points


def _pct(new: float, old: float) -> float:
    return round((new - old) / old * 100, 2) if old else 0.0


def _narrative(direction: PriceTrend, monthly: float, yearly: float, confidence: int) -> str:
    if direction is PriceTrend.UP:
        head = f"Prices are rising ({monthly:+.1f}% last month, {yearly:+.1f}% over the year)."
    elif direction is PriceTrend.DOWN:
        head = f"Prices are softening ({monthly:+.1f}% last month, {yearly:+.1f}% over the year)."
    else:
        head = f"Prices are broadly flat ({monthly:+.1f}% last month, {yearly:+.1f}% over the year)."
    if confidence >= 70:
        tail = "Listing volume and low volatility make this reading reliable."
    elif confidence >= 40:
        tail = "Treat this as a moderate-confidence signal."
    else:
        tail = "Thin or volatile data; confidence is low."
    return f"{head} {tail}"


def analyze_price_trends(history: Sequence[PriceHistoryPoint]) -> TrendAnalysis:
    """Month/quarter/year changes, volatility-weighted confidence and a 3-month projection."""
    if len(history) < 3:
        return TrendAnalysis(narrative="Insufficient data for trend analysis.")

    prices = [p.price_per_sqm for p in history]
    current = prices[-1]
    monthly = _pct(current, prices[-2])
    quarterly = _pct(current, prices[-4]) if len(prices) >= 4 else _pct(current, prices[0])
    yearly = _pct(current, prices[0])

    if monthly > 2 or quarterly > 5:
        direction = PriceTrend.UP
    elif monthly < -2 or quarterly < -5:
        direction = PriceTrend.DOWN
    else:
        direction = PriceTrend.STABLE

    returns = [(b - a) / a for a, b in zip(prices, prices[1:]) if a]
    volatility = min(1.0, pstdev(returns) * 10) if len(returns) > 1 else 0.0
    avg_listings = sum(p.listing_count for p in history) / len(history)
    confidence = int(round(max(0.0, min(100.0, (1 - volatility) * min(avg_listings / 50, 1.0) * 100))))

    momentum = (2 * monthly + quarterly / 3) / 3
    projected = int(round(current * (1 + momentum * 3 * 0.8 / 100)))

    return TrendAnalysis(
        monthly_change=monthly,
        quarterly_change=quarterly,
        yearly_change=yearly,
        direction=direction,
        volatility=round(volatility, 3),
        confidence=confidence,
        narrative=_narrative(direction, monthly, yearly, confidence),
        projected_price=max(0, projected),
    )
