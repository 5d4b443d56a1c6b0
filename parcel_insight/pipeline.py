"""End-to-end property analysis: geometry, concurrent data fetch, risks, scoring."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from .amenity_service import AmenityFetcher
from .concurrency import gather_isolated
from .domain import AnalysisRequest, AnalysisResult, Category, Layer
from .geometry import calculate_parcel_metrics
from .market_service import MarketPriceEstimator
from .narration import SummaryWriter
from .prefetch import PrefetchScheduler
from .risk_assessor import assess_risks
from .scoring_engine import score
from utils.logging_utils import get_tagged_logger, log_duration

logger = get_tagged_logger(__name__, tag="pipeline")


class PropertyAnalysisPipeline:
    """Run one analysis request through every stage and assemble the result."""

    def __init__(
        self,
        fetcher: AmenityFetcher,
        estimator: MarketPriceEstimator,
        writer: Optional[SummaryWriter] = None,
        prefetcher: Optional[PrefetchScheduler] = None,
        *,
        max_workers: int = 4,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.fetcher = fetcher
        self.estimator = estimator
        self.writer = writer or SummaryWriter()
        self.prefetcher = prefetcher
        self.max_workers = max_workers
        self._now = now

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """
        Analyse a parcel.

        Only :class:`~parcel_insight.errors.InvalidGeometry` escapes: a
        failed amenity, infrastructure or market stage degrades to its
        empty value (the market to a floor estimate).
        """
        metrics = calculate_parcel_metrics(request.coordinates)
        center, radius = metrics.center, request.radius
        categories = [Category(c) for c in request.categories]
        layers = [Layer(layer) for layer in request.layers]

        fallbacks = {
            "amenities": lambda: [],
            "infrastructure": lambda: {layer: [] for layer in layers},
            "market": lambda: self.estimator.floor_snapshot(center, source_type="estimated_fallback"),
        }

        with log_duration(logger, "Analysed parcel", radius=radius) as stats:
            gathered = gather_isolated(
                {
                    "amenities": lambda: self.fetcher.fetch_amenities(
                        center,
                        radius,
                        categories,
                        include_small_shops=request.include_small_shops,
                        max_results=request.max_amenities,
                    ),
                    "infrastructure": lambda: self.fetcher.fetch_infrastructure(center, radius, layers),
                    "market": lambda: self.estimator.estimate_prices(center, radius),
                },
                lambda stage, exc: fallbacks[stage](),
                max_workers=self.max_workers,
            )
            amenities = gathered["amenities"]
            infrastructure = gathered["infrastructure"]
            market = gathered["market"]

            risks = assess_risks(center, infrastructure)
            analysis = score(metrics, amenities, infrastructure, market, risks, self.writer)
            stats.update(
                amenities=len(amenities),
                overall=analysis.overall,
                recommendation=analysis.recommendation.value,
            )

        if self.prefetcher is not None:
            self.prefetcher.notify(center, radius, categories, layers)

        return AnalysisResult(
            area=metrics.area,
            orientation=metrics.orientation,
            frontage_count=metrics.frontage_count,
            center=center,
            amenities=amenities,
            infrastructure=infrastructure,
            market_data=market,
            ai_analysis=analysis,
            risks=risks.findings,
            overall_risk_level=risks.overall_level,
            risk_score=risks.risk_score,
            generated_at=self._now(),
            meta={
                "radius": radius,
                "categories": [c.value for c in categories],
                "layers": [layer.value for layer in layers],
                "amenity_count": len(amenities),
            },
        )
