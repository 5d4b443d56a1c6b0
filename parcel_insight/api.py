"""HTTP API for the property analysis service."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from .domain import AnalysisRequest, AnalysisResult
from .errors import InvalidGeometry
from .pipeline import PropertyAnalysisPipeline
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="api")

router = APIRouter()


class PrefetchStatus(BaseModel):
    """Snapshot of the background prefetch queue."""
    enabled: bool
    queue_length: int = 0
    processing: bool = False
    running: bool = False
    oldest_task_age_seconds: Optional[float] = None


class HealthResponse(BaseModel):
    status: str
    cache_entries: int


def get_services(request: Request):
    """Services built by the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return services


def get_pipeline(services=Depends(get_services)) -> PropertyAnalysisPipeline:
    return services.pipeline


@router.post("/analyze-property", response_model=AnalysisResult)
def analyze_property(req: AnalysisRequest, pipeline: PropertyAnalysisPipeline = Depends(get_pipeline)):
    """Analyse a parcel polygon and return scores, amenities, risks and market data."""
    logger.info("Analysing parcel", extra={"vertices": len(req.coordinates), "radius": req.radius})
    try:
        return pipeline.analyze(req)
    except InvalidGeometry as exc:
        logger.info("Rejected parcel geometry", extra={"error": str(exc)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/prefetch/status", response_model=PrefetchStatus)
def prefetch_status(services=Depends(get_services)):
    """Report the prefetch queue, or ``enabled: false`` when prefetching is off."""
    if services.prefetcher is None:
        return PrefetchStatus(enabled=False)
    return PrefetchStatus(enabled=True, **services.prefetcher.queue_status())


@router.get("/health", response_model=HealthResponse)
def health(services=Depends(get_services)):
    return HealthResponse(status="ok", cache_entries=services.cache.size())
