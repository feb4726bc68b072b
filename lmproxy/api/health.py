"""Health and metrics endpoints."""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from lmproxy.api.deps import get_health_service, get_metrics
from lmproxy.services.health import HealthService
from lmproxy.services.metrics import MetricsCollector

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(health: HealthService = Depends(get_health_service)):
    """Health check endpoint."""
    report = health.get_health()
    if report["status"] == "healthy":
        return report
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=report)


@router.get("/health/live")
async def liveness_check(health: HealthService = Depends(get_health_service)):
    return health.get_simple_health()


@router.get("/metrics", tags=["metrics"])
async def get_request_metrics(metrics: MetricsCollector = Depends(get_metrics)):
    """Get request metrics."""
    return metrics.get_summary()


@router.post("/metrics/reset", tags=["metrics"])
async def reset_metrics(metrics: MetricsCollector = Depends(get_metrics)):
    """Reset all metrics."""
    metrics.reset()
    return {"message": "Metrics reset"}
