# phi_guard/api/routers/health.py

from fastapi import APIRouter, Depends, Request

from phi_guard.api.dependencies import get_metrics
from phi_guard.config.settings import get_settings
from phi_guard.observability.metrics import MetricsCollector

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Liveness with the correlation ID from request state."""
    settings = get_settings()
    return {
        "status": "ok",
        "correlation_id": request.state.correlation_id,
        "environment": settings.environment,
        "version": settings.version,
    }


@router.get("/metrics")
async def metrics(collector: MetricsCollector = Depends(get_metrics)):
    """Counters and latency summaries. Labels are references only."""
    return collector.export_metrics()
