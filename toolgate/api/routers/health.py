"""Health check API router."""

from fastapi import APIRouter

from toolgate.infra.flow_state import flow_state_manager
from toolgate.infra.metrics import get_metrics_response

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "toolgate",
        "version": "1.0.0",
        "flow_store": type(flow_state_manager.store).__name__,
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
