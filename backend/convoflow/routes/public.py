# /convoflow/routes/public.py

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime, timezone

from convoflow.config.settings import settings
from convoflow.utils.dependencies import verify_metrics_access
from convoflow.services.db_service import db_service
from convoflow.services.cache_service import cache_service

# Public endpoints that do not require authentication: the root endpoint and
# the health probes. The /metrics endpoint is protected by an API key when one
# is configured.

router = APIRouter()

@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Convoflow Automation Engine",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }

@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}

@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check(request: Request):
    """Readiness probe: the database answers and the engine has been wired."""
    if not await db_service.health_check():
        raise HTTPException(status_code=503, detail="Service not ready: database unavailable")
    if settings.redis_url and not await cache_service.ping():
        raise HTTPException(status_code=503, detail="Service not ready: cache unavailable")
    if getattr(request.app.state, "orchestrator", None) is None:
        raise HTTPException(status_code=503, detail="Service not ready: automation engine not started")
    return {"status": "ready"}

@router.get("/health/live", summary="Liveness Probe")
async def liveness_check():
    """Kubernetes/Docker liveness probe."""
    return {"status": "alive"}


@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    """Secured Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
