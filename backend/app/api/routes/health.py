"""Health & Readiness Probes — liveness and readiness endpoints for container orchestration.

Invariants:
    - GET /health/ always returns 200 if process is up (liveness)
    - GET /health/ready returns 503 if database is unreachable (readiness)

Design Decisions:
    - Separate liveness/readiness: Kubernetes best practice — liveness restarts,
      readiness removes from load balancer (ADR: production readiness)
    - db_manager read from the module at call time: it is assigned by the lifespan
"""

import logging
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

import app.infrastructure.database as database
from app.api.deps import get_event_hub
from app.services.event_hub import EventHub

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check(hub: EventHub = Depends(get_event_hub)):
    """Basic liveness probe. Returns 200 if the process is up."""
    return {
        "status": "healthy",
        "service": "propertychain-api",
        "version": "1.0.0",
        "eventConnections": len(hub),
    }


@router.get("/ready")
async def readiness_check():
    """Readiness probe — includes database connectivity."""
    manager = database.db_manager
    db_ok = await manager.health_check() if manager else False
    if not db_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "reason": "database_unavailable",
            },
        )
    return {"status": "ready", "checks": {"database": "healthy"}}
