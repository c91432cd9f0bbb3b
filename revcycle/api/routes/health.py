"""
Health Check Routes
Service health monitoring endpoints
Source: https://microservices.io/patterns/observability/health-check-api.html
"""

from typing import Any

from fastapi import APIRouter, Depends

from revcycle.api.deps import get_engine
from revcycle.services.engine import RevenueCycleEngine

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(engine: RevenueCycleEngine = Depends(get_engine)) -> dict[str, Any]:
    """Liveness plus the state of the scoring providers and the sync loop."""
    scorer_health = {}
    get_all_status = getattr(engine.scorer, "get_all_status", None)
    if get_all_status is not None:
        scorer_health = {name: h.status.value for name, h in get_all_status().items()}

    return {
        "status": "healthy",
        "service": "revcycle-api",
        "checks": {
            "risk_scoring": scorer_health,
            "payment_gateway": engine.payment_gateway.mode.value,
            "risk_sync": "running" if engine.risk_sync.is_running else "stopped",
        },
    }
