"""
Health Endpoints

/health folds the feed and basket checks registered by the lifespan into one
status; /health/live and /health/ready back the container probes.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import settings


router = APIRouter()

HealthCheck = Callable[[], Awaitable[dict[str, Any]]]

# Worst status wins when folding component results
_SEVERITY = {"healthy": 0, "degraded": 1, "unhealthy": 2}


class ComponentHealth(BaseModel):
    status: str
    message: Optional[str] = None
    last_check: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    environment: str
    timestamp: str
    components: dict[str, ComponentHealth]


_component_checks: dict[str, HealthCheck] = {}


def register_health_check(name: str, check_fn: HealthCheck) -> None:
    """Register an async check, e.g. "feed" or "basket"."""
    _component_checks[name] = check_fn


def clear_health_checks() -> None:
    _component_checks.clear()


async def _run_check(check_fn: HealthCheck, now: str) -> ComponentHealth:
    try:
        result = await check_fn()
    except Exception as e:
        return ComponentHealth(status="unhealthy", message=str(e), last_check=now)
    return ComponentHealth(
        status=result.get("status", "healthy"),
        message=result.get("message"),
        last_check=now,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    now = datetime.now(timezone.utc).isoformat()
    components = {
        name: await _run_check(check_fn, now)
        for name, check_fn in _component_checks.items()
    }

    if not components:
        # Lifespan has not registered the aggregator checks
        components["aggregator"] = ComponentHealth(
            status="healthy",
            message="Aggregator not started",
            last_check=now,
        )

    overall = max(
        (c.status for c in components.values()),
        key=lambda s: _SEVERITY.get(s, _SEVERITY["unhealthy"]),
    )

    return HealthResponse(
        status=overall,
        service=settings.service_name,
        version=settings.service_version,
        environment=settings.environment,
        timestamp=now,
        components=components,
    )


@router.get("/health/live")
async def liveness_check() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Ready once the basket has been bootstrapped.

    Without an aggregator on app.state the service reports ready.
    """
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is not None and not aggregator.is_bootstrapped:
        return JSONResponse(status_code=503, content={"status": "not_ready"})
    return {"status": "ready"}
