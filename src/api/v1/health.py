"""Health check endpoints for the SheShield escalation API.

Provides liveness and readiness probes.  The readiness check verifies that
the telephony gateway was configured and that the call log and checkpoint
stores answer.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float
    active_chains: int = 0


class ReadinessResponse(BaseModel):
    """Readiness check response with individual service statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 while the process can handle requests.  Does *not* check
    downstream dependencies.
    """
    start_time: float = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time
    orchestrator = getattr(request.app.state, "orchestrator", None)

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
        active_chains=len(orchestrator.active_chains) if orchestrator is not None else 0,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    A missing telephony configuration or an unreachable call log marks the
    instance as degraded.  Checkpoints falling back to memory is reported
    but does not fail the probe.
    """
    checks: dict[str, str] = {}
    all_ok = True

    # -- Check telephony gateway -------------------------------------------
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        checks["telephony"] = "ok"
    else:
        error = getattr(request.app.state, "startup_error", None)
        checks["telephony"] = f"error: {error}" if error else "not_initialised"
        all_ok = False

    # -- Check call log ----------------------------------------------------
    call_log = getattr(request.app.state, "call_log", None)
    if call_log is not None:
        try:
            await call_log.list_attempts("_health_check")
            checks["call_log"] = "ok"
        except Exception as exc:
            checks["call_log"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["call_log"] = "not_configured"
        all_ok = False

    # -- Check checkpoint store --------------------------------------------
    checkpoints = getattr(request.app.state, "checkpoints", None)
    if checkpoints is not None:
        try:
            pending = await checkpoints.list_pending()
            backend = "ok" if checkpoints.durable else "in_memory"
            checks["checkpoints"] = f"{backend} ({len(pending)} pending)"
        except Exception as exc:
            checks["checkpoints"] = f"error: {exc!s}"
    else:
        checks["checkpoints"] = "not_configured"

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)
