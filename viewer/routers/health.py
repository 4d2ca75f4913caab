"""
Health check endpoints for deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (is the live feed usable?)
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_redis_client = None
_session = None


def set_health_dependencies(
    redis_client=None,
    session=None,
):
    """Set dependencies for health checks."""
    global _redis_client, _session
    _redis_client = redis_client
    _session = session


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app follow the live feed?

    Reports the session's connection status and pings Redis when the broker
    transport is configured. Returns 503 if either is failing.
    """
    checks = {}
    overall_healthy = True

    if _session is not None:
        status = _session.status.value
        checks["live_feed"] = {"status": status}
        if status == "error":
            checks["live_feed"]["message"] = _session.state.error_message
            overall_healthy = False
    else:
        checks["live_feed"] = {"status": "not_configured"}

    if _redis_client is not None:
        try:
            await _redis_client.ping()
            checks["redis"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            checks["redis"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["redis"] = {"status": "not_configured"}

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )
