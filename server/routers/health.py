"""
Health check endpoints for deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (is the shared-document service reachable?)
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    Always 200 while the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check - can the app serve rooms?

    Pings Redis through the room store. Returns 503 if the store is
    missing or unreachable.
    """
    checks = {}
    healthy = True

    store = getattr(request.app.state, "store", None)
    if store is None:
        checks["redis"] = {"status": "not_configured"}
        healthy = False
    else:
        try:
            await store.redis.ping()
            checks["redis"] = {"status": "ok"}
            checks["rooms"] = {"active": len(await store.get_active_rooms())}
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            checks["redis"] = {"status": "error", "message": str(e)}
            healthy = False

    return Response(
        content=json.dumps({
            "status": "ok" if healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=200 if healthy else 503,
        media_type="application/json",
    )
