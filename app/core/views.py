"""
Core views providing infrastructure endpoints.

Health checks live here; they are not part of the payments domain.
"""

import logging

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and orchestration probes.

    The database is required. The cache (Redis) backs the settlement
    worker's distributed lock, so a cache outage is reported as degraded
    but does not fail the probe.

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {"status": "healthy", "database": "connected", "cache": "connected"}
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.error("Health check: database unreachable", exc_info=True)
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"

    try:
        cache.set("health_check", "ok", timeout=1)
        ok = cache.get("health_check") == "ok"
        health_status["cache"] = "connected" if ok else "disconnected"
    except Exception:
        logger.warning("Health check: cache unreachable", exc_info=True)
        health_status["cache"] = "disconnected"

    if health_status["cache"] == "disconnected" and health_status["status"] == "healthy":
        health_status["status"] = "degraded"

    status_code = 503 if health_status["status"] == "unhealthy" else 200
    return JsonResponse(health_status, status=status_code)
