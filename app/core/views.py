"""
Core views providing infrastructure endpoints.

Only the health check lives here; business endpoints belong to their apps.
"""

from django.conf import settings
from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for load balancers and container probes.

    Reports database and cache connectivity plus whether the payment
    gateway credentials are configured. Only the database is critical:
    the cache backs distributed locks but degrades gracefully, and a
    missing gateway key only disables online payments.

    Returns:
        JsonResponse, 200 when healthy and 503 when the database is down.

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "payment_gateway": "configured"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "payment_gateway": (
            "configured" if settings.PAYMONGO_SECRET_KEY else "not_configured"
        ),
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        from django.core.cache import cache

        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        health_status["cache"] = "disconnected"

    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)
