"""
Core views providing infrastructure endpoints.

These views are not part of the payment domain but are needed to run it,
such as the health check used by container orchestration.
"""

from django.db import DatabaseError, connection
from django.http import JsonResponse
from django_redis import get_redis_connection
from redis.exceptions import RedisError


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Both components are required: order writes need the database for state
    and Redis for the per-order lock.

    Returns:
        JsonResponse with overall status and per-component health.

    HTTP Status Codes:
        200: All systems operational
        503: One or more systems unhealthy

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "lock_store": "connected"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "lock_store": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        health_status["database"] = "disconnected"

    try:
        get_redis_connection("default").ping()
        health_status["lock_store"] = "connected"
    except (RedisError, NotImplementedError):
        health_status["lock_store"] = "disconnected"

    if "disconnected" in (health_status["database"], health_status["lock_store"]):
        health_status["status"] = "unhealthy"
        return JsonResponse(health_status, status=503)

    return JsonResponse(health_status, status=200)
