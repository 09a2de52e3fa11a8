"""Health check endpoint for monitoring service status."""

import asyncio
from datetime import UTC, datetime

import redis.asyncio as redis
from starlette.requests import Request
from starlette.responses import JSONResponse

from vitals.lib.alerts import STORAGE_ERRORS
from vitals.lib.config import get_settings
from vitals.lib.db import get_db
from vitals.logging import get_logger

logger = get_logger("server.api.health")


async def _check_database() -> tuple[bool, str]:
    """Check if database is accessible."""
    if get_settings().mock_store:
        return True, "in-memory"
    try:
        async with get_db() as db:
            await db.fetchone("SELECT 1")
        return True, "ok"
    except STORAGE_ERRORS as e:
        logger.error("Database health check failed: %s", e)
        return False, str(e)


async def _check_redis() -> tuple[bool, str]:
    """Check if Redis is accessible."""
    try:
        client = redis.from_url(get_settings().eventbus.redis_url)
        await client.ping()
        await client.aclose()
        return True, "ok"
    except (redis.RedisError, OSError) as e:
        logger.error("Redis health check failed: %s", e)
        return False, str(e)


async def health_check(request: Request) -> JSONResponse:
    """Return health status of the application and its dependencies."""
    (db_ok, db_status), (redis_ok, redis_status) = await asyncio.gather(
        _check_database(),
        _check_redis(),
    )

    is_healthy = db_ok and redis_ok

    return JSONResponse(
        {
            "status": "healthy" if is_healthy else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {
                "database": {"ok": db_ok, "status": db_status},
                "redis": {"ok": redis_ok, "status": redis_status},
            },
        },
        status_code=200 if is_healthy else 503,
    )
