"""Health check routes."""

from fastapi import APIRouter, Response, status
from loguru import logger

from src.connections.postgres import get_postgres
from src.connections.redis import get_redis

health_log = logger.bind(module="Health")

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health() -> dict:
    """Liveness: the process answers."""
    return {"status": True}


@router.get("/health/ready")
async def ready(response: Response) -> dict:
    """Readiness: PostgreSQL and Redis both answer."""
    checks = {"postgres": False, "redis": False}

    try:
        postgres = await get_postgres()
        checks["postgres"] = await postgres.ping()
    except Exception as e:
        health_log.warning(f"PostgreSQL not ready: {e}")

    try:
        redis = await get_redis()
        checks["redis"] = bool(await redis.client.ping())
    except Exception as e:
        health_log.warning(f"Redis not ready: {e}")

    ok = all(checks.values())
    if not ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": ok, **checks}
