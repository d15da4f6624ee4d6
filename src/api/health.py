"""Health check route."""

import logging

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.db.session import get_db
from src.schemas.schemas import HealthResponse
from src.services.storage import StorageService, get_storage

router = APIRouter(tags=["System"])

logger = logging.getLogger(__name__)

settings = get_settings()

VERSION = "1.0.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the service and its dependencies.",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """
    Health check endpoint.

    Returns the status of:
    - Database connection
    - Redis connection (rate limit storage)
    - Object storage connection
    """
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        db_status = "error"

    redis_status = "ok"
    try:
        client = redis.from_url(settings.redis_url, socket_connect_timeout=2)
        try:
            await client.ping()
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        redis_status = "error"

    storage_status = "ok" if await run_in_threadpool(storage.health_check) else "error"

    overall_status = "healthy"
    if any(s == "error" for s in [redis_status, storage_status, db_status]):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=VERSION,
        database=db_status,
        redis=redis_status,
        storage=storage_status,
    )
