"""Health check endpoints with graceful degradation."""

import asyncio
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from fileswift.api.deps import get_services
from fileswift.rate_limit import limiter
from fileswift.schemas.upload import UploadHealth
from fileswift.services.container import UploadServices

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class ServiceStatus(BaseModel):
    """Status of an individual dependency."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: Optional[str] = None


class UploadHealthDetail(BaseModel):
    status: str  # "healthy", "degraded", "unhealthy"
    version: str
    services: list[ServiceStatus]


def _directory_writable(path) -> bool:
    try:
        os.makedirs(path, exist_ok=True)
    except OSError:
        return False
    return os.access(path, os.W_OK)


async def check_storage(services: UploadServices) -> ServiceStatus:
    settings = services.settings
    for path in (settings.chunk_root, settings.assembled_root):
        if not await asyncio.to_thread(_directory_writable, path):
            return ServiceStatus(name="storage", status="unhealthy", message=f"{path} is not writable")
    return ServiceStatus(name="storage", status="healthy")


async def check_redis(services: UploadServices) -> ServiceStatus:
    """Check Redis connectivity with graceful handling."""
    try:
        await services.jobs.ping()
        return ServiceStatus(name="redis", status="healthy")
    except Exception as e:
        logger.debug(f"Redis health check failed: {e}")
        return ServiceStatus(name="redis", status="unhealthy", message=str(e))


@router.get("/health")
async def liveness() -> dict:
    """Liveness check."""
    return {"status": "ok"}


@router.get("/api/health/upload", response_model=UploadHealth)
async def upload_health(services: UploadServices = Depends(get_services)) -> UploadHealth:
    """Whether uploads can currently be accepted."""
    storage = await check_storage(services)
    return UploadHealth(upload_ready=storage.status == "healthy")


@router.get("/api/health/upload/detailed", response_model=UploadHealthDetail)
@limiter.limit("60/minute")
async def upload_health_detailed(
    request: Request,
    services: UploadServices = Depends(get_services),
) -> UploadHealthDetail:
    """
    Storage and Redis status.

    Storage down means uploads cannot be accepted. Redis down only degrades
    the service: rate limiting fails open and status lookups fail.
    """
    storage = await check_storage(services)
    redis_status = await check_redis(services)

    if storage.status != "healthy":
        overall = "unhealthy"
    elif redis_status.status != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return UploadHealthDetail(
        status=overall,
        version=services.settings.app_version,
        services=[storage, redis_status],
    )
