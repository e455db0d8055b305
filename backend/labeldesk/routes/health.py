"""
LabelDesk Backend — Health Check Route
========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database (critical), thumbnail storage and cache
       (non-critical) and returns an aggregate status.
Who:   Docker health checks, load balancers, monitoring.

Status levels:
    - healthy:   everything reachable
    - degraded:  storage or cache down; labels still work, thumbnails or
                 caching don't
    - unhealthy: database down
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text

from labeldesk import __version__
from labeldesk.database import engine
from labeldesk.dependencies import get_blob_store, get_cache_store
from labeldesk.schemas.label import HealthResponse
from labeldesk.services.blob_store import BlobStore, NullBlobStore
from labeldesk.services.cache_store import CacheStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    blob_store: BlobStore = Depends(get_blob_store),
    cache_store: CacheStore = Depends(get_cache_store),
) -> HealthResponse:
    db_status = "connected"
    storage_status = "available"
    cache_status = "available"
    overall = "healthy"

    # ── Database ──────────────────────────────────────────────────────────
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Thumbnail storage ─────────────────────────────────────────────────
    if isinstance(blob_store, NullBlobStore):
        storage_status = "disabled"
    elif not await blob_store.health_check():
        storage_status = "unavailable"
        overall = "degraded" if overall != "unhealthy" else overall

    # ── Cache ─────────────────────────────────────────────────────────────
    if not await cache_store.health_check():
        cache_status = "unavailable"
        overall = "degraded" if overall != "unhealthy" else overall

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        cache=cache_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
