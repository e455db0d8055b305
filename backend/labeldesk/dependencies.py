"""
LabelDesk Backend — FastAPI Dependencies
==========================================

What:  Wires per-request collaborators for the route handlers.
How:   The blob store and cache store are process-wide (built in the app
       lifespan and kept on `app.state`); the SQL repositories and the
       LabelLifecycleService are built per request around that request's
       database session.
Who:   Route handlers via `Depends(...)`. Tests override these with
       `app.dependency_overrides`.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from labeldesk.database import get_db_session
from labeldesk.exceptions import AuthenticationError
from labeldesk.repositories.label_repository import SqlLabelStore
from labeldesk.repositories.project_access import SqlProjectAccess
from labeldesk.services.asset_coordinator import AssetCoordinator
from labeldesk.services.blob_store import BlobStore
from labeldesk.services.cache_invalidator import CacheInvalidator
from labeldesk.services.cache_store import CacheStore
from labeldesk.services.label_service import LabelLifecycleService


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.cache_store


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, as set by the authenticating gateway."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Missing X-User-ID header")
    return x_user_id.strip()


async def get_label_service(
    db: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_blob_store),
    cache_store: CacheStore = Depends(get_cache_store),
) -> LabelLifecycleService:
    return LabelLifecycleService(
        labels=SqlLabelStore(db),
        projects=SqlProjectAccess(db),
        assets=AssetCoordinator(blob_store, cache_store),
        cache=CacheInvalidator(cache_store),
    )
