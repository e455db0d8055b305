"""
LabelDesk Backend — Label Route Handlers
==========================================

What:  HTTP surface of the label lifecycle.
Why:   Keeping HTTP concerns out of the service lets bulk jobs and tests
       call the same operations without a request.
How:   Thin handlers: read the caller from X-User-ID, delegate to
       LabelLifecycleService, let the global handlers format errors.
Who:   The label editor frontend.

Endpoints:
    POST   /api/projects/{project_id}/labels              create
    GET    /api/projects/{project_id}/labels              list
    POST   /api/projects/{project_id}/labels/bulk         bulk create
    POST   /api/projects/{project_id}/labels/bulk-unique  bulk create, per-item content
    GET    /api/labels/{label_id}                         detail
    PATCH  /api/labels/{label_id}                         update (409 on stale version)
    DELETE /api/labels/{label_id}                         delete
    POST   /api/labels/{label_id}/duplicate               duplicate
    POST   /api/labels/{label_id}/thumbnail-url           re-sign thumbnail URL
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from labeldesk.dependencies import get_current_user_id, get_label_service
from labeldesk.schemas.label import (
    BulkCreateRequest,
    BulkCreateResponse,
    BulkUniqueRequest,
    ErrorResponse,
    LabelCreate,
    LabelListResponse,
    LabelResponse,
    LabelUpdate,
    ThumbnailUrlResponse,
)
from labeldesk.services.label_service import LabelLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Labels"])

_NOT_FOUND = {404: {"description": "Project or label not found", "model": ErrorResponse}}
_BAD_INPUT = {400: {"description": "Invalid input", "model": ErrorResponse}}


# ── Project-scoped ────────────────────────────────────────────────────────

@router.post(
    "/projects/{project_id}/labels",
    response_model=LabelResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**_BAD_INPUT, **_NOT_FOUND},
    summary="Create a label with a generated unique name",
)
async def create_label(
    project_id: UUID,
    body: LabelCreate,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> LabelResponse:
    return await service.create_label(
        user_id=user_id,
        project_id=project_id,
        name=body.name,
        description=body.description,
        width=body.width,
        height=body.height,
        content=body.content,
        thumbnail=body.thumbnail,
    )


@router.get(
    "/projects/{project_id}/labels",
    response_model=LabelListResponse,
    responses=_NOT_FOUND,
    summary="List the labels of a project",
)
async def list_labels(
    project_id: UUID,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> LabelListResponse:
    result = await service.list_labels(user_id=user_id, project_id=project_id)
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.post(
    "/projects/{project_id}/labels/bulk",
    response_model=BulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**_BAD_INPUT, **_NOT_FOUND},
    summary="Create several labels from one template",
    description=(
        "Not atomic: labels created before a failing item stay created. "
        "Per-item failures are listed in `failures`."
    ),
)
async def create_bulk(
    project_id: UUID,
    body: BulkCreateRequest,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> BulkCreateResponse:
    return await service.create_bulk(
        user_id=user_id,
        project_id=project_id,
        count=body.count,
        template=body.template,
    )


@router.post(
    "/projects/{project_id}/labels/bulk-unique",
    response_model=BulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**_BAD_INPUT, **_NOT_FOUND},
    summary="Create several labels, each with its own content",
)
async def create_bulk_unique(
    project_id: UUID,
    body: BulkUniqueRequest,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> BulkCreateResponse:
    return await service.create_bulk_unique(
        user_id=user_id,
        project_id=project_id,
        items=body.items,
        base_name=body.base_name,
    )


# ── Label-scoped ──────────────────────────────────────────────────────────

@router.get(
    "/labels/{label_id}",
    response_model=LabelResponse,
    responses=_NOT_FOUND,
    summary="Get a single label",
)
async def get_label(
    label_id: UUID,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> LabelResponse:
    result = await service.get_label(user_id=user_id, label_id=label_id)
    # Labels are mutable and user-specific: never store in shared caches
    response.headers["Cache-Control"] = "private, no-cache"
    return result


@router.patch(
    "/labels/{label_id}",
    response_model=LabelResponse,
    responses={
        **_BAD_INPUT,
        **_NOT_FOUND,
        409: {"description": "expected_version is stale", "model": ErrorResponse},
    },
    summary="Update a label (optimistic concurrency)",
)
async def update_label(
    label_id: UUID,
    body: LabelUpdate,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> LabelResponse:
    return await service.update_label(
        user_id=user_id,
        label_id=label_id,
        patch=body.patch(),
        expected_version=body.expected_version,
        thumbnail=body.thumbnail,
    )


@router.delete(
    "/labels/{label_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_NOT_FOUND,
    summary="Delete a label and its thumbnails",
)
async def delete_label(
    label_id: UUID,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> Response:
    await service.delete_label(user_id=user_id, label_id=label_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/labels/{label_id}/duplicate",
    response_model=LabelResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_NOT_FOUND,
    summary="Duplicate a label under a '... Copy' name",
)
async def duplicate_label(
    label_id: UUID,
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> LabelResponse:
    return await service.duplicate_label(user_id=user_id, label_id=label_id)


@router.post(
    "/labels/{label_id}/thumbnail-url",
    response_model=ThumbnailUrlResponse,
    responses={**_BAD_INPUT, **_NOT_FOUND},
    summary="Sign a fresh thumbnail URL",
)
async def refresh_thumbnail_url(
    label_id: UUID,
    size: str = Query(default="md", description="Thumbnail size: sm, md or lg"),
    user_id: str = Depends(get_current_user_id),
    service: LabelLifecycleService = Depends(get_label_service),
) -> ThumbnailUrlResponse:
    return await service.refresh_thumbnail_url(user_id=user_id, label_id=label_id, size=size)
