"""
LabelDesk Backend — Pydantic Request/Response Schemas
=======================================================

What:  API contract for the label endpoints.
Why:   Shape errors are rejected with 422 before any business logic runs.
How:   FastAPI validates request bodies against these models and serializes
       responses from them. Business limits that depend on configuration
       (name length, dimension ceiling, bulk count) are enforced by the
       lifecycle service, so they apply to every caller and not only HTTP.
Who:   Route handlers and LabelLifecycleService (return types).

Thumbnail payloads travel as strings: a base64 body or a data URL
("data:image/png;base64,...").
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from labeldesk.repositories.label_repository import LabelRecord


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class LabelCreate(BaseModel):
    """
    Body of POST /api/projects/{project_id}/labels.

    `name` is a base: the stored name is always made unique within the
    project ("Shipping" → "Shipping 1", "Shipping 2", ...).
    """
    name: Optional[str] = Field(default=None, description="Base name (default 'New Label')")
    description: Optional[str] = Field(default=None)
    width: Optional[float] = Field(default=None, gt=0, description="Width in mm")
    height: Optional[float] = Field(default=None, gt=0, description="Height in mm")
    content: Optional[Dict[str, Any]] = Field(default=None, description="Canvas document")
    thumbnail: Optional[str] = Field(default=None, description="Base64 or data URL image")


class LabelUpdate(BaseModel):
    """
    Body of PATCH /api/labels/{label_id}.

    Only fields present in the body are changed. When `expected_version` is
    given, the update only applies if the stored version still matches it;
    otherwise the response is 409 with the current version.
    """
    name: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None)
    width: Optional[float] = Field(default=None, gt=0)
    height: Optional[float] = Field(default=None, gt=0)
    content: Optional[Dict[str, Any]] = Field(default=None)
    thumbnail: Optional[str] = Field(default=None)
    expected_version: Optional[int] = Field(default=None, ge=1)

    def patch(self) -> Dict[str, Any]:
        """Mutable fields the client actually sent."""
        return self.model_dump(
            exclude_unset=True,
            exclude={"expected_version", "thumbnail"},
        )


class LabelTemplate(BaseModel):
    """Shared values for every label of a bulk create."""
    name: Optional[str] = Field(default=None, description="Base name for the generated names")
    description: Optional[str] = Field(default=None)
    width: Optional[float] = Field(default=None, gt=0)
    height: Optional[float] = Field(default=None, gt=0)
    content: Optional[Dict[str, Any]] = Field(default=None)


class BulkCreateRequest(BaseModel):
    count: int = Field(ge=1, description="How many labels to create")
    template: Optional[LabelTemplate] = Field(default=None)


class BulkUniqueItem(BaseModel):
    """One label of a bulk-unique create; the name is always generated."""
    description: Optional[str] = Field(default=None)
    width: Optional[float] = Field(default=None, gt=0)
    height: Optional[float] = Field(default=None, gt=0)
    content: Optional[Dict[str, Any]] = Field(default=None)
    thumbnail: Optional[str] = Field(default=None)


class BulkUniqueRequest(BaseModel):
    items: List[BulkUniqueItem] = Field(min_length=1)
    base_name: Optional[str] = Field(default=None)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class LabelResponse(BaseModel):
    """
    Full representation of a label.

    `thumbnail_ref` is the stored path; `thumbnail_url` is a signed,
    time-limited URL for it (null when there is no thumbnail or storage is
    degraded).
    """
    id: uuid.UUID
    project_id: uuid.UUID
    name: str
    description: str
    width: float
    height: float
    content: Dict[str, Any]
    thumbnail_ref: Optional[str] = None
    thumbnail_url: Optional[str] = None
    version: int = Field(description="Optimistic concurrency token")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LabelRecord, thumbnail_url: Optional[str] = None) -> "LabelResponse":
        return cls(
            id=record.id,
            project_id=record.project_id,
            name=record.name,
            description=record.description,
            width=record.width,
            height=record.height,
            content=record.content,
            thumbnail_ref=record.thumbnail_ref,
            thumbnail_url=thumbnail_url,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class LabelListResponse(BaseModel):
    labels: List[LabelResponse]
    total_count: int


class BulkItemFailure(BaseModel):
    index: int = Field(description="Zero-based position in the request")
    message: str


class BulkCreateResponse(BaseModel):
    """
    Outcome of a bulk create. The operation is not atomic: labels created
    before a failing item stay created, and the loop carries on after it.
    """
    requested: int
    created_count: int
    labels: List[LabelResponse]
    failures: List[BulkItemFailure] = Field(default_factory=list)


class ThumbnailUrlResponse(BaseModel):
    label_id: uuid.UUID
    size: str
    url: Optional[str] = Field(default=None, description="Null when storage is unavailable")


class ErrorResponse(BaseModel):
    """
    Standardized error body for every API error.

    Example:
        {
            "error": "version_conflict",
            "message": "Label has been modified by another session. ...",
            "details": {"current_version": 4, "provided_version": 3},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    storage: str = Field(description="Thumbnail storage: available, unavailable, disabled")
    cache: str = Field(description="Cache backend: available, unavailable")
    uptime_seconds: float = Field(description="Seconds since service started")
