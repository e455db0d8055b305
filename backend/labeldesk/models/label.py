"""
LabelDesk Backend — Label SQLAlchemy Model
============================================

What:  ORM model representing the `labels` table.
Why:   The database, not the application, is the final arbiter of name
       uniqueness and version order.
Who:   Used by SqlLabelStore; Alembic reads it for migrations.

Table Design:
    - name is unique per project (uq_labels_project_name). Concurrent writers
      that compute the same generated name get an IntegrityError instead of
      a silent duplicate.
    - version starts at 1 and is only ever changed by a conditional UPDATE
      (`... WHERE id = :id AND version = :expected`).
    - content is the opaque canvas document (JSON).
    - thumbnail_ref is the deterministic storage path of the `md` thumbnail,
      never a signed URL. URLs are signed on demand.

Lifecycle:
    1. Inserted by create / duplicate / bulk-create (version = 1)
    2. Updated by update_label (version += 1 per successful update)
    3. Deleted explicitly; thumbnails are removed alongside
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labeldesk.database import Base

if TYPE_CHECKING:
    from labeldesk.models.project import Project


# Empty Fabric.js canvas used when a label is created without content
DEFAULT_CONTENT: Dict[str, Any] = {
    "version": "6.0.0",
    "objects": [],
    "background": "#ffffff",
}


def default_content() -> Dict[str, Any]:
    """Fresh copy of the empty canvas (never share the module-level dict)."""
    return {
        "version": DEFAULT_CONTENT["version"],
        "objects": [],
        "background": DEFAULT_CONTENT["background"],
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Label(Base):
    """A single print/graphic document belonging to a Project."""

    __tablename__ = "labels"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Unique within the owning project",
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    # Print dimensions in millimetres
    width: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    height: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)

    content: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=default_content,
    )

    thumbnail_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        default=None,
        comment="Deterministic storage path of the md thumbnail",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency token",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    project: Mapped["Project"] = relationship(back_populates="labels")

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_labels_project_name"),
        Index("idx_labels_project_created", "project_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Label(id={self.id}, name='{self.name}', "
            f"project_id={self.project_id}, version={self.version})>"
        )
