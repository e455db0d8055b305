"""
LabelDesk Backend — Project SQLAlchemy Model
==============================================

What:  ORM model for the `projects` table.
Who:   Read by SqlProjectAccess for ownership checks. Project CRUD itself
       belongs to another service; this model only mirrors the columns the
       label core needs.

A Project is the naming scope for Labels: two labels in different projects
may share a name, two labels in the same project may not.
"""

import uuid
from datetime import datetime, timezone
from typing import List, TYPE_CHECKING

from sqlalchemy import DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labeldesk.database import Base

if TYPE_CHECKING:
    from labeldesk.models.label import Label


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(Base):
    """A user's container of labels."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    # Opaque id issued by the authentication service
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Owner of the project",
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
        onupdate=_utcnow,
    )

    labels: Mapped[List["Label"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_projects_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}', user_id='{self.user_id}')>"
