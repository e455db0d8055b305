"""
LabelDesk Backend — Label Durable Store
=========================================

What:  Persistence interface for labels and its SQLAlchemy implementation.
Why:   Detached snapshots can be cached, compared and replaced freely; the
       service never triggers lazy loads or implicit flushes.
How:   The service layer talks to `LabelStore` and only ever sees
       `LabelRecord` snapshots, never live ORM rows. `SqlLabelStore` commits
       each write on its own so a failed write never leaves a half-finished
       transaction behind for the next item of a bulk operation.
Who:   LabelLifecycleService.

Concurrency:
    - Mutations are a single conditional UPDATE:
          UPDATE labels SET ..., version = version + 1
          WHERE id = :id AND version = :expected
      Zero affected rows means the label is gone or the version moved on.
    - Per-project name uniqueness is enforced by uq_labels_project_name;
      a violation surfaces as DuplicateNameError.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from labeldesk.exceptions import DuplicateNameError, NotFoundError, VersionConflictError
from labeldesk.models.label import Label, default_content

logger = logging.getLogger(__name__)

# Columns update_where() accepts
MUTABLE_FIELDS = frozenset({"name", "description", "width", "height", "content"})


@dataclass
class LabelRecord:
    """Detached snapshot of one `labels` row."""

    id: uuid.UUID
    project_id: uuid.UUID
    name: str
    description: str = ""
    width: float = 100.0
    height: float = 50.0
    content: Dict[str, Any] = field(default_factory=default_content)
    thumbnail_ref: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Label) -> "LabelRecord":
        return cls(
            id=row.id,
            project_id=row.project_id,
            name=row.name,
            description=row.description,
            width=row.width,
            height=row.height,
            content=row.content,
            thumbnail_ref=row.thumbnail_ref,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class LabelStore(ABC):
    """Durable store for labels."""

    @abstractmethod
    async def find_sibling_names(
        self, project_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None
    ) -> Set[str]:
        """Names of every label in the project, optionally minus one label."""
        ...

    @abstractmethod
    async def insert(
        self,
        project_id: uuid.UUID,
        name: str,
        description: str,
        width: float,
        height: float,
        content: Dict[str, Any],
        thumbnail_ref: Optional[str] = None,
    ) -> LabelRecord:
        """
        Insert a new label with version 1.

        Raises:
            DuplicateNameError: the name is already taken in the project.
        """
        ...

    @abstractmethod
    async def update_where(
        self,
        label_id: uuid.UUID,
        expected_version: Optional[int],
        values: Dict[str, Any],
    ) -> LabelRecord:
        """
        Apply `values` and bump the version, only if the stored version still
        equals `expected_version` (None skips the comparison).

        Raises:
            NotFoundError:        no such label.
            VersionConflictError: stored version differs; nothing written.
            DuplicateNameError:   a rename collides with a sibling.
        """
        ...

    @abstractmethod
    async def set_thumbnail_ref(self, label_id: uuid.UUID, thumbnail_ref: Optional[str]) -> None:
        """Record the thumbnail path. Derived data: does not change the version."""
        ...

    @abstractmethod
    async def delete(self, label_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def get(self, label_id: uuid.UUID) -> Optional[LabelRecord]:
        ...

    @abstractmethod
    async def list_for_project(self, project_id: uuid.UUID) -> List[LabelRecord]:
        """Labels of a project, newest first."""
        ...


def _is_name_conflict(error: IntegrityError) -> bool:
    # PostgreSQL reports the constraint name, SQLite the column list
    message = str(error.orig)
    return "uq_labels_project_name" in message or "labels.project_id, labels.name" in message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlLabelStore(LabelStore):
    """LabelStore on an async SQLAlchemy session (one per request)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_sibling_names(
        self, project_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None
    ) -> Set[str]:
        query = select(Label.name).where(Label.project_id == project_id)
        if exclude_id is not None:
            query = query.where(Label.id != exclude_id)
        result = await self.session.execute(query)
        return set(result.scalars().all())

    async def insert(
        self,
        project_id: uuid.UUID,
        name: str,
        description: str,
        width: float,
        height: float,
        content: Dict[str, Any],
        thumbnail_ref: Optional[str] = None,
    ) -> LabelRecord:
        row = Label(
            project_id=project_id,
            name=name,
            description=description,
            width=width,
            height=height,
            content=content,
            thumbnail_ref=thumbnail_ref,
            version=1,
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if _is_name_conflict(e):
                raise DuplicateNameError(name, str(project_id)) from e
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.debug("Label inserted: %s '%s' in project %s", row.id, name, project_id)
        return LabelRecord.from_row(row)

    async def update_where(
        self,
        label_id: uuid.UUID,
        expected_version: Optional[int],
        values: Dict[str, Any],
    ) -> LabelRecord:
        unknown = set(values) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Not mutable through update_where: {sorted(unknown)}")

        stmt = update(Label).where(Label.id == label_id)
        if expected_version is not None:
            stmt = stmt.where(Label.version == expected_version)
        stmt = stmt.values(
            **values,
            version=Label.version + 1,
            updated_at=_utcnow(),
        ).execution_options(synchronize_session=False)

        try:
            result = await self.session.execute(stmt)
            if result.rowcount == 0:
                await self.session.rollback()
                current = await self.get(label_id)
                if current is None:
                    raise NotFoundError(resource="label", resource_id=str(label_id))
                raise VersionConflictError(
                    current_version=current.version,
                    provided_version=expected_version,
                    context={"label_id": str(label_id)},
                )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if _is_name_conflict(e):
                raise DuplicateNameError(values.get("name", "")) from e
            raise
        except (NotFoundError, VersionConflictError):
            raise
        except Exception:
            await self.session.rollback()
            raise

        updated = await self.get(label_id)
        if updated is None:
            # Deleted between the UPDATE and the re-read
            raise NotFoundError(resource="label", resource_id=str(label_id))
        return updated

    async def set_thumbnail_ref(self, label_id: uuid.UUID, thumbnail_ref: Optional[str]) -> None:
        try:
            await self.session.execute(
                update(Label)
                .where(Label.id == label_id)
                .values(thumbnail_ref=thumbnail_ref)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def delete(self, label_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(Label).where(Label.id == label_id).execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount > 0

    async def get(self, label_id: uuid.UUID) -> Optional[LabelRecord]:
        # populate_existing: rows updated by UPDATE statements must not be
        # served from the session's identity map
        result = await self.session.execute(
            select(Label)
            .where(Label.id == label_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return LabelRecord.from_row(row) if row else None

    async def list_for_project(self, project_id: uuid.UUID) -> List[LabelRecord]:
        result = await self.session.execute(
            select(Label)
            .where(Label.project_id == project_id)
            .order_by(Label.created_at.desc(), Label.name)
            .execution_options(populate_existing=True)
        )
        return [LabelRecord.from_row(row) for row in result.scalars().all()]
