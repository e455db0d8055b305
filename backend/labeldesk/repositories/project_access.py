"""
LabelDesk Backend — Project Ownership Checks
==============================================

What:  Answers "does this user own this project / label?".
Why:   Ownership is the only authorization rule here, and it must be the
       same query for every operation; one seam keeps it that way.
How:   `ProjectAccess` is the interface; `SqlProjectAccess` queries the
       projects table (joined with labels for label checks).
Who:   LabelLifecycleService, before every read or write.

A project that does not exist and a project owned by someone else look the
same from here: `get_owned_project` raises NotFoundError for both.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labeldesk.exceptions import NotFoundError
from labeldesk.models.label import Label
from labeldesk.models.project import Project


@dataclass(frozen=True)
class ProjectRecord:
    id: uuid.UUID
    name: str
    user_id: str


class ProjectAccess(ABC):
    """
    Ownership questions the lifecycle service asks before touching a label.

    Why: a foreign resource must be indistinguishable from a missing one,
    so callers get booleans or NotFoundError and never the owner.
    """

    @abstractmethod
    async def owns_project(self, user_id: str, project_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def owns_label(self, user_id: str, label_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def get_owned_project(self, user_id: str, project_id: uuid.UUID) -> ProjectRecord:
        """
        The project, if `user_id` owns it.

        Raises:
            NotFoundError: missing or owned by another user.
        """
        ...


class SqlProjectAccess(ProjectAccess):
    """Ownership via the projects table; label checks join labels to projects in one query."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def owns_project(self, user_id: str, project_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(Project.id).where(Project.id == project_id, Project.user_id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def owns_label(self, user_id: str, label_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(Label.id)
            .join(Project, Label.project_id == Project.id)
            .where(Label.id == label_id, Project.user_id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_owned_project(self, user_id: str, project_id: uuid.UUID) -> ProjectRecord:
        result = await self.session.execute(
            select(Project).where(Project.id == project_id, Project.user_id == user_id)
        )
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError(resource="project", resource_id=str(project_id))
        return ProjectRecord(id=project.id, name=project.name, user_id=project.user_id)
