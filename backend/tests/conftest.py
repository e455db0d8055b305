"""
LabelDesk Backend — Test Configuration (conftest.py)
======================================================

What:  Shared fixtures and in-memory collaborators for the test suite.
How:   Environment variables are set before anything from `labeldesk` is
       imported, so the settings singleton and the module-level engine
       pick up the test configuration.

Fixture Hierarchy (all function-scoped):
    ├── temp_storage:      fresh directory per test
    ├── label_store:       InMemoryLabelStore
    ├── project_access:    InMemoryProjectAccess (+ owned_project)
    ├── blob_store:        LocalBlobStore in temp_storage
    ├── failing_blob_store: every call raises StorageDegradedError
    ├── cache_store:       MemoryCacheStore
    ├── assets:            AssetCoordinator(blob_store, cache_store)
    ├── label_service:     LabelLifecycleService wired to all of the above
    └── test_client:       HTTPX AsyncClient on the FastAPI app, with the
                           service dependencies overridden
"""

import os
import tempfile

# ── Environment (before any labeldesk import) ─────────────────────────────
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="labeldesk_test_")
os.environ["CACHE_BACKEND"] = "memory"
os.environ["URL_SIGNING_SECRET"] = "test-signing-secret"
os.environ["PUBLIC_BASE_URL"] = "http://test"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from labeldesk.exceptions import DuplicateNameError, NotFoundError, StorageDegradedError, VersionConflictError
from labeldesk.repositories.label_repository import MUTABLE_FIELDS, LabelRecord, LabelStore
from labeldesk.repositories.project_access import ProjectAccess, ProjectRecord
from labeldesk.services.asset_coordinator import AssetCoordinator
from labeldesk.services.blob_store import BlobObject, BlobStore, LocalBlobStore
from labeldesk.services.cache_invalidator import CacheInvalidator
from labeldesk.services.cache_store import MemoryCacheStore
from labeldesk.services.label_service import LabelLifecycleService

OWNER_ID = "user-1"
STRANGER_ID = "user-2"


# ══════════════════════════════════════════════════════════════════════════
# In-memory collaborators
# ══════════════════════════════════════════════════════════════════════════

class InMemoryLabelStore(LabelStore):
    """
    LabelStore with the same contract as SqlLabelStore.

    Test hooks:
        preempt:        names a "concurrent writer" inserts into the target
                        project right before the next insert(s)
        fail_on_insert: 1-based insert call numbers that raise RuntimeError
    """

    def __init__(self):
        self.rows: Dict[uuid.UUID, LabelRecord] = {}
        self.preempt: List[str] = []
        self.fail_on_insert: Set[int] = set()
        self.insert_calls = 0
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add(self, project_id: uuid.UUID, name: str, **fields: Any) -> LabelRecord:
        now = self._tick()
        record = LabelRecord(
            id=uuid.uuid4(),
            project_id=project_id,
            name=name,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.rows[record.id] = record
        return record

    def _names(self, project_id: uuid.UUID) -> Set[str]:
        return {row.name for row in self.rows.values() if row.project_id == project_id}

    async def find_sibling_names(self, project_id, exclude_id=None) -> Set[str]:
        return {
            row.name
            for row in self.rows.values()
            if row.project_id == project_id and row.id != exclude_id
        }

    async def insert(self, project_id, name, description, width, height, content, thumbnail_ref=None):
        self.insert_calls += 1
        if self.insert_calls in self.fail_on_insert:
            raise RuntimeError("connection reset by peer")
        if self.preempt:
            self.add(project_id, self.preempt.pop(0))
        if name in self._names(project_id):
            raise DuplicateNameError(name, str(project_id))
        return self.add(
            project_id,
            name,
            description=description,
            width=width,
            height=height,
            content=content,
            thumbnail_ref=thumbnail_ref,
        )

    async def update_where(self, label_id, expected_version, values):
        assert set(values) <= MUTABLE_FIELDS
        current = self.rows.get(label_id)
        if current is None:
            raise NotFoundError(resource="label", resource_id=str(label_id))
        if expected_version is not None and current.version != expected_version:
            raise VersionConflictError(current.version, expected_version)
        if "name" in values and values["name"] in await self.find_sibling_names(current.project_id, label_id):
            raise DuplicateNameError(values["name"])
        updated = LabelRecord(
            **{
                **current.__dict__,
                **values,
                "version": current.version + 1,
                "updated_at": self._tick(),
            }
        )
        self.rows[label_id] = updated
        return updated

    async def set_thumbnail_ref(self, label_id, thumbnail_ref):
        current = self.rows[label_id]
        self.rows[label_id] = LabelRecord(**{**current.__dict__, "thumbnail_ref": thumbnail_ref})

    async def delete(self, label_id) -> bool:
        return self.rows.pop(label_id, None) is not None

    async def get(self, label_id) -> Optional[LabelRecord]:
        return self.rows.get(label_id)

    async def list_for_project(self, project_id) -> List[LabelRecord]:
        rows = [row for row in self.rows.values() if row.project_id == project_id]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)


class InMemoryProjectAccess(ProjectAccess):
    def __init__(self, labels: InMemoryLabelStore):
        self.labels = labels
        self.projects: Dict[uuid.UUID, ProjectRecord] = {}

    def add_project(self, user_id: str, name: str = "Shipping") -> ProjectRecord:
        project = ProjectRecord(id=uuid.uuid4(), name=name, user_id=user_id)
        self.projects[project.id] = project
        return project

    async def owns_project(self, user_id, project_id) -> bool:
        project = self.projects.get(project_id)
        return project is not None and project.user_id == user_id

    async def owns_label(self, user_id, label_id) -> bool:
        label = self.labels.rows.get(label_id)
        return label is not None and await self.owns_project(user_id, label.project_id)

    async def get_owned_project(self, user_id, project_id) -> ProjectRecord:
        if not await self.owns_project(user_id, project_id):
            raise NotFoundError(resource="project", resource_id=str(project_id))
        return self.projects[project_id]


class FailingBlobStore(BlobStore):
    """Every call fails the way an unreachable backend does."""

    def __init__(self):
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise StorageDegradedError("Storage backend unreachable")

    async def put(self, path, data, content_type="image/png"):
        self._fail()

    async def delete(self, paths):
        self._fail()

    async def sign_url(self, path, ttl):
        self._fail()

    async def list(self, prefix) -> List[BlobObject]:
        self._fail()

    async def copy(self, source_path, destination_path):
        self._fail()

    async def health_check(self) -> bool:
        return False


class RecordingBlobStore(LocalBlobStore):
    """LocalBlobStore that records the order of mutating calls."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[tuple] = []

    async def put(self, path, data, content_type="image/png"):
        self.calls.append(("put", path))
        return await super().put(path, data, content_type)

    async def delete(self, paths):
        self.calls.append(("delete", tuple(paths)))
        return await super().delete(paths)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def sample_png_bytes():
    """PNG signature plus an IHDR chunk header; enough for type detection."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00\x00\x00\x01" * 4 + b"\x00"


@pytest.fixture
def sample_jpeg_bytes():
    return b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"


@pytest.fixture
def label_store():
    return InMemoryLabelStore()


@pytest.fixture
def project_access(label_store):
    return InMemoryProjectAccess(label_store)


@pytest.fixture
def owned_project(project_access):
    return project_access.add_project(OWNER_ID)


@pytest.fixture
def blob_store(temp_storage):
    return LocalBlobStore(
        storage_root=temp_storage,
        bucket="thumbnails",
        signing_secret="test-signing-secret",
        public_base_url="http://test",
    )


@pytest.fixture
def failing_blob_store():
    return FailingBlobStore()


@pytest.fixture
def recording_blob_store(temp_storage):
    return RecordingBlobStore(
        storage_root=temp_storage,
        bucket="thumbnails",
        signing_secret="test-signing-secret",
        public_base_url="http://test",
    )


@pytest.fixture
def cache_store():
    return MemoryCacheStore()


@pytest.fixture
def assets(blob_store, cache_store):
    return AssetCoordinator(blob_store, cache_store)


@pytest.fixture
def label_service(label_store, project_access, assets, cache_store):
    return LabelLifecycleService(
        labels=label_store,
        projects=project_access,
        assets=assets,
        cache=CacheInvalidator(cache_store),
    )


@pytest_asyncio.fixture
async def test_client(label_service, blob_store, cache_store):
    """
    HTTPX client on the real app with the collaborators swapped for the
    in-memory ones. ASGITransport does not run the lifespan.
    """
    from labeldesk.dependencies import get_blob_store, get_cache_store, get_label_service
    from labeldesk.main import app

    app.dependency_overrides[get_label_service] = lambda: label_service
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_cache_store] = lambda: cache_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
