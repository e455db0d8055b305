"""
LabelDesk Backend — Label Lifecycle Service
=============================================

What:  Business logic for creating, duplicating, bulk-creating, updating,
       reading and deleting labels.
How:   Every mutation follows the same order:

           ownership check → name from the naming engine → durable write
           → thumbnails (best effort) → cache invalidation → response

       The durable store is the only serialization point. Names are computed
       from a fresh snapshot of the sibling names; if a concurrent writer
       takes the same name first, the store's unique constraint rejects the
       insert and the name is recomputed (up to name_retry_attempts times).
Who:   Route handlers (one instance per request, built in dependencies.py).

Error Handling Strategy:
    - NotFoundError:        missing label/project OR owned by someone else
    - ValidationError:      bad input; DuplicateNameError for taken renames
    - VersionConflictError: stale expected_version, nothing written
    - thumbnails:           never fail an operation (AssetCoordinator)
    - anything unexpected:  logged with traceback, raised as DatabaseError
"""

import copy
import dataclasses
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from labeldesk.config import Settings, settings
from labeldesk.exceptions import (
    DatabaseError,
    DuplicateNameError,
    LabelDeskError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from labeldesk.models.label import default_content
from labeldesk.repositories.label_repository import LabelRecord, LabelStore
from labeldesk.repositories.project_access import ProjectAccess
from labeldesk.schemas.label import (
    BulkCreateResponse,
    BulkItemFailure,
    BulkUniqueItem,
    LabelListResponse,
    LabelResponse,
    LabelTemplate,
    ThumbnailUrlResponse,
)
from labeldesk.services.asset_coordinator import (
    DEFAULT_SIZE,
    THUMBNAIL_SIZES,
    AssetCoordinator,
    ThumbnailPayload,
)
from labeldesk.services.cache_invalidator import CacheInvalidator, CacheKeys, TTLClass
from labeldesk.services.naming import generate_copy_name, generate_unique_name

logger = logging.getLogger(__name__)


class LabelLifecycleService:
    """
    Label operations for one request.

    Collaborators are injected so tests can run the service against
    in-memory stores:
        labels    LabelStore         durable label rows
        projects  ProjectAccess      ownership checks
        assets    AssetCoordinator   thumbnails + signed URLs
        cache     CacheInvalidator   cache-aside reads, invalidation
    """

    def __init__(
        self,
        labels: LabelStore,
        projects: ProjectAccess,
        assets: AssetCoordinator,
        cache: CacheInvalidator,
        config: Settings = settings,
    ):
        self.labels = labels
        self.projects = projects
        self.assets = assets
        self.cache = cache
        self.config = config

    # ══════════════════════════════════════════════════════════════════════
    # Internal helpers
    # ══════════════════════════════════════════════════════════════════════

    @contextmanager
    def _store_errors(self, operation: str, **context: Any) -> Iterator[None]:
        """Let application errors through; wrap anything else in DatabaseError."""
        try:
            yield
        except LabelDeskError:
            raise
        except Exception as e:
            logger.error("Unexpected error in %s: %s", operation, str(e), exc_info=True)
            raise DatabaseError(
                context={
                    "operation": operation,
                    "error_type": type(e).__name__,
                    **{key: str(value) for key, value in context.items()},
                },
            ) from e

    def _check_name(self, name: str) -> str:
        cleaned = name.strip()
        if not cleaned:
            raise ValidationError("Label name cannot be empty", field="name")
        if len(cleaned) > self.config.max_name_length:
            raise ValidationError(
                f"Label name must be at most {self.config.max_name_length} characters",
                field="name",
                context={"length": len(cleaned)},
            )
        return cleaned

    def _check_dimension(self, value: float, field: str) -> float:
        if value <= 0 or value > self.config.max_label_dimension:
            raise ValidationError(
                f"{field.capitalize()} must be greater than 0 and at most "
                f"{self.config.max_label_dimension:g} mm",
                field=field,
                context={"value": value},
            )
        return float(value)

    def _check_description(self, description: str) -> str:
        if len(description) > self.config.max_description_length:
            raise ValidationError(
                f"Description must be at most {self.config.max_description_length} characters",
                field="description",
                context={"length": len(description)},
            )
        return description

    def _new_label_fields(
        self,
        description: Optional[str],
        width: Optional[float],
        height: Optional[float],
        content: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Validated column values for a new label, defaults filled in."""
        return {
            "description": self._check_description(description or ""),
            "width": self._check_dimension(
                width if width is not None else self.config.default_label_width, "width"
            ),
            "height": self._check_dimension(
                height if height is not None else self.config.default_label_height, "height"
            ),
            "content": copy.deepcopy(content) if content is not None else default_content(),
        }

    def _check_patch(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for key, value in patch.items():
            if value is None:
                # Explicit nulls are not a way to clear required columns
                continue
            if key == "name":
                values["name"] = self._check_name(value)
            elif key == "description":
                values["description"] = self._check_description(value)
            elif key in ("width", "height"):
                values[key] = self._check_dimension(value, key)
            elif key == "content":
                values["content"] = copy.deepcopy(value)
            else:
                raise ValidationError(f"Field '{key}' cannot be updated", field=key)
        return values

    async def _load_owned_label(self, user_id: str, label_id: uuid.UUID) -> LabelRecord:
        """The label, if `user_id` owns its project. Missing and foreign both raise NotFoundError."""
        if not await self.projects.owns_label(user_id, label_id):
            raise NotFoundError(resource="label", resource_id=str(label_id))
        record = await self.labels.get(label_id)
        if record is None:
            # Deleted between the ownership check and the read
            raise NotFoundError(resource="label", resource_id=str(label_id))
        return record

    async def _insert_with_unique_name(
        self,
        project_id: uuid.UUID,
        fields: Dict[str, Any],
        base_name: Optional[str] = None,
        copy_of: Optional[str] = None,
    ) -> LabelRecord:
        """
        Insert under a generated name, recomputing it if a concurrent writer
        took it between the snapshot and the insert.
        """
        attempts = self.config.name_retry_attempts
        for attempt in range(1, attempts + 1):
            siblings = await self.labels.find_sibling_names(project_id)
            max_length = self.config.max_name_length
            if copy_of is not None:
                name = generate_copy_name(copy_of, siblings, max_length)
            else:
                name = generate_unique_name(siblings, base_name or self.config.default_label_name, max_length)
            name = self._check_name(name)

            try:
                return await self.labels.insert(project_id=project_id, name=name, **fields)
            except DuplicateNameError:
                logger.info(
                    "Name '%s' taken concurrently in project %s (attempt %d/%d)",
                    name,
                    project_id,
                    attempt,
                    attempts,
                )
                if attempt == attempts:
                    raise
        raise AssertionError("unreachable")  # pragma: no cover

    async def _record_thumbnail(self, record: LabelRecord, thumbnail_ref: Optional[str]) -> LabelRecord:
        """Persist the thumbnail path (None clears it). On failure the record is returned unchanged."""
        try:
            await self.labels.set_thumbnail_ref(record.id, thumbnail_ref)
        except Exception as e:
            logger.warning("Could not record thumbnail for label %s: %s", record.id, str(e))
            return record
        return dataclasses.replace(record, thumbnail_ref=thumbnail_ref)

    async def _store_new_thumbnail(self, record: LabelRecord, payload: ThumbnailPayload) -> LabelRecord:
        thumbnail_ref = await self.assets.store_payload(record.id, payload)
        if thumbnail_ref is None:
            return record
        return await self._record_thumbnail(record, thumbnail_ref)

    async def _respond(self, record: LabelRecord) -> LabelResponse:
        thumbnail_url = None
        if record.thumbnail_ref:
            thumbnail_url = await self.assets.get_url(record.id, DEFAULT_SIZE)
        return LabelResponse.from_record(record, thumbnail_url)

    def _check_bulk_count(self, count: int, field: str) -> None:
        if count < 1 or count > self.config.max_bulk_count:
            raise ValidationError(
                f"Bulk create accepts between 1 and {self.config.max_bulk_count} labels",
                field=field,
                context={"count": count},
            )

    # ══════════════════════════════════════════════════════════════════════
    # Create
    # ══════════════════════════════════════════════════════════════════════

    async def create_label(
        self,
        user_id: str,
        project_id: uuid.UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
        content: Optional[Dict[str, Any]] = None,
        thumbnail: Optional[ThumbnailPayload] = None,
    ) -> LabelResponse:
        """
        Create a label with a collision-free name.

        `name` is used as the base for the generated name; without it the
        default base ("New Label") applies. The stored name is always
        numbered: "New Label 1", "New Label 2", ...

        Raises:
            NotFoundError:   project missing or not owned by user_id
            ValidationError: bad name, dimensions or description
            DatabaseError:   durable store failed
        """
        base_name = self._check_name(name) if name is not None and name.strip() else None

        with self._store_errors("create_label", project_id=project_id):
            project = await self.projects.get_owned_project(user_id, project_id)
            fields = self._new_label_fields(description, width, height, content)
            record = await self._insert_with_unique_name(project.id, fields, base_name=base_name)

        logger.info("Label created: %s '%s' in project %s", record.id, record.name, project.id)

        if thumbnail is not None:
            record = await self._store_new_thumbnail(record, thumbnail)

        await self.cache.label_changed(record.id, record.project_id, user_id)
        return await self._respond(record)

    async def duplicate_label(self, user_id: str, label_id: uuid.UUID) -> LabelResponse:
        """
        Copy a label into the same project under a "... Copy" name.

        The copy is a new label (version 1) with its own thumbnail objects;
        the source label is not modified.
        """
        with self._store_errors("duplicate_label", label_id=label_id):
            source = await self._load_owned_label(user_id, label_id)
            fields = {
                "description": source.description,
                "width": source.width,
                "height": source.height,
                "content": copy.deepcopy(source.content),
            }
            record = await self._insert_with_unique_name(source.project_id, fields, copy_of=source.name)

        logger.info("Label %s duplicated as %s '%s'", source.id, record.id, record.name)

        thumbnail_ref = await self.assets.copy_thumbnails(source.id, record.id)
        if thumbnail_ref:
            record = await self._record_thumbnail(record, thumbnail_ref)

        await self.cache.label_changed(record.id, record.project_id, user_id)
        return await self._respond(record)

    async def create_bulk(
        self,
        user_id: str,
        project_id: uuid.UUID,
        count: int,
        template: Optional[LabelTemplate] = None,
    ) -> BulkCreateResponse:
        """
        Create `count` labels from one template.

        Not atomic: each label is its own durable write. A failing item is
        reported in `failures` and the remaining items are still attempted.
        Sibling names are re-read before every item.
        """
        self._check_bulk_count(count, "count")
        template = template or LabelTemplate()
        base_name = self._check_name(template.name) if template.name and template.name.strip() else None

        with self._store_errors("create_bulk", project_id=project_id):
            project = await self.projects.get_owned_project(user_id, project_id)
        fields = self._new_label_fields(
            template.description, template.width, template.height, template.content
        )

        created: List[LabelResponse] = []
        failures: List[BulkItemFailure] = []
        for index in range(count):
            try:
                with self._store_errors("create_bulk", project_id=project_id, index=index):
                    record = await self._insert_with_unique_name(
                        project.id,
                        {**fields, "content": copy.deepcopy(fields["content"])},
                        base_name=base_name,
                    )
            except LabelDeskError as e:
                logger.warning("Bulk item %d in project %s failed: %s", index, project.id, e.message)
                failures.append(BulkItemFailure(index=index, message=e.message))
                continue
            created.append(LabelResponse.from_record(record))

        if created:
            await self.cache.project_changed(project.id, user_id)

        logger.info(
            "Bulk create in project %s: %d/%d created, %d failed",
            project.id,
            len(created),
            count,
            len(failures),
        )
        return BulkCreateResponse(
            requested=count,
            created_count=len(created),
            labels=created,
            failures=failures,
        )

    async def create_bulk_unique(
        self,
        user_id: str,
        project_id: uuid.UUID,
        items: List[BulkUniqueItem],
        base_name: Optional[str] = None,
    ) -> BulkCreateResponse:
        """
        Create one label per item; each item brings its own content and
        dimensions, only the names are generated. Same non-atomic semantics
        as create_bulk, and an invalid item only fails itself.
        """
        self._check_bulk_count(len(items), "items")
        base = self._check_name(base_name) if base_name and base_name.strip() else None

        with self._store_errors("create_bulk_unique", project_id=project_id):
            project = await self.projects.get_owned_project(user_id, project_id)

        created: List[LabelResponse] = []
        failures: List[BulkItemFailure] = []
        for index, item in enumerate(items):
            try:
                with self._store_errors("create_bulk_unique", project_id=project_id, index=index):
                    fields = self._new_label_fields(item.description, item.width, item.height, item.content)
                    record = await self._insert_with_unique_name(project.id, fields, base_name=base)
            except LabelDeskError as e:
                logger.warning("Bulk item %d in project %s failed: %s", index, project.id, e.message)
                failures.append(BulkItemFailure(index=index, message=e.message))
                continue

            if item.thumbnail is not None:
                record = await self._store_new_thumbnail(record, item.thumbnail)
            created.append(await self._respond(record))

        if created:
            await self.cache.project_changed(project.id, user_id)

        logger.info(
            "Bulk-unique create in project %s: %d/%d created, %d failed",
            project.id,
            len(created),
            len(items),
            len(failures),
        )
        return BulkCreateResponse(
            requested=len(items),
            created_count=len(created),
            labels=created,
            failures=failures,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Update / Delete
    # ══════════════════════════════════════════════════════════════════════

    async def update_label(
        self,
        user_id: str,
        label_id: uuid.UUID,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
        thumbnail: Optional[ThumbnailPayload] = None,
    ) -> LabelResponse:
        """
        Apply a partial update with optimistic concurrency.

        The write is one conditional UPDATE; when `expected_version` no longer
        matches, VersionConflictError carries the stored version and nothing
        changes. A successful write bumps the version by exactly one.

        A thumbnail alone is derived data: it replaces the stored objects but
        does not bump the version. Old thumbnail objects are removed before
        the new ones are written.

        Raises:
            NotFoundError, ValidationError, DuplicateNameError,
            VersionConflictError, DatabaseError
        """
        values = self._check_patch(patch)

        with self._store_errors("update_label", label_id=label_id):
            current = await self._load_owned_label(user_id, label_id)

            if "name" in values and values["name"] != current.name:
                siblings = await self.labels.find_sibling_names(current.project_id, exclude_id=current.id)
                if values["name"] in siblings:
                    raise DuplicateNameError(values["name"], str(current.project_id))

            if values:
                record = await self.labels.update_where(current.id, expected_version, values)
            elif expected_version is not None and expected_version != current.version:
                raise VersionConflictError(
                    current_version=current.version,
                    provided_version=expected_version,
                    context={"label_id": str(label_id)},
                )
            else:
                record = current

        if values:
            logger.info("Label %s updated to version %d", record.id, record.version)

        if thumbnail is not None:
            replaced, thumbnail_ref = await self.assets.replace_thumbnails(record.id, thumbnail)
            # A failed upload after the delete must not leave a dangling ref
            if replaced and thumbnail_ref != record.thumbnail_ref:
                record = await self._record_thumbnail(record, thumbnail_ref)

        await self.cache.label_changed(record.id, record.project_id, user_id)
        return await self._respond(record)

    async def delete_label(self, user_id: str, label_id: uuid.UUID) -> None:
        """Delete a label and, best effort, all of its thumbnail objects."""
        with self._store_errors("delete_label", label_id=label_id):
            record = await self._load_owned_label(user_id, label_id)

        removed = await self.assets.delete_all_for_label(record.id)

        with self._store_errors("delete_label", label_id=label_id):
            if not await self.labels.delete(record.id):
                raise NotFoundError(resource="label", resource_id=str(label_id))

        logger.info("Label %s deleted (%d thumbnail objects removed)", record.id, removed)
        await self.cache.label_changed(record.id, record.project_id, user_id)

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def get_label(self, user_id: str, label_id: uuid.UUID) -> LabelResponse:
        """Single label, served from cache when possible. Ownership is always checked."""

        async def load() -> Optional[Dict[str, Any]]:
            record = await self.labels.get(label_id)
            if record is None:
                return None
            return (await self._respond(record)).model_dump(mode="json")

        with self._store_errors("get_label", label_id=label_id):
            data = await self.cache.get_or_load(CacheKeys.label(label_id), load, TTLClass.LABEL)
            if data is None:
                raise NotFoundError(resource="label", resource_id=str(label_id))
            label = LabelResponse.model_validate(data)
            if not await self.projects.owns_project(user_id, label.project_id):
                raise NotFoundError(resource="label", resource_id=str(label_id))
        return label

    async def list_labels(self, user_id: str, project_id: uuid.UUID) -> LabelListResponse:
        """All labels of an owned project, newest first, cached as one listing."""

        async def load() -> Dict[str, Any]:
            records = await self.labels.list_for_project(project_id)
            labels = [await self._respond(record) for record in records]
            return LabelListResponse(labels=labels, total_count=len(labels)).model_dump(mode="json")

        with self._store_errors("list_labels", project_id=project_id):
            await self.projects.get_owned_project(user_id, project_id)
            data = await self.cache.get_or_load(CacheKeys.project_labels(project_id), load, TTLClass.LISTING)
        return LabelListResponse.model_validate(data)

    async def refresh_thumbnail_url(
        self,
        user_id: str,
        label_id: uuid.UUID,
        size: str = DEFAULT_SIZE,
    ) -> ThumbnailUrlResponse:
        """Sign a fresh URL for a stored thumbnail. `url` is None if storage is degraded."""
        if size not in THUMBNAIL_SIZES:
            raise ValidationError(
                f"Unknown thumbnail size '{size}'. Valid sizes: {', '.join(THUMBNAIL_SIZES)}",
                field="size",
            )

        with self._store_errors("refresh_thumbnail_url", label_id=label_id):
            record = await self._load_owned_label(user_id, label_id)

        url = await self.assets.refresh_url(record.id, size)
        return ThumbnailUrlResponse(label_id=record.id, size=size, url=url)
