"""
LabelDesk Backend — Cache Keys & Invalidation
===============================================

What:  Owns the cache key layout, the TTL classes and the invalidation rules.
Why:   Keys and their invalidation rules live together so a new cached
       view cannot be added without saying when it goes stale.
How:   Reads are cache-aside (`get_or_load`); writes never go through the
       cache. After a durable write the lifecycle service calls
       `label_changed` or `project_changed`, which drop every key that could
       now be stale.
Who:   LabelLifecycleService.

Key Layout:
    label:<label_id>                 single label            TTL label
    project:<project_id>             single project          TTL project
    project:<project_id>:labels      label listing           TTL listing
    user:<user_id>:projects          project listing         TTL listing
    thumbnail:<label_id>:<size>      signed thumbnail URL    TTL thumbnail

A cache failure never fails the caller: reads fall back to the loader and
invalidation errors are logged and skipped.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from labeldesk.config import settings
from labeldesk.services.cache_store import CacheStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheKeys:
    """Builders for every cache key the service uses."""

    @staticmethod
    def label(label_id: Any) -> str:
        return f"label:{label_id}"

    @staticmethod
    def project(project_id: Any) -> str:
        return f"project:{project_id}"

    @staticmethod
    def project_labels(project_id: Any) -> str:
        return f"project:{project_id}:labels"

    @staticmethod
    def user_projects(user_id: Any) -> str:
        return f"user:{user_id}:projects"

    @staticmethod
    def thumbnail(label_id: Any, size: str) -> str:
        return f"thumbnail:{label_id}:{size}"


class TTLClass(str, Enum):
    LISTING = "listing"
    LABEL = "label"
    PROJECT = "project"
    THUMBNAIL = "thumbnail"


def ttl_seconds(ttl_class: TTLClass) -> int:
    return {
        TTLClass.LISTING: settings.cache_ttl_listing,
        TTLClass.LABEL: settings.cache_ttl_label,
        TTLClass.PROJECT: settings.cache_ttl_project,
        TTLClass.THUMBNAIL: settings.cache_ttl_thumbnail,
    }[ttl_class]


class CacheInvalidator:
    def __init__(self, cache: CacheStore):
        self.cache = cache

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl_class: TTLClass,
    ) -> T:
        """
        Cache-aside read.

        Returns the cached value on a hit. On a miss (or any cache error)
        awaits `loader()`, stores the result and returns it. Loader errors
        propagate unchanged and nothing is cached. A None result is not
        cached either.
        """
        try:
            cached = await self.cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, str(e))
            cached = None

        if cached is not None:
            return cached

        value = await loader()
        if value is not None:
            await self.store(key, value, ttl_class)
        return value

    async def store(self, key: str, value: Any, ttl_class: TTLClass) -> None:
        try:
            await self.cache.set(key, value, ttl_seconds(ttl_class))
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, str(e))

    async def _drop(self, key: str) -> None:
        try:
            await self.cache.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", key, str(e))

    async def _drop_prefix(self, prefix: str) -> None:
        try:
            await self.cache.delete_by_prefix(prefix)
        except Exception as e:
            logger.warning("Cache prefix delete failed for %s: %s", prefix, str(e))

    async def label_changed(self, label_id: Any, project_id: Any, owner_id: Any) -> None:
        """A label was created, updated or deleted."""
        await self._drop(CacheKeys.label(label_id))
        await self.project_changed(project_id, owner_id)

    async def project_changed(self, project_id: Any, owner_id: Any) -> None:
        """Anything derived from the project (its listings, its owner's listings)."""
        await self._drop(CacheKeys.project(project_id))
        await self._drop_prefix(f"{CacheKeys.project(project_id)}:")
        await self._drop_prefix(CacheKeys.user_projects(owner_id))
