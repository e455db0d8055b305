"""
LabelDesk Backend — Thumbnail Asset Coordinator
=================================================

What:  Keeps a label's thumbnail objects, their signed URLs and the URL cache
       consistent with the label lifecycle.
Why:   Labels must always be able to show a working thumbnail URL, even
       after the previous signed URL has expired.
How:   Objects live at a deterministic path derived from (label_id, size), so
       a URL can always be re-signed from the label id alone. Uploads clean up
       the previous object for the size first, then store, sign and cache.
Who:   LabelLifecycleService.
When:  After the durable write of create / duplicate / update / delete.

Storage Layout:
    labels/<label_id>/sm.png     150 px
    labels/<label_id>/md.png     300 px   ← the label's thumbnail_ref
    labels/<label_id>/lg.png     600 px

    The same bytes are stored for every size; producing scaled renditions is
    the renderer's job.

Failure Model:
    Thumbnails are best effort. Every public method catches
    StorageDegradedError (and cache errors), logs a warning and returns
    None / an empty result. Nothing here can fail a label operation.
"""

import asyncio
import base64
import binascii
import logging
from typing import Dict, Optional, Tuple, Union

import magic

from labeldesk.config import settings
from labeldesk.exceptions import StorageDegradedError, ValidationError
from labeldesk.services.blob_store import BlobStore
from labeldesk.services.cache_invalidator import CacheKeys
from labeldesk.services.cache_store import CacheStore

logger = logging.getLogger(__name__)

# ── Sizes ─────────────────────────────────────────────────────────────────
THUMBNAIL_SIZES: Dict[str, int] = {"sm": 150, "md": 300, "lg": 600}
DEFAULT_SIZE = "md"

# ── Accepted Payloads ─────────────────────────────────────────────────────
ALLOWED_CONTENT_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})

ThumbnailPayload = Union[bytes, bytearray, str]


def thumbnail_path(label_id, size: str = DEFAULT_SIZE) -> str:
    return f"labels/{label_id}/{size}.png"


def label_prefix(label_id) -> str:
    return f"labels/{label_id}"


def detect_content_type(data: bytes) -> Optional[str]:
    """
    Accepted image type of `data`, or None.

    What:    libmagic (python-magic) reads the file header bytes.
    Why:     The payload's data URL prefix or file name is only a claim; a
             GIF sent as "data:image/png" must still be rejected.
    Returns: "image/png", "image/jpeg" or "image/webp" when the detected
             MIME type is in ALLOWED_CONTENT_TYPES, otherwise None.
    """
    try:
        mime_type = magic.from_buffer(data, mime=True)
    except magic.MagicException as e:
        logger.error("MIME type detection failed: %s", str(e))
        return None
    if mime_type not in ALLOWED_CONTENT_TYPES:
        logger.debug("Rejected thumbnail content type '%s'", mime_type)
        return None
    return mime_type


def decode_payload(payload: ThumbnailPayload, max_size: Optional[int] = None) -> Tuple[bytes, str]:
    """
    Turn a thumbnail payload into (bytes, content_type).

    Accepts raw bytes, a base64 string, or a data URL
    ("data:image/png;base64,...").

    Raises:
        ValidationError: empty, undecodable, too large, or not PNG/JPEG/WebP.
    """
    limit = max_size or settings.max_thumbnail_size

    if isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
    else:
        text = payload.strip()
        if text.startswith("data:"):
            header, _, text = text.partition(",")
            if ";base64" not in header:
                raise ValidationError("Thumbnail data URL must be base64 encoded", field="thumbnail")
        try:
            data = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(
                "Thumbnail is not valid base64",
                field="thumbnail",
                context={"error": str(e)},
            ) from e

    if not data:
        raise ValidationError("Thumbnail is empty", field="thumbnail")

    if len(data) > limit:
        raise ValidationError(
            f"Thumbnail exceeds maximum of {limit / (1024 * 1024):.0f}MB",
            field="thumbnail",
            context={"size": len(data), "max_size": limit},
        )

    content_type = detect_content_type(data)
    if content_type is None:
        raise ValidationError(
            "Thumbnail must be a PNG, JPEG or WebP image",
            field="thumbnail",
        )
    return data, content_type


class AssetCoordinator:
    """
    Thumbnail lifecycle on top of a BlobStore, with signed URLs cached in a
    CacheStore under `thumbnail:<label_id>:<size>`.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        cache: CacheStore,
        signed_url_ttl: Optional[int] = None,
        url_cache_ttl: Optional[int] = None,
    ):
        self.blob_store = blob_store
        self.cache = cache
        self.signed_url_ttl = signed_url_ttl or settings.signed_url_ttl
        self.url_cache_ttl = url_cache_ttl or settings.cache_ttl_thumbnail

    # ── Cache helpers ─────────────────────────────────────────────────────

    async def _cache_url(self, label_id, size: str, url: str) -> None:
        try:
            await self.cache.set(CacheKeys.thumbnail(label_id, size), url, self.url_cache_ttl)
        except Exception as e:
            logger.warning("Could not cache thumbnail URL for label %s: %s", label_id, str(e))

    async def _cached_url(self, label_id, size: str) -> Optional[str]:
        try:
            return await self.cache.get(CacheKeys.thumbnail(label_id, size))
        except Exception as e:
            logger.warning("Thumbnail URL cache read failed for label %s: %s", label_id, str(e))
            return None

    async def _forget_urls(self, label_id) -> None:
        try:
            await self.cache.delete_by_prefix(f"thumbnail:{label_id}:")
        except Exception as e:
            logger.warning("Could not drop cached thumbnail URLs for label %s: %s", label_id, str(e))

    # ── Upload ────────────────────────────────────────────────────────────

    async def _remove_existing(self, label_id, size: str) -> None:
        """Best-effort removal of whatever is stored for one size."""
        try:
            existing = await self.blob_store.list(label_prefix(label_id))
            stale = [
                obj.path
                for obj in existing
                if obj.name.startswith(f"{size}.") or obj.name.startswith(f"{size}_")
            ]
            if stale:
                await self.blob_store.delete(stale)
                logger.debug("Removed %d old %s thumbnail(s) for label %s", len(stale), size, label_id)
        except StorageDegradedError as e:
            logger.warning("Thumbnail cleanup skipped for label %s (%s): %s", label_id, size, e.message)

    async def upload_thumbnail(
        self,
        label_id,
        image_bytes: bytes,
        size: str = DEFAULT_SIZE,
        content_type: str = "image/png",
    ) -> Optional[Tuple[str, str]]:
        """
        Store one size and return (signed_url, path), or None if storage failed.
        """
        if size not in THUMBNAIL_SIZES:
            logger.warning("Unknown thumbnail size '%s' for label %s", size, label_id)
            return None

        path = thumbnail_path(label_id, size)
        await self._remove_existing(label_id, size)

        try:
            await self.blob_store.put(path, image_bytes, content_type)
            url = await self.blob_store.sign_url(path, self.signed_url_ttl)
        except StorageDegradedError as e:
            logger.warning("Thumbnail upload failed for label %s (%s): %s", label_id, size, e.message)
            return None

        await self._cache_url(label_id, size, url)
        return url, path

    async def upload_all_sizes(
        self,
        label_id,
        image_bytes: bytes,
        content_type: str = "image/png",
    ) -> Dict[str, Optional[str]]:
        """Upload every size concurrently. Returns {size: signed_url or None}."""
        sizes = list(THUMBNAIL_SIZES)
        results = await asyncio.gather(
            *(self.upload_thumbnail(label_id, image_bytes, size, content_type) for size in sizes),
            return_exceptions=True,
        )

        urls: Dict[str, Optional[str]] = {}
        for size, result in zip(sizes, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error uploading %s thumbnail for label %s: %s",
                    size,
                    label_id,
                    str(result),
                    exc_info=result,
                )
                urls[size] = None
            else:
                urls[size] = result[0] if result else None
        return urls

    async def store_payload(self, label_id, payload: ThumbnailPayload) -> Optional[str]:
        """
        Decode a client payload and upload all sizes.

        Returns the `md` path (the label's thumbnail_ref) when it was stored,
        otherwise None. An invalid payload is logged and ignored.
        """
        try:
            data, content_type = decode_payload(payload)
        except ValidationError as e:
            logger.warning("Ignoring thumbnail for label %s: %s", label_id, e.message)
            return None

        urls = await self.upload_all_sizes(label_id, data, content_type)
        if urls.get(DEFAULT_SIZE):
            return thumbnail_path(label_id, DEFAULT_SIZE)
        return None

    async def replace_thumbnails(self, label_id, payload: ThumbnailPayload) -> Tuple[bool, Optional[str]]:
        """
        Delete every stored size, then store the new payload.

        The old objects go first so a label never serves a mix of old and new
        renditions.

        Returns:
            (replaced, thumbnail_ref)
            - (False, None): invalid payload, existing thumbnails untouched
            - (True, path):  new thumbnails stored, `path` is the md object
            - (True, None):  old objects removed but the upload failed; the
                             label no longer has a thumbnail
        """
        try:
            data, content_type = decode_payload(payload)
        except ValidationError as e:
            logger.warning("Ignoring replacement thumbnail for label %s: %s", label_id, e.message)
            return False, None

        await self.delete_all_for_label(label_id)
        urls = await self.upload_all_sizes(label_id, data, content_type)
        if urls.get(DEFAULT_SIZE):
            return True, thumbnail_path(label_id, DEFAULT_SIZE)

        logger.warning("Thumbnail replacement for label %s stored nothing; thumbnail cleared", label_id)
        return True, None

    # ── URLs ──────────────────────────────────────────────────────────────

    async def refresh_url(self, label_id, size: str = DEFAULT_SIZE) -> Optional[str]:
        """Sign a fresh URL for the stored object. Never touches the bytes."""
        if size not in THUMBNAIL_SIZES:
            logger.warning("Unknown thumbnail size '%s' for label %s", size, label_id)
            return None
        try:
            url = await self.blob_store.sign_url(thumbnail_path(label_id, size), self.signed_url_ttl)
        except StorageDegradedError as e:
            logger.warning("Could not sign thumbnail URL for label %s (%s): %s", label_id, size, e.message)
            return None

        await self._cache_url(label_id, size, url)
        return url

    async def get_url(self, label_id, size: str = DEFAULT_SIZE) -> Optional[str]:
        """Cached signed URL if there is one, else a freshly signed one."""
        cached = await self._cached_url(label_id, size)
        if cached:
            return cached
        return await self.refresh_url(label_id, size)

    # ── Copy / Delete ─────────────────────────────────────────────────────

    async def copy_thumbnails(self, source_label_id, target_label_id) -> Optional[str]:
        """
        Copy every stored size of one label into another label's own paths.

        Returns the target's `md` path when that size was copied.
        """
        try:
            stored = {obj.name for obj in await self.blob_store.list(label_prefix(source_label_id))}
        except StorageDegradedError as e:
            logger.warning("Could not list thumbnails of label %s: %s", source_label_id, e.message)
            return None

        copied = set()
        for size in THUMBNAIL_SIZES:
            if f"{size}.png" not in stored:
                continue
            try:
                await self.blob_store.copy(
                    thumbnail_path(source_label_id, size),
                    thumbnail_path(target_label_id, size),
                )
                copied.add(size)
            except StorageDegradedError as e:
                logger.warning(
                    "Could not copy %s thumbnail from label %s to %s: %s",
                    size,
                    source_label_id,
                    target_label_id,
                    e.message,
                )

        if DEFAULT_SIZE in copied:
            return thumbnail_path(target_label_id, DEFAULT_SIZE)
        return None

    async def delete_all_for_label(self, label_id) -> int:
        """Remove every stored object of the label. Returns how many were removed."""
        removed = 0
        try:
            paths = [obj.path for obj in await self.blob_store.list(label_prefix(label_id))]
            if paths:
                await self.blob_store.delete(paths)
                removed = len(paths)
        except StorageDegradedError as e:
            logger.warning("Thumbnail deletion failed for label %s: %s", label_id, e.message)

        await self._forget_urls(label_id)
        return removed
