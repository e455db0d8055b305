"""
LabelDesk Backend — Blob Store Backends
=========================================

What:  Abstract blob store interface plus the three implementations the
       service can run with.
Why:   The backend differs between local development and production;
       the thumbnail logic above it must not.
How:   `build_blob_store(settings)` picks one at startup:

           local     → LocalBlobStore     (aiofiles on disk, HMAC-signed URLs
                                           served by GET /api/files/{path})
           supabase  → SupabaseBlobStore  (Supabase Storage REST API via httpx,
                                           tenacity retry + circuit breaker)
           none      → NullBlobStore      (null object: nothing is stored)

Who:   AssetCoordinator is the only caller.

Contract:
    Every failure is raised as StorageDegradedError (or its subclass
    CircuitBreakerOpenError). Implementations never return partial garbage;
    the AssetCoordinator decides how to degrade.
"""

import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

import aiofiles
import httpx

from labeldesk.config import Settings
from labeldesk.exceptions import StorageDegradedError
from labeldesk.services.resilience import CircuitBreaker, storage_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobObject:
    """One stored object as reported by `BlobStore.list()`."""

    name: str          # last path segment, e.g. "md.png"
    path: str          # full object path, e.g. "labels/<id>/md.png"
    size: Optional[int] = None


class BlobStore(ABC):
    """
    Interface for thumbnail object storage.

    Paths are bucket-relative, slash separated, and never start with "/".
    """

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        """Store `data` at `path`, replacing any existing object. Returns the stored path."""
        ...

    @abstractmethod
    async def delete(self, paths: List[str]) -> None:
        """Remove the given objects. Missing objects are not an error."""
        ...

    @abstractmethod
    async def sign_url(self, path: str, ttl: int) -> str:
        """Time-limited access URL for an existing object."""
        ...

    @abstractmethod
    async def list(self, prefix: str) -> List[BlobObject]:
        """Objects directly under the `prefix` folder."""
        ...

    @abstractmethod
    async def copy(self, source_path: str, destination_path: str) -> str:
        """Server-side copy. Returns the destination path."""
        ...

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ══════════════════════════════════════════════════════════════════════════
# Null Object
# ══════════════════════════════════════════════════════════════════════════

class NullBlobStore(BlobStore):
    """
    Stand-in used when no storage backend is configured.

    Reads report nothing stored, deletes are no-ops, and anything that would
    need a real object raises StorageDegradedError so labels simply end up
    without thumbnails.
    """

    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        raise StorageDegradedError("Thumbnail storage is not configured", context={"path": path})

    async def delete(self, paths: List[str]) -> None:
        return None

    async def sign_url(self, path: str, ttl: int) -> str:
        raise StorageDegradedError("Thumbnail storage is not configured", context={"path": path})

    async def list(self, prefix: str) -> List[BlobObject]:
        return []

    async def copy(self, source_path: str, destination_path: str) -> str:
        raise StorageDegradedError(
            "Thumbnail storage is not configured",
            context={"source": source_path, "destination": destination_path},
        )

    async def health_check(self) -> bool:
        return False


# ══════════════════════════════════════════════════════════════════════════
# Local Disk
# ══════════════════════════════════════════════════════════════════════════

class LocalBlobStore(BlobStore):
    """
    Stores objects under <storage_root>/<bucket>/<path>.

    Directory Structure:
        storage/
        └── thumbnails/
            └── labels/
                └── <label_id>/
                    ├── sm.png
                    ├── md.png
                    └── lg.png

    Signed URLs point at GET /api/files/{path} and carry `expires` and an
    HMAC-SHA256 `signature` over "<path>:<expires>".
    """

    def __init__(
        self,
        storage_root: str,
        bucket: str,
        signing_secret: str,
        public_base_url: str,
    ):
        self.root = (Path(storage_root) / bucket).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret.encode("utf-8")
        self.public_base_url = public_base_url.rstrip("/")
        logger.info("LocalBlobStore initialized with root=%s", self.root)

    def resolve(self, path: str) -> Path:
        """
        Absolute file path for an object path.

        Raises StorageDegradedError if the path escapes the bucket root
        (e.g. "../../etc/passwd").
        """
        full_path = (self.root / path.lstrip("/")).resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise StorageDegradedError("Invalid object path", context={"path": path})
        return full_path

    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageDegradedError(
                "Failed to store object",
                context={"path": path, "os_error": str(e)},
            ) from e
        logger.debug("Object stored: %s (%d bytes)", path, len(data))
        return path

    async def read(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            async with aiofiles.open(target, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageDegradedError(
                "Failed to read object",
                context={"path": path, "os_error": str(e)},
            ) from e

    async def delete(self, paths: List[str]) -> None:
        for path in paths:
            target = self.resolve(path)
            try:
                target.unlink(missing_ok=True)
            except OSError as e:
                raise StorageDegradedError(
                    "Failed to delete object",
                    context={"path": path, "os_error": str(e)},
                ) from e

    async def list(self, prefix: str) -> List[BlobObject]:
        folder = self.resolve(prefix)
        if not folder.is_dir():
            return []
        base = prefix.strip("/")
        try:
            return [
                BlobObject(name=entry.name, path=f"{base}/{entry.name}", size=entry.stat().st_size)
                for entry in sorted(folder.iterdir())
                if entry.is_file()
            ]
        except OSError as e:
            raise StorageDegradedError(
                "Failed to list objects",
                context={"prefix": prefix, "os_error": str(e)},
            ) from e

    async def copy(self, source_path: str, destination_path: str) -> str:
        data = await self.read(source_path)
        return await self.put(destination_path, data)

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def sign_url(self, path: str, ttl: int) -> str:
        if not self.resolve(path).is_file():
            raise StorageDegradedError("Object not found", context={"path": path})
        expires = int(time.time()) + ttl
        query = urlencode({"expires": expires, "signature": self._signature(path, expires)})
        return f"{self.public_base_url}/api/files/{path}?{query}"

    def verify_signature(self, path: str, expires: int, signature: str) -> bool:
        """True if the signature matches and the URL has not expired yet."""
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(path, expires), signature)

    async def health_check(self) -> bool:
        return self.root.is_dir()


# ══════════════════════════════════════════════════════════════════════════
# Supabase Storage
# ══════════════════════════════════════════════════════════════════════════

class SupabaseBlobStore(BlobStore):
    """
    Supabase Storage over its REST API (/storage/v1).

    Every call goes through the circuit breaker first, then a tenacity retry
    for transport errors. 5xx responses count as backend failures; 4xx
    responses (missing object, bad key) mean the backend is up.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="supabase-storage")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/storage/v1",
            headers={
                "Authorization": f"Bearer {service_key}",
                "apikey": service_key,
            },
            timeout=timeout,
            transport=transport,
        )
        logger.info("SupabaseBlobStore initialized for bucket '%s'", bucket)

    @storage_retry((httpx.TransportError,))
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, url, **kwargs)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        self.circuit_breaker.can_execute()

        try:
            response = await self._send(method, url, **kwargs)
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            raise StorageDegradedError(
                "Storage backend unreachable",
                context={"method": method, "url": url, "error_type": type(e).__name__},
            ) from e

        if response.status_code >= 500:
            self.circuit_breaker.record_failure()
            raise StorageDegradedError(
                f"Storage backend error ({response.status_code})",
                context={"method": method, "url": url, "status": response.status_code},
            )

        self.circuit_breaker.record_success()
        if response.status_code >= 400:
            raise StorageDegradedError(
                f"Storage request rejected ({response.status_code})",
                context={"method": method, "url": url, "status": response.status_code},
            )
        return response

    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        await self._request(
            "POST",
            f"/object/{self.bucket}/{path}",
            content=data,
            headers={
                "content-type": content_type,
                "cache-control": "max-age=86400",
                "x-upsert": "true",
            },
        )
        return path

    async def delete(self, paths: List[str]) -> None:
        if not paths:
            return
        await self._request("DELETE", f"/object/{self.bucket}", json={"prefixes": paths})

    async def sign_url(self, path: str, ttl: int) -> str:
        response = await self._request(
            "POST",
            f"/object/sign/{self.bucket}/{path}",
            json={"expiresIn": ttl},
        )
        signed = response.json().get("signedURL")
        if not signed:
            raise StorageDegradedError("Storage returned no signed URL", context={"path": path})
        return f"{self.base_url}/storage/v1{signed}"

    async def list(self, prefix: str) -> List[BlobObject]:
        base = prefix.strip("/")
        response = await self._request(
            "POST",
            f"/object/list/{self.bucket}",
            json={
                "prefix": base,
                "limit": 1000,
                "offset": 0,
                "sortBy": {"column": "name", "order": "asc"},
            },
        )
        objects = []
        for entry in response.json():
            metadata = entry.get("metadata") or {}
            objects.append(
                BlobObject(
                    name=entry["name"],
                    path=f"{base}/{entry['name']}",
                    size=metadata.get("size"),
                )
            )
        return objects

    async def copy(self, source_path: str, destination_path: str) -> str:
        await self._request(
            "POST",
            "/object/copy",
            json={
                "bucketId": self.bucket,
                "sourceKey": source_path,
                "destinationKey": destination_path,
            },
        )
        return destination_path

    async def health_check(self) -> bool:
        try:
            await self._request("GET", f"/bucket/{self.bucket}")
        except StorageDegradedError as e:
            logger.warning("Storage health check failed: %s", e.message)
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()


def build_blob_store(config: Settings) -> BlobStore:
    """Select the blob store once, at process startup."""
    if config.storage_backend == "supabase":
        if not (config.supabase_url and config.supabase_service_key):
            logger.warning("Supabase storage selected but not configured, thumbnails disabled")
            return NullBlobStore()
        return SupabaseBlobStore(
            base_url=config.supabase_url,
            service_key=config.supabase_service_key,
            bucket=config.thumbnail_bucket,
            timeout=config.storage_timeout,
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.cb_failure_threshold,
                recovery_timeout=config.cb_recovery_timeout,
                name="supabase-storage",
            ),
        )
    if config.storage_backend == "local":
        return LocalBlobStore(
            storage_root=config.storage_root,
            bucket=config.thumbnail_bucket,
            signing_secret=config.url_signing_secret,
            public_base_url=config.public_base_url,
        )
    logger.info("Thumbnail storage disabled (STORAGE_BACKEND=none)")
    return NullBlobStore()
