"""
LabelDesk Backend — Signed Thumbnail Files
============================================

What:  Serves thumbnails stored by LocalBlobStore.
Why:   Local storage has no CDN of its own; signing keeps thumbnails as
       private as the labels they belong to.
How:   URLs handed out by LocalBlobStore.sign_url() look like
           /api/files/labels/<id>/md.png?expires=<unix>&signature=<hmac>
       The signature and expiry are checked before the file is read.
Who:   <img> tags in the frontend, via `thumbnail_url`.

With any other storage backend the thumbnails are served by that backend's
own signed URLs and this route answers 404.
"""

import logging

import aiofiles
from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse

from labeldesk.dependencies import get_blob_store
from labeldesk.exceptions import NotFoundError, StorageDegradedError
from labeldesk.schemas.label import ErrorResponse
from labeldesk.services.asset_coordinator import detect_content_type
from labeldesk.services.blob_store import BlobStore, LocalBlobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Files"])

# Header bytes handed to libmagic
_SNIFF_BYTES = 2048

_MEDIA_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".webp": "image/webp"}


@router.get(
    "/files/{file_path:path}",
    summary="Serve a thumbnail through a signed URL",
    responses={
        200: {"description": "Image file"},
        404: {"description": "Unknown file, bad signature or expired URL", "model": ErrorResponse},
    },
)
async def serve_file(
    file_path: str,
    expires: int = Query(..., description="Unix timestamp the URL stops working at"),
    signature: str = Query(..., description="HMAC-SHA256 of '<path>:<expires>'"),
    blob_store: BlobStore = Depends(get_blob_store),
) -> FileResponse:
    # Expired, forged and missing all answer 404 so URLs can't be probed
    if not isinstance(blob_store, LocalBlobStore):
        raise NotFoundError(resource="file")

    if not blob_store.verify_signature(file_path, expires, signature):
        logger.info("Rejected file request with invalid or expired signature: %s", file_path)
        raise NotFoundError(resource="file")

    try:
        full_path = blob_store.resolve(file_path)
    except StorageDegradedError:
        raise NotFoundError(resource="file") from None

    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=file_path)

    # The stored bytes may be JPEG or WebP even under a .png name
    async with aiofiles.open(full_path, "rb") as f:
        head = await f.read(_SNIFF_BYTES)
    media_type = detect_content_type(head) or _MEDIA_TYPES.get(full_path.suffix.lower(), "application/octet-stream")

    return FileResponse(
        path=str(full_path),
        media_type=media_type,
        headers={"Cache-Control": "private, max-age=3600"},
    )
