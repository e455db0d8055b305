"""
LabelDesk Backend — Asset Coordinator Tests
=============================================

What we test:
    ✅ Payload decoding (bytes, base64, data URL) and type/size checks
    ✅ Deterministic paths, cleanup of the previous object per size
    ✅ Signed URL caching and re-signing
    ✅ Copy and delete of all sizes
    ✅ Storage and cache failures degrade to None / 0
"""

import base64
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from labeldesk.exceptions import StorageDegradedError, ValidationError
from labeldesk.services.asset_coordinator import (
    AssetCoordinator,
    decode_payload,
    detect_content_type,
    thumbnail_path,
)


class TestDecodePayload:
    def test_raw_png_bytes(self, sample_png_bytes):
        data, content_type = decode_payload(sample_png_bytes)
        assert data == sample_png_bytes
        assert content_type == "image/png"

    def test_base64_string(self, sample_png_bytes):
        data, _ = decode_payload(base64.b64encode(sample_png_bytes).decode())
        assert data == sample_png_bytes

    def test_data_url(self, sample_jpeg_bytes):
        payload = "data:image/jpeg;base64," + base64.b64encode(sample_jpeg_bytes).decode()
        data, content_type = decode_payload(payload)
        assert data == sample_jpeg_bytes
        assert content_type == "image/jpeg"

    def test_webp_detected(self):
        webp = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 8
        assert detect_content_type(webp) == "image/webp"

    def test_invalid_base64(self):
        with pytest.raises(ValidationError) as exc_info:
            decode_payload("not base64 at all!!")
        assert exc_info.value.field == "thumbnail"

    def test_data_url_without_base64_marker(self):
        with pytest.raises(ValidationError):
            decode_payload("data:image/png,rawtext")

    def test_empty(self):
        with pytest.raises(ValidationError, match="empty"):
            decode_payload(b"")

    def test_too_large(self, sample_png_bytes):
        with pytest.raises(ValidationError) as exc_info:
            decode_payload(sample_png_bytes, max_size=10)
        assert exc_info.value.context["max_size"] == 10

    def test_unsupported_type(self):
        with pytest.raises(ValidationError, match="PNG, JPEG or WebP"):
            decode_payload(b"GIF89a" + b"\x00" * 20)

    def test_data_url_claim_is_not_trusted(self):
        gif = base64.b64encode(b"GIF89a" + b"\x00" * 20).decode()
        with pytest.raises(ValidationError):
            decode_payload(f"data:image/png;base64,{gif}")

    def test_type_comes_from_libmagic(self, sample_png_bytes):
        with patch("labeldesk.services.asset_coordinator.magic.from_buffer", return_value="image/webp") as from_buffer:
            _, content_type = decode_payload(sample_png_bytes)

        from_buffer.assert_called_once_with(sample_png_bytes, mime=True)
        assert content_type == "image/webp"

    def test_detected_type_outside_allow_list(self, sample_png_bytes):
        with patch("labeldesk.services.asset_coordinator.magic.from_buffer", return_value="image/svg+xml"):
            assert detect_content_type(sample_png_bytes) is None


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_returns_url_and_deterministic_path(self, assets, blob_store, cache_store, sample_png_bytes):
        label_id = uuid.uuid4()

        url, path = await assets.upload_thumbnail(label_id, sample_png_bytes, "md")

        assert path == f"labels/{label_id}/md.png"
        assert await blob_store.read(path) == sample_png_bytes
        assert url.startswith("http://test/api/files/")
        assert await cache_store.get(f"thumbnail:{label_id}:md") == url

    @pytest.mark.asyncio
    async def test_upload_removes_previous_object_of_same_size_only(self, assets, blob_store, sample_png_bytes):
        label_id = uuid.uuid4()
        await blob_store.put(f"labels/{label_id}/md_1700000000.png", b"old")
        await blob_store.put(f"labels/{label_id}/sm.png", b"small")

        await assets.upload_thumbnail(label_id, sample_png_bytes, "md")

        names = [obj.name for obj in await blob_store.list(f"labels/{label_id}")]
        assert names == ["md.png", "sm.png"]

    @pytest.mark.asyncio
    async def test_unknown_size(self, assets, sample_png_bytes):
        assert await assets.upload_thumbnail(uuid.uuid4(), sample_png_bytes, "xl") is None

    @pytest.mark.asyncio
    async def test_upload_all_sizes(self, assets, blob_store, sample_png_bytes):
        label_id = uuid.uuid4()

        urls = await assets.upload_all_sizes(label_id, sample_png_bytes)

        assert set(urls) == {"sm", "md", "lg"}
        assert all(urls.values())
        assert len(await blob_store.list(f"labels/{label_id}")) == 3

    @pytest.mark.asyncio
    async def test_store_payload_returns_md_path(self, assets, sample_png_bytes):
        label_id = uuid.uuid4()
        ref = await assets.store_payload(label_id, base64.b64encode(sample_png_bytes).decode())
        assert ref == thumbnail_path(label_id, "md")

    @pytest.mark.asyncio
    async def test_store_payload_ignores_invalid_image(self, assets, blob_store):
        label_id = uuid.uuid4()
        assert await assets.store_payload(label_id, b"plain text") is None
        assert await blob_store.list(f"labels/{label_id}") == []

    @pytest.mark.asyncio
    async def test_broken_cache_does_not_fail_upload(self, blob_store, sample_png_bytes):
        cache = MagicMock()
        cache.set = AsyncMock(side_effect=ConnectionError("redis down"))
        coordinator = AssetCoordinator(blob_store, cache)

        result = await coordinator.upload_thumbnail(uuid.uuid4(), sample_png_bytes)

        assert result is not None


class TestReplace:
    @pytest.mark.asyncio
    async def test_old_objects_removed_before_new_written(self, recording_blob_store, cache_store, sample_png_bytes):
        coordinator = AssetCoordinator(recording_blob_store, cache_store)
        label_id = uuid.uuid4()
        await recording_blob_store.put(f"labels/{label_id}/md.png", b"old")
        await recording_blob_store.put(f"labels/{label_id}/lg.png", b"old")
        recording_blob_store.calls.clear()

        replaced, ref = await coordinator.replace_thumbnails(label_id, sample_png_bytes)

        assert replaced is True
        assert ref == thumbnail_path(label_id, "md")
        first_put = next(i for i, call in enumerate(recording_blob_store.calls) if call[0] == "put")
        first_delete = recording_blob_store.calls.index(
            ("delete", (f"labels/{label_id}/lg.png", f"labels/{label_id}/md.png"))
        )
        assert first_delete < first_put
        assert await recording_blob_store.read(f"labels/{label_id}/md.png") == sample_png_bytes

    @pytest.mark.asyncio
    async def test_failed_upload_after_delete_reports_no_ref(self, assets, blob_store, sample_png_bytes):
        label_id = uuid.uuid4()
        await assets.upload_all_sizes(label_id, sample_png_bytes)
        blob_store.put = AsyncMock(side_effect=StorageDegradedError("Storage backend unreachable"))

        replaced, ref = await assets.replace_thumbnails(label_id, sample_png_bytes)

        assert replaced is True
        assert ref is None
        assert await blob_store.list(f"labels/{label_id}") == []

    @pytest.mark.asyncio
    async def test_invalid_replacement_keeps_existing(self, assets, blob_store):
        label_id = uuid.uuid4()
        await blob_store.put(f"labels/{label_id}/md.png", b"keep")

        assert await assets.replace_thumbnails(label_id, "%%%") == (False, None)
        assert await blob_store.read(f"labels/{label_id}/md.png") == b"keep"


class TestUrls:
    @pytest.mark.asyncio
    async def test_get_url_prefers_cache(self, assets, cache_store):
        label_id = uuid.uuid4()
        await cache_store.set(f"thumbnail:{label_id}:md", "http://cached/url", ttl=60)

        assert await assets.get_url(label_id) == "http://cached/url"

    @pytest.mark.asyncio
    async def test_get_url_signs_on_miss(self, assets, blob_store, cache_store):
        label_id = uuid.uuid4()
        await blob_store.put(thumbnail_path(label_id, "md"), b"x")

        url = await assets.get_url(label_id)

        assert url.startswith(f"http://test/api/files/labels/{label_id}/md.png?")
        assert await cache_store.get(f"thumbnail:{label_id}:md") == url

    @pytest.mark.asyncio
    async def test_refresh_url_missing_object(self, assets):
        assert await assets.refresh_url(uuid.uuid4(), "md") is None

    @pytest.mark.asyncio
    async def test_refresh_url_unknown_size(self, assets):
        assert await assets.refresh_url(uuid.uuid4(), "huge") is None


class TestCopyAndDelete:
    @pytest.mark.asyncio
    async def test_copy_all_sizes(self, assets, blob_store, sample_png_bytes):
        source, target = uuid.uuid4(), uuid.uuid4()
        await assets.upload_all_sizes(source, sample_png_bytes)

        ref = await assets.copy_thumbnails(source, target)

        assert ref == thumbnail_path(target, "md")
        assert [o.name for o in await blob_store.list(f"labels/{target}")] == ["lg.png", "md.png", "sm.png"]
        # Source untouched
        assert len(await blob_store.list(f"labels/{source}")) == 3

    @pytest.mark.asyncio
    async def test_copy_without_md_returns_none(self, assets, blob_store):
        source, target = uuid.uuid4(), uuid.uuid4()
        await blob_store.put(thumbnail_path(source, "sm"), b"small")

        assert await assets.copy_thumbnails(source, target) is None
        assert await blob_store.read(thumbnail_path(target, "sm")) == b"small"

    @pytest.mark.asyncio
    async def test_copy_nothing_stored(self, assets):
        assert await assets.copy_thumbnails(uuid.uuid4(), uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_delete_all_for_label(self, assets, blob_store, cache_store, sample_png_bytes):
        label_id = uuid.uuid4()
        await assets.upload_all_sizes(label_id, sample_png_bytes)

        removed = await assets.delete_all_for_label(label_id)

        assert removed == 3
        assert await blob_store.list(f"labels/{label_id}") == []
        assert await cache_store.get(f"thumbnail:{label_id}:md") is None


class TestDegradedStorage:
    @pytest.mark.asyncio
    async def test_everything_degrades_quietly(self, failing_blob_store, cache_store, sample_png_bytes):
        coordinator = AssetCoordinator(failing_blob_store, cache_store)
        label_id = uuid.uuid4()

        assert await coordinator.upload_thumbnail(label_id, sample_png_bytes) is None
        assert await coordinator.store_payload(label_id, sample_png_bytes) is None
        assert await coordinator.get_url(label_id) is None
        assert await coordinator.copy_thumbnails(label_id, uuid.uuid4()) is None
        assert await coordinator.delete_all_for_label(label_id) == 0
        assert failing_blob_store.calls > 0
