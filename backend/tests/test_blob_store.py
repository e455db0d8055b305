"""
LabelDesk Backend — Blob Store Tests
======================================

What we test:
    ✅ LocalBlobStore: put/list/copy/delete on disk, signed URLs, traversal guard
    ✅ SupabaseBlobStore: request shapes against httpx.MockTransport,
       error mapping, retry on transport errors, circuit breaker
    ✅ build_blob_store backend selection
    ❌ Real Supabase calls
"""

import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from labeldesk.config import Settings
from labeldesk.exceptions import CircuitBreakerOpenError, StorageDegradedError
from labeldesk.services.blob_store import (
    LocalBlobStore,
    NullBlobStore,
    SupabaseBlobStore,
    build_blob_store,
)
from labeldesk.services.resilience import CircuitBreaker


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_put_then_list(self, blob_store):
        await blob_store.put("labels/abc/md.png", b"png-bytes")
        await blob_store.put("labels/abc/sm.png", b"png")

        objects = await blob_store.list("labels/abc")

        assert [obj.name for obj in objects] == ["md.png", "sm.png"]
        assert objects[0].path == "labels/abc/md.png"
        assert objects[0].size == len(b"png-bytes")

    @pytest.mark.asyncio
    async def test_list_missing_folder_is_empty(self, blob_store):
        assert await blob_store.list("labels/nothing-here") == []

    @pytest.mark.asyncio
    async def test_put_overwrites(self, blob_store):
        await blob_store.put("labels/abc/md.png", b"old")
        await blob_store.put("labels/abc/md.png", b"new")
        assert await blob_store.read("labels/abc/md.png") == b"new"

    @pytest.mark.asyncio
    async def test_delete_ignores_missing(self, blob_store):
        await blob_store.put("labels/abc/md.png", b"x")
        await blob_store.delete(["labels/abc/md.png", "labels/abc/lg.png"])
        assert await blob_store.list("labels/abc") == []

    @pytest.mark.asyncio
    async def test_copy(self, blob_store):
        await blob_store.put("labels/a/md.png", b"image")
        await blob_store.copy("labels/a/md.png", "labels/b/md.png")
        assert await blob_store.read("labels/b/md.png") == b"image"

    @pytest.mark.asyncio
    async def test_signed_url_round_trip(self, blob_store):
        await blob_store.put("labels/abc/md.png", b"x")

        url = await blob_store.sign_url("labels/abc/md.png", ttl=3600)

        parsed = urlparse(url)
        assert parsed.path == "/api/files/labels/abc/md.png"
        query = parse_qs(parsed.query)
        expires = int(query["expires"][0])
        assert expires > time.time()
        assert blob_store.verify_signature("labels/abc/md.png", expires, query["signature"][0])

    @pytest.mark.asyncio
    async def test_signature_bound_to_path(self, blob_store):
        await blob_store.put("labels/abc/md.png", b"x")
        query = parse_qs(urlparse(await blob_store.sign_url("labels/abc/md.png", 3600)).query)

        assert not blob_store.verify_signature(
            "labels/other/md.png", int(query["expires"][0]), query["signature"][0]
        )

    def test_expired_signature_rejected(self, blob_store):
        expires = int(time.time()) - 1
        signature = blob_store._signature("labels/abc/md.png", expires)
        assert not blob_store.verify_signature("labels/abc/md.png", expires, signature)

    @pytest.mark.asyncio
    async def test_sign_missing_object_fails(self, blob_store):
        with pytest.raises(StorageDegradedError):
            await blob_store.sign_url("labels/none/md.png", 3600)

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, blob_store):
        with pytest.raises(StorageDegradedError):
            await blob_store.put("../../etc/passwd", b"x")


class TestNullBlobStore:
    @pytest.mark.asyncio
    async def test_reads_are_empty_and_writes_fail(self):
        store = NullBlobStore()
        assert await store.list("labels/x") == []
        await store.delete(["labels/x/md.png"])
        with pytest.raises(StorageDegradedError):
            await store.put("labels/x/md.png", b"x")
        with pytest.raises(StorageDegradedError):
            await store.sign_url("labels/x/md.png", 60)


def _supabase(handler, breaker=None) -> SupabaseBlobStore:
    return SupabaseBlobStore(
        base_url="https://proj.supabase.co",
        service_key="service-key",
        bucket="thumbnails",
        circuit_breaker=breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=60),
        transport=httpx.MockTransport(handler),
    )


class TestSupabaseBlobStore:
    def setup_method(self):
        self.requests = []

    @pytest.mark.asyncio
    async def test_put_uploads_with_upsert(self):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(200, json={"Key": "thumbnails/labels/a/md.png"})

        store = _supabase(handler)
        assert await store.put("labels/a/md.png", b"png", "image/png") == "labels/a/md.png"

        request = self.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/thumbnails/labels/a/md.png"
        assert request.headers["x-upsert"] == "true"
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.content == b"png"

    @pytest.mark.asyncio
    async def test_sign_url_builds_absolute_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/storage/v1/object/sign/thumbnails/labels/a/md.png"
            assert json.loads(request.content) == {"expiresIn": 3600}
            return httpx.Response(200, json={"signedURL": "/object/sign/thumbnails/labels/a/md.png?token=t"})

        url = await _supabase(handler).sign_url("labels/a/md.png", 3600)

        assert url == "https://proj.supabase.co/storage/v1/object/sign/thumbnails/labels/a/md.png?token=t"

    @pytest.mark.asyncio
    async def test_list_maps_entries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert request.url.path == "/storage/v1/object/list/thumbnails"
            assert body["prefix"] == "labels/a"
            return httpx.Response(
                200,
                json=[
                    {"name": "md.png", "metadata": {"size": 10}},
                    {"name": "sm.png", "metadata": None},
                ],
            )

        objects = await _supabase(handler).list("labels/a/")

        assert [(o.name, o.path, o.size) for o in objects] == [
            ("md.png", "labels/a/md.png", 10),
            ("sm.png", "labels/a/sm.png", None),
        ]

    @pytest.mark.asyncio
    async def test_delete_sends_prefixes(self):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(200, json=[])

        await _supabase(handler).delete(["labels/a/md.png", "labels/a/sm.png"])

        request = self.requests[0]
        assert request.method == "DELETE"
        assert json.loads(request.content) == {"prefixes": ["labels/a/md.png", "labels/a/sm.png"]}

    @pytest.mark.asyncio
    async def test_copy_payload(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/storage/v1/object/copy"
            assert json.loads(request.content) == {
                "bucketId": "thumbnails",
                "sourceKey": "labels/a/md.png",
                "destinationKey": "labels/b/md.png",
            }
            return httpx.Response(200, json={"Key": "thumbnails/labels/b/md.png"})

        assert await _supabase(handler).copy("labels/a/md.png", "labels/b/md.png") == "labels/b/md.png"

    @pytest.mark.asyncio
    async def test_client_error_is_degraded_but_not_a_breaker_failure(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        store = _supabase(lambda request: httpx.Response(404, json={"error": "not_found"}), breaker)

        with pytest.raises(StorageDegradedError):
            await store.sign_url("labels/a/md.png", 60)
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_server_errors_open_the_circuit(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        store = _supabase(handler, breaker)
        for _ in range(2):
            with pytest.raises(StorageDegradedError):
                await store.put("labels/a/md.png", b"x")

        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            await store.put("labels/a/md.png", b"x")
        # The open circuit short-circuits before any HTTP call
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={})

        await _supabase(handler).put("labels/a/md.png", b"x")

        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_into_degraded(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        with pytest.raises(StorageDegradedError):
            await _supabase(handler, breaker).put("labels/a/md.png", b"x")
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert await _supabase(lambda r: httpx.Response(200, json={"id": "thumbnails"})).health_check()
        assert not await _supabase(lambda r: httpx.Response(500)).health_check()


class TestBuildBlobStore:
    def test_local(self, temp_storage):
        store = build_blob_store(Settings(storage_backend="local", storage_root=temp_storage))
        assert isinstance(store, LocalBlobStore)

    def test_none(self):
        assert isinstance(build_blob_store(Settings(storage_backend="none")), NullBlobStore)

    def test_unconfigured_supabase_falls_back_to_null(self):
        settings = Settings(storage_backend="supabase", supabase_url="", supabase_service_key="")
        assert isinstance(build_blob_store(settings), NullBlobStore)

    def test_supabase(self):
        settings = Settings(
            storage_backend="supabase",
            supabase_url="https://proj.supabase.co",
            supabase_service_key="key",
        )
        assert isinstance(build_blob_store(settings), SupabaseBlobStore)
