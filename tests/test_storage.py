"""Tests for storage location resolution."""

import httpx
import pytest

from knowledge_pipeline.config import settings
from knowledge_pipeline.core import StorageException
from knowledge_pipeline.infrastructure.storage import (
    DocumentFileResolver,
    HTTPDocumentStorage,
    LocalDocumentStorage,
    candidate_locations,
    close_document_storage,
    get_document_storage,
)

from tests.conftest import InMemoryStorage

LEGACY_BUCKETS = ["documents", "ai_documents", "chunk-tester"]
LEGACY_PREFIXES = ["uploads", "documents"]


class TestCandidateLocations:

    def test_primary_location_comes_first(self):
        candidates = candidate_locations(
            "org/policy.docx", "ai-documents", LEGACY_BUCKETS, LEGACY_PREFIXES, max_attempts=10
        )

        assert candidates[0] == ("ai-documents", "org/policy.docx")
        assert ("documents", "org/policy.docx") in candidates
        assert ("ai-documents", "uploads/org/policy.docx") in candidates
        assert len(candidates) == len(set(candidates))
        assert len(candidates) == 10

    def test_bucket_named_in_path_is_tried_first(self):
        candidates = candidate_locations("/documents/org/policy.docx", "ai-documents", LEGACY_BUCKETS)

        assert candidates[0] == ("documents", "org/policy.docx")
        assert candidates[1] == ("ai-documents", "org/policy.docx")

    def test_prefixed_path_is_also_tried_without_prefix(self):
        candidates = candidate_locations(
            "uploads/org/policy.docx", "ai-documents", [], LEGACY_PREFIXES, max_attempts=10
        )

        assert ("ai-documents", "org/policy.docx") in candidates

    def test_legacy_resolution_disabled(self):
        candidates = candidate_locations(
            "org/policy.docx", "ai-documents", LEGACY_BUCKETS, LEGACY_PREFIXES, legacy_resolution=False
        )

        assert candidates == [("ai-documents", "org/policy.docx")]


class TestDocumentFileResolver:

    @pytest.mark.asyncio
    async def test_primary_hit(self):
        storage = InMemoryStorage({("ai-documents", "org/a.txt"): b"hello"})

        stored = await DocumentFileResolver(storage).fetch("org/a.txt")

        assert stored.data == b"hello"
        assert stored.location == "ai-documents/org/a.txt"
        assert not stored.used_legacy_location

    @pytest.mark.asyncio
    async def test_legacy_bucket_fallback(self):
        storage = InMemoryStorage({("documents", "org/a.txt"): b"legacy"})

        stored = await DocumentFileResolver(storage).fetch("org/a.txt")

        assert stored.data == b"legacy"
        assert stored.used_legacy_location
        assert stored.attempted_locations == ["ai-documents/org/a.txt", "documents/org/a.txt"]

    @pytest.mark.asyncio
    async def test_missing_everywhere_raises_with_attempts(self):
        with pytest.raises(StorageException) as exc_info:
            await DocumentFileResolver(InMemoryStorage()).fetch("org/a.txt")

        assert "File not found in storage: org/a.txt" in exc_info.value.message
        assert exc_info.value.attempted_locations[0] == "ai-documents/org/a.txt"
        assert len(exc_info.value.attempted_locations) == 3


class TestLocalDocumentStorage:

    @pytest.mark.asyncio
    async def test_reads_bucket_directories(self, tmp_path):
        (tmp_path / "ai-documents" / "org").mkdir(parents=True)
        (tmp_path / "ai-documents" / "org" / "a.txt").write_bytes(b"local")
        storage = LocalDocumentStorage(tmp_path)

        assert await storage.read("ai-documents", "org/a.txt") == b"local"
        assert await storage.read("ai-documents", "org/missing.txt") is None

    @pytest.mark.asyncio
    async def test_rejects_paths_outside_root(self, tmp_path):
        root = tmp_path / "store"
        root.mkdir()
        (tmp_path / "secret.txt").write_bytes(b"secret")

        assert await LocalDocumentStorage(root).read("ai-documents", "../../secret.txt") is None


class TestHTTPDocumentStorage:

    @pytest.mark.asyncio
    async def test_status_codes(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/found.txt"):
                return httpx.Response(200, content=b"remote")
            if request.url.path.endswith("/broken.txt"):
                return httpx.Response(500)
            return httpx.Response(404)

        storage = HTTPDocumentStorage(base_url="https://storage.test", api_key="key")
        storage._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await storage.read("ai-documents", "org/found.txt") == b"remote"
        assert await storage.read("ai-documents", "org/gone.txt") is None
        with pytest.raises(StorageException):
            await storage.read("ai-documents", "org/broken.txt")

        await storage.close()


class TestSharedDocumentStorage:

    @pytest.mark.asyncio
    async def test_storage_is_shared_until_closed(self, monkeypatch):
        monkeypatch.setattr(settings, "storage_backend", "http")
        monkeypatch.setattr(settings, "storage_base_url", "https://storage.test")

        storage = get_document_storage()
        assert isinstance(storage, HTTPDocumentStorage)
        assert get_document_storage() is storage

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        storage._http_client = http_client
        assert await storage.read("ai-documents", "org/missing.docx") is None

        await close_document_storage()

        assert http_client.is_closed
        replacement = get_document_storage()
        assert replacement is not storage
        await close_document_storage()
