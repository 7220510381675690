"""Tests for the document processing service."""

import asyncio
import logging
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_pipeline.config import ExtractionMethod, ProcessingStatus
from knowledge_pipeline.core import RepositoryException, ResourceNotFoundException
from knowledge_pipeline.infrastructure.storage import DocumentFileResolver
from knowledge_pipeline.ingestion.application.services import (
    DRY_RUN_STATUS,
    SKIPPED_STATUS,
    ChunkEmbedder,
    DocumentProcessingService,
)
from knowledge_pipeline.ingestion.domain import ApprovedChunk, Chunk, ProcessingOptions

from tests.conftest import InMemoryStorage, StubEmbeddingClient

PRIMARY_BUCKET = "ai-documents"


def policy_text(sentences: int) -> str:
    return " ".join(
        f"Section {i} describes control{i} for area{i} and the evidence{i} kept by the owner."
        for i in range(sentences)
    )


class SlowStorage(InMemoryStorage):
    async def read(self, bucket: str, path: str) -> Optional[bytes]:
        await asyncio.sleep(1)
        return await super().read(bucket, path)


class TestDocumentProcessing:

    @pytest.mark.asyncio
    async def test_completed_run_stores_contiguous_chunks(
        self, processing_service, make_document, storage, chunk_repo, document_repo, embedding_client
    ):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(120).encode("utf-8")

        outcome = await processing_service.process(document.id)

        assert outcome.status == ProcessingStatus.COMPLETED
        assert outcome.total_chunks >= 2
        assert outcome.extraction_method == ExtractionMethod.PLAIN_TEXT
        assert outcome.reused_from_tester is False

        stored = await chunk_repo.list_for_document(document.organization_id, document.id)
        assert [c.chunk_index for c in stored] == list(range(len(stored)))
        assert all(c.metadata["has_embedding"] for c in stored)
        assert embedding_client.calls == len(stored)

        saved = document_repo.documents[document.id]
        assert saved.processing_status == ProcessingStatus.COMPLETED
        assert saved.total_chunks == len(stored)
        assert saved.metadata["storage_location"] == "ai-documents/org/leadership.txt"
        assert saved.metadata["quality"]["passed"] is True
        assert saved.metadata["embedded_chunks"] == len(stored)
        assert "content_hash" in saved.metadata
        assert "error" not in saved.metadata

    @pytest.mark.asyncio
    async def test_chunk_replace_latency_is_logged(self, processing_service, make_document, storage, caplog):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(120).encode("utf-8")

        with caplog.at_level(logging.INFO, logger="knowledge_pipeline.ingestion.application.services"):
            outcome = await processing_service.process(document.id)

        timed = [r for r in caplog.records if getattr(r, "operation", None) == "chunk_replace"]
        assert len(timed) == 1
        assert timed[0].document_id == document.id
        assert timed[0].chunks == outcome.total_chunks
        assert timed[0].latency_ms >= 0

    @pytest.mark.asyncio
    async def test_unknown_document_raises(self, processing_service):
        with pytest.raises(ResourceNotFoundException):
            await processing_service.process("5b0c1f9e-2a47-4e0f-9a55-3f1e8a0f6c21")

    @pytest.mark.asyncio
    async def test_missing_file_fails_with_attempted_locations(self, processing_service, make_document, document_repo):
        document = make_document(file_path="documents/missing.txt")

        outcome = await processing_service.process(document.id)

        assert outcome.status == ProcessingStatus.FAILED
        assert "File not found" in outcome.error
        saved = document_repo.documents[document.id]
        assert saved.processing_status == ProcessingStatus.FAILED
        assert saved.metadata["error"] == outcome.error
        assert saved.metadata["attempted_locations"]
        assert document_repo.rollbacks == 1

    @pytest.mark.asyncio
    async def test_low_quality_standard_document_is_rejected(self, processing_service, make_document, storage):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = b"Too short to be a policy."

        outcome = await processing_service.process(document.id)

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.error.startswith("Content quality rejected")

    @pytest.mark.asyncio
    async def test_emergency_mode_bypasses_gate_and_embeddings(
        self, processing_service, make_document, storage, chunk_repo, embedding_client
    ):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = b"Too short to be a policy."

        outcome = await processing_service.process(document.id, ProcessingOptions(emergency_chunking=True))

        assert outcome.status == ProcessingStatus.COMPLETED
        assert outcome.total_chunks == 1
        assert embedding_client.calls == 0
        stored = await chunk_repo.list_for_document(document.organization_id, document.id)
        assert stored[0].metadata["emergency_mode"] is True
        assert stored[0].embedding is None

    @pytest.mark.asyncio
    async def test_timeout_marks_document_failed(
        self, document_repo, chunk_repo, approved_repo, make_document, embedding_client
    ):
        document = make_document()
        slow = SlowStorage({(PRIMARY_BUCKET, "org/leadership.txt"): policy_text(10).encode("utf-8")})
        service = DocumentProcessingService(
            document_repository=document_repo,
            chunk_repository=chunk_repo,
            approved_chunk_repository=approved_repo,
            file_resolver=DocumentFileResolver(slow),
            embedder=ChunkEmbedder(embedding_client),
            timeout_seconds=0.05,
        )

        outcome = await service.process(document.id)

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.error == "processing timed out after 0.05s"
        assert document_repo.documents[document.id].processing_status == ProcessingStatus.FAILED
        assert await chunk_repo.count_for_document(document.organization_id, document.id) == 0

    @pytest.mark.asyncio
    async def test_zero_persisted_chunks_fails_the_run(self, processing_service, make_document, storage, chunk_repo):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(20).encode("utf-8")
        chunk_repo.persist = False

        outcome = await processing_service.process(document.id)

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.error == "no chunks were persisted"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(
        self, document_repo, chunk_repo, approved_repo, storage, make_document, embedding_client
    ):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(20).encode("utf-8")
        chunker = MagicMock()
        chunker.split.side_effect = RuntimeError("chunker exploded")
        service = DocumentProcessingService(
            document_repository=document_repo,
            chunk_repository=chunk_repo,
            approved_chunk_repository=approved_repo,
            file_resolver=DocumentFileResolver(storage),
            embedder=ChunkEmbedder(embedding_client),
            chunker=chunker,
        )

        outcome = await service.process(document.id)

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.error == "chunker exploded"
        assert document_repo.documents[document.id].metadata["error_type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_chunks_without_vectors(
        self, document_repo, chunk_repo, approved_repo, storage, make_document
    ):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(20).encode("utf-8")
        service = DocumentProcessingService(
            document_repository=document_repo,
            chunk_repository=chunk_repo,
            approved_chunk_repository=approved_repo,
            file_resolver=DocumentFileResolver(storage),
            embedder=ChunkEmbedder(StubEmbeddingClient(fail=True)),
        )

        outcome = await service.process(document.id)

        assert outcome.status == ProcessingStatus.COMPLETED
        assert outcome.embedded_chunks == 0
        stored = await chunk_repo.list_for_document(document.organization_id, document.id)
        assert all(c.embedding is None for c in stored)


class TestApprovedChunkReuse:

    @pytest.mark.asyncio
    async def test_approved_document_reuses_cached_chunks_without_embedding(
        self, processing_service, make_document, approved_repo, chunk_repo, storage, embedding_client
    ):
        document = make_document(metadata={"approved_via_tester": True})
        approved_repo.entries[document.id] = [
            ApprovedChunk(
                document_id=document.id,
                organization_id=document.organization_id,
                chunk_index=index * 2,
                content=f"Approved passage {index} about seal integrity checks.",
                content_hash=f"hash-{index}",
                embedding=[0.5, 0.5, 0.5, 0.5],
                approved_by="reviewer",
            )
            for index in range(4)
        ]

        outcome = await processing_service.process(document.id)

        assert outcome.status == ProcessingStatus.COMPLETED
        assert outcome.total_chunks == 4
        assert outcome.reused_from_tester is True
        assert outcome.extraction_method == ExtractionMethod.APPROVED_CACHE
        assert embedding_client.calls == 0
        assert storage.reads == []

        stored = await chunk_repo.list_for_document(document.organization_id, document.id)
        assert [c.chunk_index for c in stored] == [0, 1, 2, 3]
        assert all(c.metadata["reused_from_tester"] for c in stored)
        assert [c.content_hash for c in stored] == ["hash-0", "hash-1", "hash-2", "hash-3"]

    @pytest.mark.asyncio
    async def test_marker_without_cache_falls_back_to_chunking(
        self, processing_service, make_document, storage
    ):
        document = make_document(file_path="chunk-tester/leadership.txt")
        storage.files[(PRIMARY_BUCKET, "chunk-tester/leadership.txt")] = policy_text(40).encode("utf-8")

        outcome = await processing_service.process(document.id)

        assert outcome.status == ProcessingStatus.COMPLETED
        assert outcome.reused_from_tester is False


class TestDryRunAndSkip:

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(
        self, processing_service, make_document, storage, chunk_repo, document_repo, embedding_client
    ):
        document = make_document()
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(120).encode("utf-8")

        outcome = await processing_service.process(document.id, ProcessingOptions(dry_run=True))

        assert outcome.status == DRY_RUN_STATUS
        assert outcome.dry_run is True
        assert outcome.total_chunks >= 2
        assert 1 <= len(outcome.previews) <= 3
        assert all(len(p.preview) <= 200 for p in outcome.previews)
        assert embedding_client.calls == 0
        assert chunk_repo.chunks == {}
        assert document_repo.commits == 0
        assert document_repo.documents[document.id].processing_status == ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_dry_run_failure_is_reported_not_recorded(self, processing_service, make_document, document_repo):
        document = make_document(file_path="org/absent.txt")

        outcome = await processing_service.process(document.id, ProcessingOptions(dry_run=True))

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.dry_run is True
        assert document_repo.documents[document.id].processing_status == ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_unexpected_dry_run_error_is_a_failed_outcome(
        self, processing_service, make_document, approved_repo, document_repo, monkeypatch
    ):
        document = make_document(file_path="chunk-tester/leadership.txt")
        monkeypatch.setattr(
            approved_repo, "list_for_document",
            AsyncMock(side_effect=RepositoryException("approved cache unavailable"))
        )

        outcome = await processing_service.process(document.id, ProcessingOptions(dry_run=True))

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.dry_run is True
        assert "approved cache unavailable" in outcome.error
        assert outcome.metadata["error_type"] == "RepositoryException"
        assert document_repo.commits == 0

    @pytest.mark.asyncio
    async def test_completed_document_is_skipped_without_force(
        self, processing_service, make_document, chunk_repo, storage
    ):
        document = make_document(processing_status=ProcessingStatus.COMPLETED)
        chunk_repo.chunks[document.id] = [
            Chunk.build(document.id, document.organization_id, 0, "Existing chunk content.")
        ]

        outcome = await processing_service.process(document.id)

        assert outcome.status == SKIPPED_STATUS
        assert outcome.total_chunks == 1
        assert storage.reads == []

    @pytest.mark.asyncio
    async def test_force_reprocess_replaces_chunks(self, processing_service, make_document, chunk_repo, storage):
        document = make_document(processing_status=ProcessingStatus.COMPLETED)
        chunk_repo.chunks[document.id] = [
            Chunk.build(document.id, document.organization_id, 0, "Stale chunk content.")
        ]
        storage.files[(PRIMARY_BUCKET, "org/leadership.txt")] = policy_text(40).encode("utf-8")

        outcome = await processing_service.process(document.id, ProcessingOptions(force_reprocess=True))

        assert outcome.status == ProcessingStatus.COMPLETED
        stored = await chunk_repo.list_for_document(document.organization_id, document.id)
        assert all("Stale" not in c.content for c in stored)


class TestChunkEmbedder:

    @pytest.mark.asyncio
    async def test_short_text_and_missing_client_yield_none(self):
        client = AsyncMock()
        embedder = ChunkEmbedder(client, min_chars=50)

        assert await embedder.generate("short") is None
        assert await ChunkEmbedder(None).generate("x" * 200) is None
        client.generate_embedding.assert_not_awaited()
