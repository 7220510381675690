"""
Ingestion Application Services
==============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- ChunkEmbedder: null-tolerant, concurrency-bounded embedding generation
- DocumentProcessingService: fetch -> extract -> gate -> chunk -> embed ->
  store, with the status transition committed in the same transaction as
  the chunk replace
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from knowledge_pipeline.config import ExtractionMethod, ProcessingStatus, settings
from knowledge_pipeline.core import (
    ContentQualityException,
    DomainException,
    ProcessingTimeoutException,
    ResourceNotFoundException,
    StorageException,
)
from knowledge_pipeline.infrastructure.llm import ILLMClient
from knowledge_pipeline.infrastructure.storage import DocumentFileResolver
from knowledge_pipeline.infrastructure.vectorstore import ChunkVector, IChunkVectorIndex
from knowledge_pipeline.ingestion.application.interfaces import (
    IApprovedChunkRepository,
    IChunkRepository,
    IDocumentRepository,
)
from knowledge_pipeline.ingestion.domain import (
    ApprovedChunk,
    Chunk,
    ChunkPreview,
    ContentQualityGate,
    Document,
    DocumentKind,
    ExtractionResult,
    ProcessingOptions,
    ProcessingOutcome,
    classify_document,
    content_hash,
    detect_equipment,
)
from knowledge_pipeline.ingestion.infrastructure.chunking import TextChunker, TextWindow
from knowledge_pipeline.ingestion.infrastructure.extraction import FormatExtractor
from knowledge_pipeline.shared.infrastructure.grafana import get_grafana_exporter
from knowledge_pipeline.shared.infrastructure.logging import get_document_logger, get_logger, log_latency

logger = get_logger(__name__)

DRY_RUN_STATUS = "dry_run"
SKIPPED_STATUS = "skipped"
PREVIEW_CHUNKS = 3
PREVIEW_CHARS = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChunkEmbedder:
    """
    Embedding generation that never raises.

    Returns None for short text, for emergency-mode chunks, and when the
    provider fails. A run's embeddings are generated concurrently, bounded by
    a semaphore.
    """

    def __init__(
        self,
        llm_client: Optional[ILLMClient],
        concurrency: Optional[int] = None,
        min_chars: Optional[int] = None
    ):
        self._client = llm_client
        self._concurrency = concurrency or settings.embedding_concurrency
        self._min_chars = settings.embedding_min_chars if min_chars is None else min_chars

    async def generate(self, text: str, emergency: bool = False) -> Optional[List[float]]:
        if self._client is None or emergency or len(text.strip()) < self._min_chars:
            return None

        try:
            result = await self._client.generate_embedding(text)
        except Exception as e:
            logger.warning(
                "Embedding generation failed, storing chunk without vector",
                extra={"error": str(e), "error_type": type(e).__name__, "text_length": len(text)}
            )
            return None
        return result.embedding or None

    async def generate_many(self, texts: List[str], emergency: bool = False) -> List[Optional[List[float]]]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(text: str) -> Optional[List[float]]:
            async with semaphore:
                return await self.generate(text, emergency)

        return list(await asyncio.gather(*(bounded(text) for text in texts)))


class _PreparedRun:
    """Chunks and audit metadata produced before anything is written."""

    def __init__(self, chunks: List[Chunk], metadata: Dict[str, Any], method: str, reused: bool):
        self.chunks = chunks
        self.metadata = metadata
        self.method = method
        self.reused = reused


class DocumentProcessingService:
    """
    Service for turning one uploaded document into stored chunks.

    A run ends with the document ``completed`` and at least one chunk
    persisted, or ``failed`` with a reason in its metadata. Nothing raised
    inside a run escapes it.
    """

    def __init__(
        self,
        document_repository: IDocumentRepository,
        chunk_repository: IChunkRepository,
        approved_chunk_repository: IApprovedChunkRepository,
        file_resolver: DocumentFileResolver,
        embedder: ChunkEmbedder,
        extractor: Optional[FormatExtractor] = None,
        chunker: Optional[TextChunker] = None,
        quality_gate: Optional[ContentQualityGate] = None,
        vector_index: Optional[IChunkVectorIndex] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._documents = document_repository
        self._chunks = chunk_repository
        self._approved = approved_chunk_repository
        self._resolver = file_resolver
        self._embedder = embedder
        self._extractor = extractor or FormatExtractor()
        self._chunker = chunker or TextChunker()
        self._quality_gate = quality_gate or ContentQualityGate()
        self._vector_index = vector_index
        self._timeout = timeout_seconds or settings.processing_timeout_seconds

    async def process(
        self,
        document_id: str,
        options: Optional[ProcessingOptions] = None,
        organization_id: Optional[str] = None
    ) -> ProcessingOutcome:
        """
        Process a document.

        Args:
            document_id: Document UUID
            options: Upload-trigger flags
            organization_id: When given, the document must belong to it

        Returns:
            ProcessingOutcome describing the run

        Raises:
            ResourceNotFoundException: If the document does not exist
        """
        options = options or ProcessingOptions()
        document = await self._documents.get(document_id, organization_id)
        if document is None:
            raise ResourceNotFoundException("Document", document_id)

        log = get_document_logger(__name__, document.id, document.organization_id)

        if options.dry_run:
            return await self._dry_run(document, options)

        if document.is_completed and not options.force_reprocess:
            existing = await self._chunks.count_for_document(document.organization_id, document.id)
            if existing:
                log.info("Document already processed, skipping", extra={"total_chunks": existing})
                return ProcessingOutcome(
                    document_id=document.id,
                    status=SKIPPED_STATUS,
                    total_chunks=existing,
                    extraction_method=document.metadata.get("extraction_method"),
                )

        started_at = _utcnow()
        start = time.perf_counter()
        await self._documents.mark_processing(document.id, started_at)
        await self._documents.commit()
        log.info(
            "Document processing started",
            extra={
                "file_name": document.file_name,
                "force_reprocess": options.force_reprocess,
                "emergency_mode": options.emergency_chunking,
            }
        )

        try:
            outcome, chunks = await asyncio.wait_for(
                self._run(document, options, started_at), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            error = ProcessingTimeoutException(document.id, self._timeout)
            outcome = await self._fail(document, error.message, {"timeout_seconds": self._timeout})
            log.error("Document processing timed out", extra={"timeout_seconds": self._timeout})
        except StorageException as e:
            outcome = await self._fail(
                document, e.message, {"attempted_locations": e.attempted_locations}
            )
            log.error("Document file not found", extra={"attempted_locations": e.attempted_locations})
        except ContentQualityException as e:
            outcome = await self._fail(document, e.message, e.details)
            log.warning("Document rejected by content-quality gate", extra={"reasons": e.reasons})
        except Exception as e:
            log.exception("Document processing failed", extra={"error_type": type(e).__name__})
            outcome = await self._fail(document, str(e) or type(e).__name__, {"error_type": type(e).__name__})
        else:
            log.info(
                "Document processing completed",
                extra={
                    "total_chunks": outcome.total_chunks,
                    "embedded_chunks": outcome.embedded_chunks,
                    "extraction_method": outcome.extraction_method,
                    "reused_from_tester": outcome.reused_from_tester,
                    "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                }
            )
            await self._mirror_vectors(document, chunks)

        await self._export_metrics(document, outcome, int((time.perf_counter() - start) * 1000))
        return outcome

    # ---------- Run ----------

    async def _run(
        self,
        document: Document,
        options: ProcessingOptions,
        started_at: datetime
    ) -> Tuple[ProcessingOutcome, List[Chunk]]:
        prepared = await self._prepare(document, options)
        chunks = prepared.chunks

        if not prepared.reused:
            embeddings = await self._embedder.generate_many(
                [chunk.content for chunk in chunks], emergency=options.emergency_chunking
            )
            for chunk, embedding in zip(chunks, embeddings):
                chunk.embedding = embedding
                chunk.metadata["has_embedding"] = embedding is not None

        embedded = sum(1 for chunk in chunks if chunk.has_embedding)

        with log_latency(
            logger, "chunk_replace",
            document_id=document.id, organization_id=document.organization_id, chunks=len(chunks)
        ):
            await self._chunks.replace_for_document(document.organization_id, document.id, chunks)
        persisted = await self._chunks.count_for_document(document.organization_id, document.id)
        if persisted < 1:
            raise DomainException("no chunks were persisted")

        completed_at = _utcnow()
        metadata = {
            **prepared.metadata,
            "processing_started_at": started_at.isoformat(),
            "completed_at": completed_at.isoformat(),
            "chunks_reused": len(chunks) if prepared.reused else 0,
            "embedded_chunks": embedded,
        }
        await self._documents.mark_completed(document.id, persisted, metadata, completed_at)
        await self._documents.commit()

        outcome = ProcessingOutcome(
            document_id=document.id,
            status=ProcessingStatus.COMPLETED,
            total_chunks=persisted,
            extraction_method=prepared.method,
            reused_from_tester=prepared.reused,
            embedded_chunks=embedded,
            metadata=metadata,
        )
        return outcome, chunks

    async def _prepare(self, document: Document, options: ProcessingOptions) -> _PreparedRun:
        """Everything up to embedding; performs no writes."""
        kind = classify_document(
            document.title,
            document.file_name,
            document.mime_type,
            document.document_type,
            governance_flag=options.governance_document,
        )
        emergency = options.emergency_chunking
        metadata: Dict[str, Any] = {"document_kind": kind.value, "emergency_mode": emergency}

        if document.has_approval_markers(settings.approved_chunk_path_marker):
            approved = await self._approved.list_for_document(document.organization_id, document.id)
            if approved:
                metadata.update({
                    "extraction_method": ExtractionMethod.APPROVED_CACHE,
                    "extraction_degraded": False,
                })
                chunks = self._reuse_approved(document, approved, emergency)
                return _PreparedRun(chunks, metadata, ExtractionMethod.APPROVED_CACHE, reused=True)
            logger.info(
                "Approved document has no cached chunks, chunking normally",
                extra={"document_id": document.id}
            )

        stored = await self._resolver.fetch(document.file_path)
        extraction = self._extractor.extract(
            stored.data, document.file_name, document.mime_type, document.title, kind
        )
        metadata.update({
            "storage_location": stored.location,
            "extraction_method": extraction.method,
            "extraction_degraded": extraction.degraded,
            "content_hash": content_hash(extraction.text),
        })
        if stored.used_legacy_location:
            metadata["legacy_storage_location"] = True
        if extraction.slide_count is not None:
            metadata["slide_count"] = extraction.slide_count
        if extraction.title:
            metadata["display_title"] = extraction.title
        if extraction.error:
            metadata["extraction_error"] = extraction.error

        quality_score: Optional[float] = None
        if emergency:
            metadata["quality"] = {"bypassed": True}
        else:
            report = self._quality_gate.evaluate(extraction, kind)
            metadata["quality"] = report.as_metadata()
            if not report.passed:
                raise ContentQualityException(report.reasons, {"quality": report.as_metadata()})
            quality_score = report.score

        min_chars = settings.emergency_min_chunk_chars if emergency else settings.min_chunk_chars
        windows = self._chunker.split(extraction.text, min_chunk_chars=min_chars)
        chunks = [
            self._build_chunk(document, index, window, extraction, kind, quality_score, emergency)
            for index, window in enumerate(windows)
        ]

        if not chunks:
            reason = extraction.error or "no text met the minimum chunk size"
            chunks = [self._synthetic_chunk(document, reason, extraction.method, emergency)]
            metadata["synthetic_fallback"] = True

        return _PreparedRun(chunks, metadata, extraction.method, reused=False)

    def _build_chunk(
        self,
        document: Document,
        index: int,
        window: TextWindow,
        extraction: ExtractionResult,
        kind: DocumentKind,
        quality_score: Optional[float],
        emergency: bool
    ) -> Chunk:
        tags: List[str] = []
        for tag in [kind.chunk_tag, *extraction.tags, *detect_equipment(window.text)]:
            if tag and tag not in tags:
                tags.append(tag)

        return Chunk.build(
            document_id=document.id,
            organization_id=document.organization_id,
            chunk_index=index,
            content=window.text,
            page_label=extraction.label_at(window.start),
            tags=tags,
            metadata={
                "extraction_method": extraction.method,
                "quality_score": quality_score,
                "reused_from_tester": False,
                "emergency_mode": emergency,
                "synthetic_fallback": False,
                "has_embedding": False,
                "position_in_document": window.start,
                "chunk_length": len(window.text),
            },
        )

    def _synthetic_chunk(self, document: Document, reason: str, method: str, emergency: bool) -> Chunk:
        text = (
            f"Document: {document.title}\n"
            f"File: {document.file_name}\n"
            f"Processing note: {reason}"
        )
        return Chunk.build(
            document_id=document.id,
            organization_id=document.organization_id,
            chunk_index=0,
            content=text,
            metadata={
                "extraction_method": method,
                "quality_score": None,
                "reused_from_tester": False,
                "emergency_mode": emergency,
                "synthetic_fallback": True,
                "has_embedding": False,
                "position_in_document": 0,
                "chunk_length": len(text),
            },
        )

    @staticmethod
    def _reuse_approved(document: Document, approved: List[ApprovedChunk], emergency: bool) -> List[Chunk]:
        chunks = []
        for index, entry in enumerate(approved):
            chunk = Chunk.build(
                document_id=document.id,
                organization_id=document.organization_id,
                chunk_index=index,
                content=entry.content,
                page_label=entry.page_label,
                tags=entry.tags,
                metadata={
                    **entry.metadata,
                    "extraction_method": ExtractionMethod.APPROVED_CACHE,
                    "quality_score": entry.metadata.get("quality_score"),
                    "reused_from_tester": True,
                    "emergency_mode": emergency,
                    "synthetic_fallback": False,
                    "has_embedding": bool(entry.embedding),
                    "position_in_document": entry.metadata.get("position_in_document", index),
                    "chunk_length": len(entry.content),
                },
            )
            chunk.embedding = entry.embedding or None
            if entry.content_hash:
                chunk.content_hash = entry.content_hash
            chunks.append(chunk)
        return chunks

    # ---------- Dry run ----------

    async def _dry_run(self, document: Document, options: ProcessingOptions) -> ProcessingOutcome:
        """Extract and split only: no chunk writes, no status writes, no embeddings."""
        try:
            prepared = await asyncio.wait_for(self._prepare(document, options), timeout=self._timeout)
        except asyncio.TimeoutError:
            return self._dry_run_failure(document, ProcessingTimeoutException(document.id, self._timeout).message)
        except (StorageException, ContentQualityException) as e:
            return self._dry_run_failure(document, e.message, e.details)
        except Exception as e:
            logger.exception(
                "Dry run failed",
                extra={"document_id": document.id, "error_type": type(e).__name__}
            )
            return self._dry_run_failure(document, str(e) or type(e).__name__, {"error_type": type(e).__name__})

        previews = [
            ChunkPreview(
                chunk_index=chunk.chunk_index,
                length=len(chunk.content),
                preview=chunk.content[:PREVIEW_CHARS],
            )
            for chunk in prepared.chunks[:PREVIEW_CHUNKS]
        ]
        logger.info(
            "Dry run completed",
            extra={"document_id": document.id, "total_chunks": len(prepared.chunks)}
        )
        return ProcessingOutcome(
            document_id=document.id,
            status=DRY_RUN_STATUS,
            total_chunks=len(prepared.chunks),
            extraction_method=prepared.method,
            reused_from_tester=prepared.reused,
            dry_run=True,
            previews=previews,
            metadata=prepared.metadata,
        )

    @staticmethod
    def _dry_run_failure(document: Document, error: str, details: Optional[dict] = None) -> ProcessingOutcome:
        return ProcessingOutcome(
            document_id=document.id,
            status=ProcessingStatus.FAILED,
            error=error,
            dry_run=True,
            metadata=dict(details or {}),
        )

    # ---------- Failure / side effects ----------

    async def _fail(self, document: Document, error: str, details: Optional[dict]) -> ProcessingOutcome:
        await self._documents.rollback()
        metadata = {**(details or {}), "failed_at": _utcnow().isoformat()}
        await self._documents.mark_failed(document.id, error, metadata)
        await self._documents.commit()
        return ProcessingOutcome(
            document_id=document.id,
            status=ProcessingStatus.FAILED,
            error=error,
            metadata=metadata,
        )

    async def _mirror_vectors(self, document: Document, chunks: List[Chunk]) -> None:
        """Copy committed embeddings to the vector index; failures only log."""
        if self._vector_index is None:
            return

        vectors = [
            ChunkVector(
                chunk_id=chunk.id,
                document_id=document.id,
                organization_id=document.organization_id,
                embedding=chunk.embedding,
            )
            for chunk in chunks
            if chunk.id and chunk.has_embedding
        ]
        try:
            await self._vector_index.replace_document(document.organization_id, document.id, vectors)
        except Exception as e:
            logger.warning(
                "Vector mirror update failed",
                extra={"document_id": document.id, "error": str(e), "vectors": len(vectors)}
            )

    @staticmethod
    async def _export_metrics(document: Document, outcome: ProcessingOutcome, latency_ms: int) -> None:
        exporter = get_grafana_exporter()
        if not exporter.is_enabled():
            return
        await exporter.export_ingestion_metrics(
            organization_id=document.organization_id,
            status=outcome.status,
            chunks_persisted=outcome.total_chunks,
            embedded_chunks=outcome.embedded_chunks,
            latency_ms=latency_ms,
            extraction_method=outcome.extraction_method or "unknown",
        )
