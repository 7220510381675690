"""
Ingestion Infrastructure Repositories
=====================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
documents and chunks. Every chunk statement filters on organization_id.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_pipeline.config import ProcessingStatus
from knowledge_pipeline.core import RepositoryException
from knowledge_pipeline.ingestion.application.interfaces import (
    IApprovedChunkRepository,
    IChunkRepository,
    IDocumentRepository,
)
from knowledge_pipeline.ingestion.domain import ApprovedChunk, Chunk, Document
from knowledge_pipeline.ingestion.infrastructure.models import (
    ApprovedChunkModel,
    ChunkModel,
    DocumentModel,
)
from knowledge_pipeline.retrieval.domain import RetrievedChunk


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        return None


def _to_document(model: DocumentModel) -> Document:
    return Document(
        id=str(model.id),
        organization_id=str(model.organization_id),
        title=model.title,
        file_name=model.file_name,
        file_path=model.file_path,
        mime_type=model.mime_type,
        file_size=model.file_size,
        document_type=model.document_type,
        domain=model.domain,
        tags=list(model.tags or []),
        processing_status=model.processing_status,
        total_chunks=model.total_chunks,
        metadata=dict(model.metadata_ or {}),
        created_at=model.created_at,
        updated_at=model.updated_at,
        processed_at=model.processed_at,
    )


def _to_chunk(model: ChunkModel) -> Chunk:
    return Chunk(
        id=str(model.id),
        document_id=str(model.document_id),
        organization_id=str(model.organization_id),
        chunk_index=model.chunk_index,
        content=model.content,
        content_hash=model.content_hash,
        token_count=model.token_count,
        embedding=model.embedding,
        page_label=model.page_label,
        tags=list(model.tags or []),
        metadata=dict(model.metadata_ or {}),
        created_at=model.created_at,
    )


def _to_retrieved(model: ChunkModel, title: str, document_type: Optional[str]) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=str(model.id),
        document_id=str(model.document_id),
        organization_id=str(model.organization_id),
        chunk_index=model.chunk_index,
        content=model.content,
        document_title=title,
        document_type=document_type,
        page_label=model.page_label,
        tags=list(model.tags or []),
        metadata=dict(model.metadata_ or {}),
        embedding=model.embedding,
    )


class SQLAlchemyDocumentRepository(IDocumentRepository):
    """
    SQLAlchemy implementation of document repository.

    Documents are created by the upload flow; this repository only moves
    them through processing states.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, document_id: str) -> DocumentModel:
        doc_uuid = _as_uuid(document_id)
        model = await self._session.get(DocumentModel, doc_uuid) if doc_uuid else None
        if model is None:
            raise RepositoryException(f"Document {document_id} not found")
        return model

    async def get(self, document_id: str, organization_id: Optional[str] = None) -> Optional[Document]:
        """Get document by ID."""
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            return None

        stmt = select(DocumentModel).where(DocumentModel.id == doc_uuid)
        if organization_id is not None:
            org_uuid = _as_uuid(organization_id)
            if org_uuid is None:
                return None
            stmt = stmt.where(DocumentModel.organization_id == org_uuid)

        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_document(model) if model else None

    async def mark_processing(self, document_id: str, started_at: datetime) -> None:
        model = await self._get_model(document_id)
        model.processing_status = ProcessingStatus.PROCESSING
        model.updated_at = started_at
        model.metadata_ = {**(model.metadata_ or {}), "processing_started_at": started_at.isoformat()}
        await self._session.flush()

    async def mark_completed(
        self,
        document_id: str,
        total_chunks: int,
        metadata: Dict[str, Any],
        processed_at: datetime
    ) -> None:
        model = await self._get_model(document_id)
        merged = {**(model.metadata_ or {}), **metadata}
        merged.pop("error", None)
        model.processing_status = ProcessingStatus.COMPLETED
        model.total_chunks = total_chunks
        model.metadata_ = merged
        model.processed_at = processed_at
        model.updated_at = processed_at
        await self._session.flush()

    async def mark_failed(self, document_id: str, error: str, metadata: Dict[str, Any]) -> None:
        model = await self._get_model(document_id)
        model.processing_status = ProcessingStatus.FAILED
        model.metadata_ = {**(model.metadata_ or {}), **metadata, "error": error}
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

    async def count_completed(self, organization_id: str) -> int:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return 0

        stmt = select(func.count(DocumentModel.id)).where(
            DocumentModel.organization_id == org_uuid,
            DocumentModel.processing_status == ProcessingStatus.COMPLETED
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_ids_by_status(
        self,
        organization_id: str,
        statuses: List[str],
        limit: int = 100
    ) -> List[str]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []

        stmt = (
            select(DocumentModel.id)
            .where(
                DocumentModel.organization_id == org_uuid,
                DocumentModel.processing_status.in_(statuses)
            )
            .order_by(DocumentModel.created_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [str(doc_id) for doc_id in result.scalars().all()]

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


class SQLAlchemyChunkRepository(IChunkRepository):
    """
    SQLAlchemy implementation of the chunk store.

    ``replace_for_document`` runs inside a SAVEPOINT of the caller's
    transaction; the caller commits it together with the document status.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def replace_for_document(self, organization_id: str, document_id: str, chunks: List[Chunk]) -> int:
        """Delete the current chunk set and insert a new one."""
        org_uuid = _as_uuid(organization_id)
        doc_uuid = _as_uuid(document_id)
        if org_uuid is None or doc_uuid is None:
            raise RepositoryException(
                "Invalid document or organization id",
                details={"document_id": document_id, "organization_id": organization_id}
            )

        models = []
        for chunk in chunks:
            chunk_id = _as_uuid(chunk.id) if chunk.id else None
            chunk_id = chunk_id or uuid4()
            chunk.id = str(chunk_id)
            models.append(ChunkModel(
                id=chunk_id,
                document_id=doc_uuid,
                organization_id=org_uuid,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                content_hash=chunk.content_hash,
                embedding=chunk.embedding,
                token_count=chunk.token_count,
                page_label=chunk.page_label,
                tags=list(chunk.tags),
                metadata_=dict(chunk.metadata),
                created_at=chunk.created_at,
            ))

        async with self._session.begin_nested():
            await self._session.execute(
                delete(ChunkModel).where(
                    ChunkModel.document_id == doc_uuid,
                    ChunkModel.organization_id == org_uuid
                )
            )
            self._session.add_all(models)
            await self._session.flush()

        return len(models)

    async def count_for_document(self, organization_id: str, document_id: str) -> int:
        org_uuid = _as_uuid(organization_id)
        doc_uuid = _as_uuid(document_id)
        if org_uuid is None or doc_uuid is None:
            return 0

        stmt = select(func.count(ChunkModel.id)).where(
            ChunkModel.document_id == doc_uuid,
            ChunkModel.organization_id == org_uuid
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_for_document(self, organization_id: str, document_id: str) -> List[Chunk]:
        org_uuid = _as_uuid(organization_id)
        doc_uuid = _as_uuid(document_id)
        if org_uuid is None or doc_uuid is None:
            return []

        stmt = (
            select(ChunkModel)
            .where(ChunkModel.document_id == doc_uuid, ChunkModel.organization_id == org_uuid)
            .order_by(ChunkModel.chunk_index)
        )
        result = await self._session.execute(stmt)
        return [_to_chunk(model) for model in result.scalars().all()]

    def _joined(self, org_uuid: UUID):
        return (
            select(ChunkModel, DocumentModel.title, DocumentModel.document_type)
            .join(DocumentModel, DocumentModel.id == ChunkModel.document_id)
            .where(ChunkModel.organization_id == org_uuid)
        )

    async def get_many(self, organization_id: str, chunk_ids: List[str]) -> List[RetrievedChunk]:
        org_uuid = _as_uuid(organization_id)
        ids = [u for u in (_as_uuid(chunk_id) for chunk_id in chunk_ids) if u is not None]
        if org_uuid is None or not ids:
            return []

        result = await self._session.execute(self._joined(org_uuid).where(ChunkModel.id.in_(ids)))
        return [_to_retrieved(model, title, doc_type) for model, title, doc_type in result.all()]

    async def keyword_search(self, organization_id: str, text: str, limit: int) -> List[RetrievedChunk]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None or not text.strip():
            return []

        stmt = (
            self._joined(org_uuid)
            .where(ChunkModel.content.icontains(text.strip(), autoescape=True))
            .order_by(DocumentModel.title, ChunkModel.chunk_index)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_to_retrieved(model, title, doc_type) for model, title, doc_type in result.all()]

    async def list_embedded(self, organization_id: str) -> List[RetrievedChunk]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []

        result = await self._session.execute(
            self._joined(org_uuid).where(ChunkModel.embedding.is_not(None))
        )
        return [_to_retrieved(model, title, doc_type) for model, title, doc_type in result.all()]


class SQLAlchemyApprovedChunkRepository(IApprovedChunkRepository):
    """Reads reviewer-approved chunks written by the chunk review tool."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_for_document(self, organization_id: str, document_id: str) -> List[ApprovedChunk]:
        org_uuid = _as_uuid(organization_id)
        doc_uuid = _as_uuid(document_id)
        if org_uuid is None or doc_uuid is None:
            return []

        stmt = (
            select(ApprovedChunkModel)
            .where(
                ApprovedChunkModel.document_id == doc_uuid,
                ApprovedChunkModel.organization_id == org_uuid
            )
            .order_by(ApprovedChunkModel.chunk_index)
        )
        result = await self._session.execute(stmt)
        return [
            ApprovedChunk(
                id=str(model.id),
                document_id=str(model.document_id),
                organization_id=str(model.organization_id),
                chunk_index=model.chunk_index,
                content=model.content,
                content_hash=model.content_hash,
                embedding=model.embedding,
                page_label=model.page_label,
                tags=list(model.tags or []),
                metadata=dict(model.metadata_ or {}),
                approved_by=model.approved_by,
                approved_at=model.approved_at,
            )
            for model in result.scalars().all()
        ]
