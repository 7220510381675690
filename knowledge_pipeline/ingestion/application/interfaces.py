"""
Ingestion Repository Interfaces
===============================

Abstractions the ingestion and retrieval services depend on (Dependency
Inversion). SQLAlchemy implementations live in the infrastructure layer;
tests substitute in-memory fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from knowledge_pipeline.ingestion.domain import ApprovedChunk, Chunk, Document
from knowledge_pipeline.retrieval.domain import RetrievedChunk


class IDocumentRepository(ABC):
    """Interface for document data access."""

    @abstractmethod
    async def get(self, document_id: str, organization_id: Optional[str] = None) -> Optional[Document]:
        """Get document by ID, optionally scoped to an organization."""

    @abstractmethod
    async def mark_processing(self, document_id: str, started_at: datetime) -> None:
        """Move a document to ``processing``."""

    @abstractmethod
    async def mark_completed(
        self,
        document_id: str,
        total_chunks: int,
        metadata: Dict[str, Any],
        processed_at: datetime
    ) -> None:
        """Move a document to ``completed`` and merge run metadata."""

    @abstractmethod
    async def mark_failed(self, document_id: str, error: str, metadata: Dict[str, Any]) -> None:
        """Move a document to ``failed`` recording the reason."""

    @abstractmethod
    async def count_completed(self, organization_id: str) -> int:
        """Number of completed documents of an organization."""

    @abstractmethod
    async def list_ids_by_status(
        self,
        organization_id: str,
        statuses: List[str],
        limit: int = 100
    ) -> List[str]:
        """Document IDs of an organization in any of the given statuses."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit the unit of work."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the unit of work."""


class IChunkRepository(ABC):
    """Interface for the chunk store. Every call is organization-scoped."""

    @abstractmethod
    async def replace_for_document(self, organization_id: str, document_id: str, chunks: List[Chunk]) -> int:
        """Replace a document's chunk set; returns rows inserted."""

    @abstractmethod
    async def count_for_document(self, organization_id: str, document_id: str) -> int:
        """Number of stored chunks of a document."""

    @abstractmethod
    async def list_for_document(self, organization_id: str, document_id: str) -> List[Chunk]:
        """Chunks of a document ordered by index."""

    @abstractmethod
    async def get_many(self, organization_id: str, chunk_ids: List[str]) -> List[RetrievedChunk]:
        """Hydrate search hits."""

    @abstractmethod
    async def keyword_search(self, organization_id: str, text: str, limit: int) -> List[RetrievedChunk]:
        """Case-insensitive contains search."""

    @abstractmethod
    async def list_embedded(self, organization_id: str) -> List[RetrievedChunk]:
        """Chunks that carry an embedding, for in-database similarity."""


class IApprovedChunkRepository(ABC):
    """Interface for the reviewer-approved chunk cache (read-only)."""

    @abstractmethod
    async def list_for_document(self, organization_id: str, document_id: str) -> List[ApprovedChunk]:
        """Approved chunks ordered by index."""
