"""
Ingestion Application Layer
===========================

Application layer for the document ingestion module.

Contains:
- Services: DocumentProcessingService, ChunkEmbedder
- Interfaces: document, chunk and approved-chunk repositories
- DTOs: Data transfer objects for API serialization
"""

from knowledge_pipeline.ingestion.application.interfaces import (
    IDocumentRepository,
    IChunkRepository,
    IApprovedChunkRepository,
)
from knowledge_pipeline.ingestion.application.dto import (
    ProcessDocumentRequest,
    ProcessDocumentResponse,
    ChunkPreviewResponse,
    DocumentStatusResponse,
)
from knowledge_pipeline.ingestion.application.services import (
    ChunkEmbedder,
    DocumentProcessingService,
)

__all__ = [
    # Repository Interfaces
    "IDocumentRepository",
    "IChunkRepository",
    "IApprovedChunkRepository",
    # DTOs
    "ProcessDocumentRequest",
    "ProcessDocumentResponse",
    "ChunkPreviewResponse",
    "DocumentStatusResponse",
    # Services
    "ChunkEmbedder",
    "DocumentProcessingService",
]
