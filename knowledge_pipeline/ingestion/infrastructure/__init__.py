"""
Ingestion Infrastructure Layer
==============================

Contains:
- Format extraction (python-docx, python-pptx, raw decode)
- Sliding-window chunker
- SQLAlchemy models and repositories for documents, chunks and the
  approved-chunk cache
"""

from knowledge_pipeline.ingestion.infrastructure.extraction import FormatExtractor, sanitize_text
from knowledge_pipeline.ingestion.infrastructure.chunking import TextChunker, TextWindow
from knowledge_pipeline.ingestion.infrastructure.models import (
    DocumentModel,
    ChunkModel,
    ApprovedChunkModel,
)
from knowledge_pipeline.ingestion.infrastructure.repositories import (
    SQLAlchemyDocumentRepository,
    SQLAlchemyChunkRepository,
    SQLAlchemyApprovedChunkRepository,
)

__all__ = [
    "FormatExtractor",
    "sanitize_text",
    "TextChunker",
    "TextWindow",
    "DocumentModel",
    "ChunkModel",
    "ApprovedChunkModel",
    "SQLAlchemyDocumentRepository",
    "SQLAlchemyChunkRepository",
    "SQLAlchemyApprovedChunkRepository",
]
