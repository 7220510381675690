"""
Ingestion Domain Layer
======================

Domain layer for the document ingestion module.

Contains:
- Entities: Document, Chunk, ApprovedChunk, ProcessingOutcome
- Value Objects: DocumentKind, ExtractionResult, ContentQualityGate,
  equipment detection

This layer is framework-agnostic and contains pure business logic.
"""

from knowledge_pipeline.ingestion.domain.entities import (
    Document,
    Chunk,
    ApprovedChunk,
    ChunkPreview,
    ProcessingOutcome,
    content_hash,
    estimate_tokens,
)
from knowledge_pipeline.ingestion.domain.value_objects import (
    DocumentKind,
    ProcessingOptions,
    TextSection,
    ExtractionResult,
    QualityReport,
    ContentQualityGate,
    classify_document,
    detect_equipment,
    determine_stage,
    training_slide_title,
)

__all__ = [
    "Document",
    "Chunk",
    "ApprovedChunk",
    "ChunkPreview",
    "ProcessingOutcome",
    "content_hash",
    "estimate_tokens",
    "DocumentKind",
    "ProcessingOptions",
    "TextSection",
    "ExtractionResult",
    "QualityReport",
    "ContentQualityGate",
    "classify_document",
    "detect_equipment",
    "determine_stage",
    "training_slide_title",
]
