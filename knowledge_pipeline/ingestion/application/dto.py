"""
Ingestion Application DTOs
==========================

Data Transfer Objects for the ingestion API layer.

Request bodies accept snake_case or camelCase field names.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from knowledge_pipeline.ingestion.domain import Document, ProcessingOptions, ProcessingOutcome
from knowledge_pipeline.shared.api.schemas import RequestModel


# ========== Request DTOs ==========

class ProcessDocumentRequest(RequestModel):
    """Request model for the upload trigger."""
    document_id: str = Field(..., min_length=1, description="Document UUID")
    organization_id: Optional[str] = Field(None, description="Owning organization, checked when given")
    force_reprocess: bool = Field(default=False, description="Re-run even when already completed")
    emergency_chunking: bool = Field(
        default=False,
        description="Skip the quality gate and embeddings, lower the minimum chunk size"
    )
    governance_document: bool = Field(default=False, description="Treat as a governance document")
    dry_run: bool = Field(default=False, description="Extract and split only, write nothing")

    def to_options(self) -> ProcessingOptions:
        return ProcessingOptions(
            force_reprocess=self.force_reprocess,
            emergency_chunking=self.emergency_chunking,
            governance_document=self.governance_document,
            dry_run=self.dry_run,
        )


# ========== Response DTOs ==========

class ChunkPreviewResponse(BaseModel):
    """First characters of one chunk from a dry run."""
    chunk_index: int
    length: int
    preview: str


class ProcessDocumentResponse(BaseModel):
    """Response model for a processing request."""
    document_id: str
    status: str = Field(..., description="completed, failed, skipped or dry_run")
    total_chunks: int = Field(default=0, description="Chunks persisted (or that would be)")
    extraction_method: Optional[str] = None
    reused_from_tester: bool = False
    embedded_chunks: int = 0
    error: Optional[str] = None
    dry_run: bool = False
    preview: List[ChunkPreviewResponse] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: ProcessingOutcome) -> "ProcessDocumentResponse":
        return cls(
            document_id=outcome.document_id,
            status=outcome.status,
            total_chunks=outcome.total_chunks,
            extraction_method=outcome.extraction_method,
            reused_from_tester=outcome.reused_from_tester,
            embedded_chunks=outcome.embedded_chunks,
            error=outcome.error,
            dry_run=outcome.dry_run,
            preview=[
                ChunkPreviewResponse(chunk_index=p.chunk_index, length=p.length, preview=p.preview)
                for p in outcome.previews
            ],
        )


class DocumentStatusResponse(BaseModel):
    """Processing status view of one document."""
    document_id: str
    organization_id: str
    title: str
    file_name: str
    processing_status: str
    total_chunks: Optional[int] = None
    stored_chunks: int = 0
    error: Optional[str] = None
    processed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Document, stored_chunks: int) -> "DocumentStatusResponse":
        return cls(
            document_id=document.id,
            organization_id=document.organization_id,
            title=document.title,
            file_name=document.file_name,
            processing_status=document.processing_status,
            total_chunks=document.total_chunks,
            stored_chunks=stored_chunks,
            error=document.metadata.get("error"),
            processed_at=document.processed_at,
            metadata=document.metadata,
        )
