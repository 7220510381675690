"""
Ingestion Domain Entities
=========================

Documents, their chunks, and human-approved chunk cache entries.

Pure Python business objects; persistence lives in the infrastructure layer.
"""

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from knowledge_pipeline.config import ProcessingStatus


def content_hash(text: str) -> str:
    """SHA-256 hex digest used for reuse and dedupe detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return math.ceil(len(text) / 4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Document:
    """
    Organization-scoped uploaded document.

    Created on upload by the surrounding application; the pipeline only moves
    it through ``pending -> processing -> completed | failed`` and records
    provenance in ``metadata``.
    """
    id: str
    organization_id: str
    title: str
    file_name: str
    file_path: str
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    document_type: Optional[str] = None
    domain: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    processing_status: str = ProcessingStatus.PENDING
    total_chunks: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @property
    def extension(self) -> str:
        return PurePosixPath(self.file_name or self.file_path).suffix.lower()

    @property
    def is_completed(self) -> bool:
        return self.processing_status == ProcessingStatus.COMPLETED

    def has_approval_markers(self, path_marker: str) -> bool:
        """
        Whether a reviewer already vetted this document's chunks.

        Markers: an explicit approval flag, an approval timestamp, or a file
        path written by the chunk review tool.
        """
        if self.metadata.get("approved_via_tester") is True:
            return True
        if self.metadata.get("tester_approved_at"):
            return True
        return bool(path_marker) and path_marker in (self.file_path or "")


@dataclass
class Chunk:
    """
    A bounded slice of a document's text, the unit of embedding and retrieval.

    Indices are contiguous from 0 within a document after a successful run.
    """
    document_id: str
    organization_id: str
    chunk_index: int
    content: str
    content_hash: str
    token_count: int
    embedding: Optional[List[float]] = None
    page_label: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def build(
        cls,
        document_id: str,
        organization_id: str,
        chunk_index: int,
        content: str,
        page_label: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "Chunk":
        """Create a chunk, deriving its hash and token estimate from the text."""
        return cls(
            document_id=document_id,
            organization_id=organization_id,
            chunk_index=chunk_index,
            content=content,
            content_hash=content_hash(content),
            token_count=estimate_tokens(content),
            page_label=page_label,
            tags=list(tags or []),
            metadata=dict(metadata or {}),
        )

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


@dataclass
class ApprovedChunk:
    """Reviewer-vetted chunk for a document; read-only to the pipeline."""
    document_id: str
    organization_id: str
    chunk_index: int
    content: str
    content_hash: Optional[str] = None
    embedding: Optional[List[float]] = None
    page_label: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class ChunkPreview:
    """Dry-run view of one chunk."""
    chunk_index: int
    length: int
    preview: str


@dataclass
class ProcessingOutcome:
    """Result of one processing request."""
    document_id: str
    status: str
    total_chunks: int = 0
    extraction_method: Optional[str] = None
    reused_from_tester: bool = False
    embedded_chunks: int = 0
    error: Optional[str] = None
    dry_run: bool = False
    previews: List[ChunkPreview] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
