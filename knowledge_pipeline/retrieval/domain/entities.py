"""
Retrieval Domain Entities
=========================

Search hits and the assembled context block handed to the assistant.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from knowledge_pipeline.config import DEGRADED_METHODS

# Returned instead of a context block when nothing relevant was found
NO_RELEVANT_CONTENT = "NO_RELEVANT_CONTENT"


@dataclass
class RetrievedChunk:
    """A chunk returned by search, joined with its document's descriptors."""
    chunk_id: str
    document_id: str
    organization_id: str
    chunk_index: int
    content: str
    document_title: str = ""
    document_type: Optional[str] = None
    page_label: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    score: float = 0.0

    @property
    def is_synthetic_or_degraded(self) -> bool:
        """Synthetic fallback text or output of a best-effort extractor."""
        if self.metadata.get("synthetic_fallback"):
            return True
        return self.metadata.get("extraction_method") in DEGRADED_METHODS

    def with_score(self, score: float) -> "RetrievedChunk":
        return RetrievedChunk(
            chunk_id=self.chunk_id,
            document_id=self.document_id,
            organization_id=self.organization_id,
            chunk_index=self.chunk_index,
            content=self.content,
            document_title=self.document_title,
            document_type=self.document_type,
            page_label=self.page_label,
            tags=list(self.tags),
            metadata=dict(self.metadata),
            embedding=self.embedding,
            score=score,
        )


@dataclass
class ContextSource:
    """One document that contributed to an assembled context."""
    document_id: str
    title: str
    chunk_id: str
    section: str
    score: float


@dataclass
class AssembledContext:
    """
    Context block for the assistant plus how it was built.

    ``text`` is ``NO_RELEVANT_CONTENT`` when no chunk matched.
    """
    text: str
    tier: str
    sources: List[ContextSource] = field(default_factory=list)
    search_method: str = "none"
    item_content_found: bool = False
    missing_item_content: bool = False
    chunk_count: int = 0

    @property
    def has_content(self) -> bool:
        return self.text != NO_RELEVANT_CONTENT
