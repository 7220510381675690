"""
Retrieval Application Layer
===========================

Application layer for knowledge retrieval.

Contains:
- Services: KnowledgeTierService, ChunkSearchService, ContextAssembler
- DTOs: Data transfer objects for API serialization
"""

from knowledge_pipeline.retrieval.application.dto import (
    ContextRequest,
    ContextResponse,
    ContextSourceResponse,
    TierRequest,
    TierResponse,
    TierPolicyResponse,
)
from knowledge_pipeline.retrieval.application.services import (
    KnowledgeTierService,
    ChunkSearchService,
    ContextAssembler,
    SECTION_AUTHORITATIVE,
    SECTION_FRAMEWORK,
    SECTION_GENERAL,
    item_section_title,
)

__all__ = [
    # DTOs
    "ContextRequest",
    "ContextResponse",
    "ContextSourceResponse",
    "TierRequest",
    "TierResponse",
    "TierPolicyResponse",
    # Services
    "KnowledgeTierService",
    "ChunkSearchService",
    "ContextAssembler",
    "SECTION_AUTHORITATIVE",
    "SECTION_FRAMEWORK",
    "SECTION_GENERAL",
    "item_section_title",
]
