"""
Retrieval Domain Layer
======================

Domain layer for knowledge retrieval.

Contains:
- Entities: RetrievedChunk, AssembledContext, ContextSource
- Value Objects: TierPolicy, TierKeywords, query variant helpers
- classify_knowledge_tier: routes a request to a knowledge tier
"""

from knowledge_pipeline.retrieval.domain.entities import (
    NO_RELEVANT_CONTENT,
    RetrievedChunk,
    ContextSource,
    AssembledContext,
)
from knowledge_pipeline.retrieval.domain.value_objects import (
    TierPolicy,
    TierKeywords,
    TIER_POLICIES,
    policy_for,
    classify_knowledge_tier,
    build_query_variants,
    item_pattern,
    is_framework_content,
)

__all__ = [
    "NO_RELEVANT_CONTENT",
    "RetrievedChunk",
    "ContextSource",
    "AssembledContext",
    "TierPolicy",
    "TierKeywords",
    "TIER_POLICIES",
    "policy_for",
    "classify_knowledge_tier",
    "build_query_variants",
    "item_pattern",
    "is_framework_content",
]
