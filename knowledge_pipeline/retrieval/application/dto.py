"""
Retrieval Application DTOs
==========================

Data Transfer Objects for the retrieval API layer.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from knowledge_pipeline.config import VALID_KNOWLEDGE_TIERS
from knowledge_pipeline.retrieval.domain import AssembledContext, TierPolicy
from knowledge_pipeline.shared.api.schemas import RequestModel


# ========== Request DTOs ==========

class ContextRequest(RequestModel):
    """Request model for context assembly."""
    query: str = Field(..., min_length=1, description="User query")
    organization_id: str = Field(..., min_length=1, description="Organization UUID")
    domain: Optional[str] = Field(None, description="Domain label, e.g. 'Leadership & Governance'")
    target_item_number: Optional[int] = Field(None, ge=1, description="Item number (MPS n) the query is about")
    tier: Optional[str] = Field(None, description="Knowledge tier; classified from the query when omitted")

    @field_validator("tier")
    @classmethod
    def validate_tier(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VALID_KNOWLEDGE_TIERS:
            raise ValueError(f"tier must be one of {VALID_KNOWLEDGE_TIERS}")
        return v


class TierRequest(RequestModel):
    """Request model for knowledge-tier classification."""
    context: str = Field(..., description="Request context to classify")


# ========== Response DTOs ==========

class ContextSourceResponse(BaseModel):
    document_id: str
    title: str
    chunk_id: str
    section: str
    score: float


class ContextResponse(BaseModel):
    """Assembled context and how it was built."""
    context: str = Field(..., description="Context block or NO_RELEVANT_CONTENT")
    sources: List[ContextSourceResponse] = Field(default_factory=list)
    search_method: str = Field(..., description="semantic, keyword or none")
    item_content_found: bool = False
    missing_item_content: bool = False
    tier: str

    @classmethod
    def from_context(cls, assembled: AssembledContext) -> "ContextResponse":
        return cls(
            context=assembled.text,
            sources=[
                ContextSourceResponse(
                    document_id=s.document_id,
                    title=s.title,
                    chunk_id=s.chunk_id,
                    section=s.section,
                    score=s.score,
                )
                for s in assembled.sources
            ],
            search_method=assembled.search_method,
            item_content_found=assembled.item_content_found,
            missing_item_content=assembled.missing_item_content,
            tier=assembled.tier,
        )


class TierPolicyResponse(BaseModel):
    validation: str
    exclude_degraded_sources: bool
    advisory_only: bool
    usable_for_scoring: bool
    context_label: Optional[str] = None

    @classmethod
    def from_policy(cls, policy: TierPolicy) -> "TierPolicyResponse":
        return cls(
            validation=policy.validation,
            exclude_degraded_sources=policy.exclude_degraded_sources,
            advisory_only=policy.advisory_only,
            usable_for_scoring=policy.usable_for_scoring,
            context_label=policy.context_label,
        )


class TierResponse(BaseModel):
    """Knowledge tier chosen for a context and its policy."""
    tier: str
    policy: TierPolicyResponse
