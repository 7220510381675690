"""
Assistant Application DTOs
==========================

Data Transfer Objects for the assistant API layer.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from knowledge_pipeline.assistant.domain import AssistantAnswer, ConversationTurn, GapReview
from knowledge_pipeline.shared.api.schemas import RequestModel


# ========== Request DTOs ==========

class GapReviewRequest(RequestModel):
    """Request model for reviewing an answer for missing specifics."""
    organization_id: str = Field(..., min_length=1, description="Organization UUID")
    prompt: str = Field(..., min_length=1, description="User prompt")
    answer: str = Field(..., description="Assistant answer to review")


class ConversationTurnRequest(RequestModel):
    """Request model for storing one conversation turn."""
    organization_id: str = Field(..., min_length=1, description="Organization UUID")
    user_id: Optional[str] = Field(None, description="User identifier")
    prompt: str = Field(..., min_length=1)
    response: str = Field(...)
    upstream_response_id: Optional[str] = Field(None, description="Completion response ID for chaining")


class AskRequest(RequestModel):
    """Request model for a grounded assistant answer."""
    organization_id: str = Field(..., min_length=1, description="Organization UUID")
    user_id: Optional[str] = Field(None, description="User identifier")
    query: str = Field(..., min_length=1, max_length=4000, description="User question")
    domain: Optional[str] = Field(None, description="Domain label")
    target_item_number: Optional[int] = Field(None, ge=1, description="Item number (MPS n)")


# ========== Response DTOs ==========

class GapReviewResponse(BaseModel):
    missing_specifics: List[str] = Field(default_factory=list)
    commitment: Optional[str] = None
    ticket_id: Optional[str] = None
    follow_up_at: Optional[datetime] = None

    @classmethod
    def from_review(cls, review: GapReview) -> "GapReviewResponse":
        return cls(
            missing_specifics=review.missing_specifics,
            commitment=review.commitment,
            ticket_id=review.ticket_id,
            follow_up_at=review.follow_up_at,
        )


class ConversationTurnResponse(BaseModel):
    id: Optional[str] = None
    organization_id: str
    user_id: Optional[str] = None
    prompt: str
    response: str
    upstream_response_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_turn(cls, turn: ConversationTurn) -> "ConversationTurnResponse":
        return cls(
            id=turn.id,
            organization_id=turn.organization_id,
            user_id=turn.user_id,
            prompt=turn.prompt,
            response=turn.response,
            upstream_response_id=turn.upstream_response_id,
            metadata=turn.metadata,
            created_at=turn.created_at,
        )


class ConversationMessage(BaseModel):
    role: str
    content: str


class ConversationWindowResponse(BaseModel):
    """Recent turns, oldest first."""
    messages: List[ConversationMessage] = Field(default_factory=list)
    latest_response_id: Optional[str] = None


class AskResponse(BaseModel):
    """Grounded answer with its sources and follow-up commitment."""
    answer: str
    tier: str
    context_sources: List[Dict[str, Any]] = Field(default_factory=list)
    search_method: str
    missing_specifics: List[str] = Field(default_factory=list)
    commitment: Optional[str] = None
    ticket_id: Optional[str] = None
    advisory_only: bool = False
    missing_item_content: bool = False
    response_id: Optional[str] = None

    @classmethod
    def from_answer(cls, answer: AssistantAnswer) -> "AskResponse":
        return cls(
            answer=answer.answer,
            tier=answer.tier,
            context_sources=answer.context_sources,
            search_method=answer.search_method,
            missing_specifics=answer.missing_specifics,
            commitment=answer.commitment,
            ticket_id=answer.ticket_id,
            advisory_only=answer.advisory_only,
            missing_item_content=answer.missing_item_content,
            response_id=answer.response_id,
        )
