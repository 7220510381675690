"""
Assistant Domain Entities
=========================

Gap tickets, conversation turns and the results the assistant services
return.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from knowledge_pipeline.config import GapTicketStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GapTicket:
    """
    Follow-up obligation for specifics an answer could not give.

    Lifecycle: ``pending -> scheduled -> completed``. It becomes ``scheduled``
    once the notification hand-off succeeded.
    """
    organization_id: str
    prompt: str
    missing_specifics: List[str]
    follow_up_at: datetime
    status: str = GapTicketStatus.PENDING
    notification_dispatched: bool = False
    notification_dispatched_at: Optional[datetime] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    @property
    def idempotency_key(self) -> str:
        return f"gap-ticket-{self.id}"


@dataclass
class GapReview:
    """Outcome of reviewing one answer for missing specifics."""
    missing_specifics: List[str] = field(default_factory=list)
    commitment: Optional[str] = None
    ticket_id: Optional[str] = None
    follow_up_at: Optional[datetime] = None


@dataclass
class ConversationTurn:
    """One prompt/response exchange; append-only."""
    organization_id: str
    prompt: str
    response: str
    user_id: Optional[str] = None
    upstream_response_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class AssistantAnswer:
    """Grounded answer produced for one query."""
    answer: str
    tier: str
    context_sources: List[Dict[str, Any]] = field(default_factory=list)
    search_method: str = "none"
    missing_specifics: List[str] = field(default_factory=list)
    commitment: Optional[str] = None
    ticket_id: Optional[str] = None
    advisory_only: bool = False
    missing_item_content: bool = False
    response_id: Optional[str] = None
