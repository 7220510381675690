"""
Assistant Infrastructure Layer
==============================

Contains:
- SQLAlchemy models and repositories for gap tickets and conversation turns
- Follow-up webhook notifier (httpx, circuit breaker) and APScheduler job
"""

from knowledge_pipeline.assistant.infrastructure.models import GapTicketModel, ConversationTurnModel
from knowledge_pipeline.assistant.infrastructure.repositories import (
    SQLAlchemyGapTicketRepository,
    SQLAlchemyConversationRepository,
)
from knowledge_pipeline.assistant.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    FollowUpNotifier,
    FollowUpScheduler,
    get_followup_notifier,
    close_followup_notifier,
)

__all__ = [
    "GapTicketModel",
    "ConversationTurnModel",
    "SQLAlchemyGapTicketRepository",
    "SQLAlchemyConversationRepository",
    "CircuitBreaker",
    "CircuitState",
    "FollowUpNotifier",
    "FollowUpScheduler",
    "get_followup_notifier",
    "close_followup_notifier",
]
