"""
Assistant Application Layer
===========================

Application services, DTOs and repository interfaces for the assistant.
"""

from knowledge_pipeline.assistant.application.interfaces import (
    IConversationRepository,
    IFollowUpNotifier,
    IGapTicketRepository,
)
from knowledge_pipeline.assistant.application.services import (
    AssistantService,
    ConversationService,
    FollowUpDispatchService,
    GapTrackerService,
)
from knowledge_pipeline.assistant.application.dto import (
    AskRequest,
    AskResponse,
    ConversationMessage,
    ConversationTurnRequest,
    ConversationTurnResponse,
    ConversationWindowResponse,
    GapReviewRequest,
    GapReviewResponse,
)

__all__ = [
    "IConversationRepository",
    "IFollowUpNotifier",
    "IGapTicketRepository",
    "AssistantService",
    "ConversationService",
    "FollowUpDispatchService",
    "GapTrackerService",
    "AskRequest",
    "AskResponse",
    "ConversationMessage",
    "ConversationTurnRequest",
    "ConversationTurnResponse",
    "ConversationWindowResponse",
    "GapReviewRequest",
    "GapReviewResponse",
]
