"""
Assistant Domain Layer
======================

Domain layer for the assistant module.

Contains:
- Entities: GapTicket, GapReview, ConversationTurn, AssistantAnswer
- Gap detection: categories, hedges and commitment text
"""

from knowledge_pipeline.assistant.domain.entities import (
    GapTicket,
    GapReview,
    ConversationTurn,
    AssistantAnswer,
)
from knowledge_pipeline.assistant.domain.gaps import (
    GAP_CATEGORIES,
    GENERIC_HEDGES,
    SPECIFIC_DETAILS,
    GapCategory,
    detect_missing_specifics,
    follow_up_due,
    format_commitment,
)

__all__ = [
    "GapTicket",
    "GapReview",
    "ConversationTurn",
    "AssistantAnswer",
    "GAP_CATEGORIES",
    "GENERIC_HEDGES",
    "SPECIFIC_DETAILS",
    "GapCategory",
    "detect_missing_specifics",
    "follow_up_due",
    "format_commitment",
]
