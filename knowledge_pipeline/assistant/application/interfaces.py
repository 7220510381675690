"""
Assistant Repository Interfaces
===============================

Abstractions for gap-ticket and conversation persistence and the follow-up
notification hand-off.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from knowledge_pipeline.assistant.domain import ConversationTurn, GapTicket


class IGapTicketRepository(ABC):
    """Interface for gap ticket data access."""

    @abstractmethod
    async def create(self, ticket: GapTicket) -> GapTicket:
        """Persist a new ticket and return it with its ID."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[GapTicket]:
        """Get ticket by ID."""

    @abstractmethod
    async def list_undispatched(self, limit: int = 50) -> List[GapTicket]:
        """Pending tickets whose notification was not handed off yet."""

    @abstractmethod
    async def mark_dispatched(self, ticket_id: str, dispatched_at: datetime) -> bool:
        """
        Flag a ticket dispatched and ``scheduled``.

        Conditional on the ticket still being pending and undispatched;
        returns False when another dispatch got there first.
        """


class IConversationRepository(ABC):
    """Interface for conversation turn data access."""

    @abstractmethod
    async def append(self, turn: ConversationTurn) -> ConversationTurn:
        """Persist a turn."""

    @abstractmethod
    async def recent(
        self,
        organization_id: str,
        limit: int,
        user_id: Optional[str] = None
    ) -> List[ConversationTurn]:
        """Most recent turns, newest first."""


class IFollowUpNotifier(ABC):
    """Hands a gap ticket to the follow-up delivery channel."""

    @abstractmethod
    async def dispatch(self, ticket: GapTicket) -> bool:
        """Returns True once the channel accepted the ticket."""
