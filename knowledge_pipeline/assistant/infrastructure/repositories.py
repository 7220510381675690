"""
Assistant Infrastructure Repositories
=====================================

Concrete implementations of repository interfaces using SQLAlchemy.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_pipeline.assistant.application.interfaces import (
    IConversationRepository,
    IGapTicketRepository,
)
from knowledge_pipeline.assistant.domain import ConversationTurn, GapTicket
from knowledge_pipeline.assistant.infrastructure.models import ConversationTurnModel, GapTicketModel
from knowledge_pipeline.config import GapTicketStatus
from knowledge_pipeline.core import RepositoryException


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _to_ticket(model: GapTicketModel) -> GapTicket:
    return GapTicket(
        id=str(model.id),
        organization_id=str(model.organization_id),
        prompt=model.prompt,
        missing_specifics=list(model.missing_specifics or []),
        follow_up_at=model.follow_up_at,
        status=model.status,
        notification_dispatched=model.notification_dispatched,
        notification_dispatched_at=model.notification_dispatched_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_turn(model: ConversationTurnModel) -> ConversationTurn:
    return ConversationTurn(
        id=str(model.id),
        organization_id=str(model.organization_id),
        user_id=model.user_id,
        prompt=model.prompt,
        response=model.response,
        upstream_response_id=model.upstream_response_id,
        metadata=dict(model.metadata_ or {}),
        created_at=model.created_at,
    )


class SQLAlchemyGapTicketRepository(IGapTicketRepository):
    """
    SQLAlchemy implementation of gap ticket repository.

    ``mark_dispatched`` is a single conditional UPDATE so concurrent
    dispatchers transition a ticket at most once.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, ticket: GapTicket) -> GapTicket:
        org_uuid = _as_uuid(ticket.organization_id)
        if org_uuid is None:
            raise RepositoryException(f"Invalid organization id: {ticket.organization_id}")

        model = GapTicketModel(
            id=uuid4(),
            organization_id=org_uuid,
            prompt=ticket.prompt,
            missing_specifics=list(ticket.missing_specifics),
            follow_up_at=ticket.follow_up_at,
            status=ticket.status,
            notification_dispatched=ticket.notification_dispatched,
            notification_dispatched_at=ticket.notification_dispatched_at,
            created_at=ticket.created_at,
        )
        # a failed insert rolls back only this savepoint
        async with self._session.begin_nested():
            self._session.add(model)
            await self._session.flush()

        ticket.id = str(model.id)
        return ticket

    async def get(self, ticket_id: str) -> Optional[GapTicket]:
        ticket_uuid = _as_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        model = await self._session.get(GapTicketModel, ticket_uuid)
        return _to_ticket(model) if model else None

    async def list_undispatched(self, limit: int = 50) -> List[GapTicket]:
        stmt = (
            select(GapTicketModel)
            .where(
                GapTicketModel.status == GapTicketStatus.PENDING,
                GapTicketModel.notification_dispatched.is_(False)
            )
            .order_by(GapTicketModel.created_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_to_ticket(model) for model in result.scalars().all()]

    async def mark_dispatched(self, ticket_id: str, dispatched_at: datetime) -> bool:
        ticket_uuid = _as_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        stmt = (
            update(GapTicketModel)
            .where(
                GapTicketModel.id == ticket_uuid,
                GapTicketModel.status == GapTicketStatus.PENDING,
                GapTicketModel.notification_dispatched.is_(False)
            )
            .values(
                status=GapTicketStatus.SCHEDULED,
                notification_dispatched=True,
                notification_dispatched_at=dispatched_at,
                updated_at=dispatched_at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyConversationRepository(IConversationRepository):
    """SQLAlchemy implementation of the append-only conversation log."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, turn: ConversationTurn) -> ConversationTurn:
        org_uuid = _as_uuid(turn.organization_id)
        if org_uuid is None:
            raise RepositoryException(f"Invalid organization id: {turn.organization_id}")

        model = ConversationTurnModel(
            id=uuid4(),
            organization_id=org_uuid,
            user_id=turn.user_id,
            prompt=turn.prompt,
            response=turn.response,
            upstream_response_id=turn.upstream_response_id,
            metadata_=dict(turn.metadata),
            created_at=turn.created_at,
        )
        self._session.add(model)
        await self._session.flush()

        turn.id = str(model.id)
        return turn

    async def recent(
        self,
        organization_id: str,
        limit: int,
        user_id: Optional[str] = None
    ) -> List[ConversationTurn]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []

        stmt = select(ConversationTurnModel).where(ConversationTurnModel.organization_id == org_uuid)
        if user_id is not None:
            stmt = stmt.where(ConversationTurnModel.user_id == user_id)
        stmt = stmt.order_by(ConversationTurnModel.created_at.desc()).limit(limit)

        result = await self._session.execute(stmt)
        return [_to_turn(model) for model in result.scalars().all()]
