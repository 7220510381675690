"""
Assistant Infrastructure Models
===============================

SQLAlchemy ORM models for gap tickets and conversation turns.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_pipeline.config import GapTicketStatus
from knowledge_pipeline.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GapTicketModel(Base):
    """
    Database model for GapTicket entity.

    Maps to the 'gap_tickets' table.
    """
    __tablename__ = "gap_tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    missing_specifics: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    follow_up_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=GapTicketStatus.PENDING, index=True
    )
    notification_dispatched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ConversationTurnModel(Base):
    """
    Database model for ConversationTurn entity.

    Maps to the 'conversation_turns' table. Rows are never updated.
    """
    __tablename__ = "conversation_turns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)
    upstream_response_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
