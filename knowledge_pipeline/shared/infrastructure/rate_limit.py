"""
Shared-Store Rate Limiter
=========================

Per-minute usage counters kept in PostgreSQL so every worker and serverless
instance sees the same count.

One row per ``(key, window_start)``; a hit is a single
``INSERT ... ON CONFLICT DO UPDATE ... RETURNING count`` committed on its own
session, so rejected and failed requests still count. Old windows are removed
by ``prune_usage_counters`` in the background sweep.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_pipeline.config import settings
from knowledge_pipeline.infrastructure.database import Base
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class UsageCounterModel(Base):
    """
    Database model for time-windowed usage counters.

    Maps to the 'usage_counters' table.
    """
    __tablename__ = "usage_counters"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


@dataclass
class RateLimitResult:
    key: str
    count: int
    limit: int
    window_start: datetime

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


def rate_limit_key(organization_id: str, user_id: Optional[str], tool: str) -> str:
    """``<organization>:<user>:<tool>``; anonymous callers share the org bucket."""
    return f"{organization_id}:{user_id or 'anonymous'}:{tool}"


def window_start_for(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


class SQLAlchemyRateLimiter:
    """Counts hits per key in one-minute windows."""

    def __init__(self, session: AsyncSession, limit_per_minute: Optional[int] = None):
        self._session = session
        self._limit = limit_per_minute or settings.rate_limit_per_minute

    async def hit(self, key: str, now: Optional[datetime] = None) -> RateLimitResult:
        """Record one hit and report the window's count."""
        window_start = window_start_for(now or datetime.now(timezone.utc))

        stmt = insert(UsageCounterModel).values(key=key, window_start=window_start, count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[UsageCounterModel.key, UsageCounterModel.window_start],
            set_={"count": UsageCounterModel.count + 1}
        ).returning(UsageCounterModel.count)

        result = await self._session.execute(stmt)
        count = result.scalar_one()
        await self._session.commit()

        outcome = RateLimitResult(key=key, count=count, limit=self._limit, window_start=window_start)
        if outcome.exceeded:
            logger.warning(
                "Rate limit exceeded",
                extra={"key": key, "count": count, "limit": self._limit}
            )
        return outcome


async def prune_usage_counters(
    session: AsyncSession,
    now: Optional[datetime] = None,
    retention_minutes: Optional[int] = None
) -> int:
    """Delete usage windows older than the retention period; the caller commits."""
    retention = retention_minutes or settings.rate_limit_retention_minutes
    cutoff = window_start_for(now or datetime.now(timezone.utc)) - timedelta(minutes=retention)

    result = await session.execute(delete(UsageCounterModel).where(UsageCounterModel.window_start < cutoff))
    if result.rowcount:
        logger.info("Usage counters pruned", extra={"rows": result.rowcount, "cutoff": cutoff.isoformat()})
    return result.rowcount
