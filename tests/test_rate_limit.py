"""Tests for the shared-store rate limiter."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from knowledge_pipeline.shared.infrastructure.rate_limit import (
    RateLimitResult,
    SQLAlchemyRateLimiter,
    UsageCounterModel,
    prune_usage_counters,
    rate_limit_key,
    window_start_for,
)

from tests.conftest import create_tables_for

NOW = datetime(2025, 3, 1, 9, 30, 42, 123456, tzinfo=timezone.utc)


def session_returning(count: int) -> AsyncMock:
    result = MagicMock()
    result.scalar_one.return_value = count
    session = AsyncMock()
    session.execute.return_value = result
    return session


class TestHelpers:

    def test_key_includes_org_user_and_tool(self):
        assert rate_limit_key("org-1", "user-9", "assistant_ask") == "org-1:user-9:assistant_ask"
        assert rate_limit_key("org-1", None, "assistant_ask") == "org-1:anonymous:assistant_ask"

    def test_window_is_truncated_to_the_minute(self):
        assert window_start_for(NOW) == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)

    def test_result_flags(self):
        at_limit = RateLimitResult(key="k", count=30, limit=30, window_start=NOW)
        over = RateLimitResult(key="k", count=31, limit=30, window_start=NOW)

        assert not at_limit.exceeded
        assert at_limit.remaining == 0
        assert over.exceeded


class TestSQLAlchemyRateLimiter:

    @pytest.mark.asyncio
    async def test_hit_upserts_and_commits(self):
        session = session_returning(4)

        usage = await SQLAlchemyRateLimiter(session, limit_per_minute=5).hit("org-1:user-9:assistant_ask", now=NOW)

        assert usage.count == 4
        assert usage.remaining == 1
        assert not usage.exceeded
        assert usage.window_start == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

        statement = session.execute.await_args.args[0]
        compiled = str(statement)
        assert "ON CONFLICT" in compiled
        assert "RETURNING" in compiled

    @pytest.mark.asyncio
    async def test_hit_over_limit(self):
        usage = await SQLAlchemyRateLimiter(session_returning(6), limit_per_minute=5).hit("k", now=NOW)

        assert usage.exceeded


class TestPruneUsageCounters:

    @pytest.mark.asyncio
    async def test_old_windows_are_deleted(self, sqlite_engine, sqlite_session):
        await create_tables_for(sqlite_engine, UsageCounterModel)
        current = window_start_for(NOW)
        for minutes_ago in (0, 30, 61, 240):
            sqlite_session.add(UsageCounterModel(
                key="org-1:user-9:assistant_ask",
                window_start=current - timedelta(minutes=minutes_ago),
                count=3,
            ))
        await sqlite_session.commit()

        pruned = await prune_usage_counters(sqlite_session, now=NOW, retention_minutes=60)
        await sqlite_session.commit()

        assert pruned == 2
        result = await sqlite_session.execute(select(UsageCounterModel.window_start))
        assert len(result.scalars().all()) == 2
