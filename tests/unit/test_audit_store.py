"""Unit tests for the audit log store.

Tests AuditLogStore with the in-memory backend and a mocked Supabase client.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.actions import AuditAction
from src.audit.store import AuditLogStore, InMemoryAuditBackend, SupabaseAuditBackend
from src.models.schemas import AuditLogEntry, AuditQuery, utcnow


def entry(action: str, user_id: str = "alice", age_days: float = 0, **fields) -> AuditLogEntry:
    return AuditLogEntry(
        action=action,
        user_id=user_id,
        created_at=utcnow() - timedelta(days=age_days),
        **fields,
    )


class TestAuditLogStore:
    """Tests for recording, querying and purging."""

    @pytest.fixture
    def store(self):
        return AuditLogStore()

    @pytest.mark.asyncio
    async def test_log_builds_entry(self, store):
        stored = await store.log(
            AuditAction.DEPLOYMENT_EXECUTE,
            user_id="alice",
            resource_type="deployment",
            resource_id="job-1",
            details={"environment": "prod"},
            ip_address="10.0.0.1",
        )

        assert stored is True
        [recorded] = await store.query()
        assert recorded.action == "deployment:execute"
        assert recorded.details == {"environment": "prod"}
        assert recorded.success is True

    @pytest.mark.asyncio
    async def test_query_newest_first_with_pagination(self, store):
        for age in (3, 1, 2):
            await store.record(entry(f"deployment:plan_{age}", age_days=age))

        entries = await store.query(AuditQuery(limit=2))
        assert [e.action for e in entries] == ["deployment:plan_1", "deployment:plan_2"]

        entries = await store.query(AuditQuery(limit=2, offset=2))
        assert [e.action for e in entries] == ["deployment:plan_3"]
        assert await store.count(AuditQuery(limit=2, offset=2)) == 3
        assert await store.count(AuditQuery(action="plan_1")) == 1

    @pytest.mark.asyncio
    async def test_action_filter_is_case_sensitive_substring(self, store):
        await store.record(entry("deployment:execute"))
        await store.record(entry("template:view"))

        assert len(await store.query(AuditQuery(action="deploy"))) == 1
        assert await store.query(AuditQuery(action="DEPLOY")) == []

    @pytest.mark.asyncio
    async def test_filters_combine(self, store):
        await store.record(entry("deployment:execute", user_id="alice", success=False))
        await store.record(entry("deployment:execute", user_id="bob", success=False))
        await store.record(entry("deployment:execute", user_id="alice"))
        await store.record(entry("deployment:execute", user_id="alice", age_days=10))

        entries = await store.query(
            AuditQuery(
                user_id="alice",
                success=False,
                start_date=utcnow() - timedelta(days=1),
            )
        )

        assert len(entries) == 1
        assert entries[0].user_id == "alice"
        assert entries[0].success is False

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.record(entry("deployment:execute", user_id="alice"))
        await store.record(entry("deployment:execute", user_id="bob", success=False))
        await store.record(entry("template:view", user_id="alice"))
        await store.record(entry("system:startup", user_id=None))

        stats = await store.stats()

        assert stats.total_events == 4
        assert stats.successful_events == 3
        assert stats.failed_events == 1
        assert stats.top_actions[0].value == "deployment:execute"
        assert stats.top_actions[0].count == 2
        assert [(u.value, u.count) for u in stats.top_users] == [("alice", 2), ("bob", 1)]

    @pytest.mark.asyncio
    async def test_stats_ignore_pagination(self, store):
        for _ in range(5):
            await store.record(entry("deployment:plan"))

        stats = await store.stats(AuditQuery(limit=1))

        assert stats.total_events == 5

    @pytest.mark.asyncio
    async def test_purge_removes_old_entries_only(self, store):
        await store.record(entry("deployment:execute", age_days=100))
        await store.record(entry("deployment:execute", age_days=95))
        await store.record(entry("deployment:execute", age_days=1))

        assert await store.purge(older_than_days=90) == 2
        assert await store.purge(older_than_days=90) == 0
        assert len(await store.query()) == 1

    @pytest.mark.asyncio
    async def test_purge_rejects_negative_age(self, store):
        with pytest.raises(ValueError):
            await store.purge(older_than_days=-1)

    def test_entries_are_immutable(self):
        recorded = entry("deployment:execute")
        with pytest.raises(Exception):
            recorded.action = "other"


class TestFailingBackend:
    """Audit writes never raise back to the caller."""

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self):
        backend = MagicMock()
        backend.insert = AsyncMock(side_effect=ConnectionError("database unavailable"))
        store = AuditLogStore(backend)

        stored = await store.log(AuditAction.DEPLOYMENT_EXECUTE, user_id="alice")

        assert stored is False
        backend.insert.assert_awaited_once()


class TestSupabaseAuditBackend:
    """Tests for the Supabase backend with a mocked client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        table = client.table.return_value
        table.select.return_value = table
        table.eq.return_value = table
        table.like.return_value = table
        table.gte.return_value = table
        table.lte.return_value = table
        table.order.return_value = table
        table.range.return_value = table
        table.delete.return_value = table
        table.lt.return_value = table
        table.limit.return_value = table
        table.execute.return_value = MagicMock(data=[])
        return client

    @pytest.mark.asyncio
    async def test_insert_writes_row(self, client):
        backend = SupabaseAuditBackend(client)
        recorded = entry("deployment:execute")

        await backend.insert(recorded)

        client.table.assert_called_with("audit_log")
        row = client.table.return_value.insert.call_args[0][0]
        assert row["action"] == "deployment:execute"
        assert row["id"] == str(recorded.id)

    @pytest.mark.asyncio
    async def test_select_applies_filters(self, client):
        table = client.table.return_value
        table.execute.return_value = MagicMock(data=[entry("deployment:plan").to_db_row()])
        backend = SupabaseAuditBackend(client)

        entries = await backend.select(AuditQuery(user_id="alice", action="deploy_x", limit=10, offset=20))

        assert len(entries) == 1
        table.eq.assert_any_call("user_id", "alice")
        table.like.assert_called_once_with("action", "%deploy\\_x%")
        table.order.assert_called_once_with("created_at", desc=True)
        table.range.assert_called_once_with(20, 29)

    @pytest.mark.asyncio
    async def test_count_uses_exact_count(self, client):
        table = client.table.return_value
        table.execute.return_value = MagicMock(data=[], count=42)
        backend = SupabaseAuditBackend(client)

        assert await backend.count(AuditQuery(user_id="alice", limit=10)) == 42

        table.select.assert_called_with("id", count="exact")
        table.eq.assert_any_call("user_id", "alice")
        table.range.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_before_counts_rows(self, client):
        table = client.table.return_value
        table.execute.return_value = MagicMock(data=[{"id": "1"}, {"id": "2"}])
        backend = SupabaseAuditBackend(client)

        assert await backend.delete_before(utcnow()) == 2

    @pytest.mark.asyncio
    async def test_insert_retries_then_raises(self, client):
        client.table.return_value.insert.return_value.execute.side_effect = ConnectionError("down")
        store = AuditLogStore(SupabaseAuditBackend(client))

        assert await store.log(AuditAction.SYSTEM_STARTUP) is False
        assert client.table.return_value.insert.return_value.execute.call_count == 3


class TestInMemoryBackend:
    @pytest.mark.asyncio
    async def test_len(self):
        backend = InMemoryAuditBackend()
        await backend.insert(entry("deployment:plan"))
        assert len(backend) == 1
