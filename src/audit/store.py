"""Append-only audit log storage.

Entries are written through a backend: Supabase when configured, otherwise an
in-memory list. Writes never raise back to the caller; a failed write is
logged and counted instead, so auditing can never abort the operation it
observes.

Supabase Table Schema (audit_log): see AUDIT_LOG_TABLE_SQL.

Usage:
    store = AuditLogStore.from_settings(settings)
    await store.record(AuditLogEntry(action="deployment:execute", user_id="alice"))

    entries = await store.query(AuditQuery(action="deployment", success=False))
    stats = await store.stats(AuditQuery(user_id="alice"))
    removed = await store.purge(older_than_days=90)
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import timedelta
from typing import Any, Optional, Protocol

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config.settings import Settings
from src.models.schemas import AuditLogEntry, AuditQuery, AuditStats, CountedValue, utcnow
from src.monitoring.metrics import record_audit_write

logger = structlog.get_logger(__name__)

TOP_N = 10

AUDIT_LOG_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS audit_log (
    id UUID PRIMARY KEY,
    user_id TEXT,
    action TEXT NOT NULL,
    resource_type TEXT,
    resource_id TEXT,
    details JSONB,
    ip_address TEXT,
    user_agent TEXT,
    success BOOLEAN DEFAULT true,
    error_message TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_audit_log_user_id ON audit_log(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_action ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_log_resource ON audit_log(resource_type, resource_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_created_at ON audit_log(created_at DESC);
"""


class AuditBackend(Protocol):
    """Protocol for audit storage backends."""

    async def insert(self, entry: AuditLogEntry) -> None: ...

    async def select(self, query: AuditQuery, paginate: bool = True) -> list[AuditLogEntry]: ...

    async def count(self, query: AuditQuery) -> int: ...

    async def delete_before(self, cutoff) -> int: ...


class InMemoryAuditBackend:
    """
    In-memory audit backend for development or when Supabase is not configured.

    WARNING: Does not persist across restarts.
    """

    def __init__(self) -> None:
        self._entries: list[AuditLogEntry] = []
        self._lock = asyncio.Lock()

    async def insert(self, entry: AuditLogEntry) -> None:
        async with self._lock:
            self._entries.append(entry)

    async def select(self, query: AuditQuery, paginate: bool = True) -> list[AuditLogEntry]:
        matched = [e for e in self._entries if query.matches(e)]
        matched.sort(key=lambda e: e.created_at, reverse=True)
        if not paginate:
            return matched
        end = query.offset + query.limit if query.limit else None
        return matched[query.offset:end]

    async def count(self, query: AuditQuery) -> int:
        return sum(1 for e in self._entries if query.matches(e))

    async def delete_before(self, cutoff) -> int:
        async with self._lock:
            kept = [e for e in self._entries if e.created_at >= cutoff]
            removed = len(self._entries) - len(kept)
            self._entries = kept
        return removed

    def __len__(self) -> int:
        return len(self._entries)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SupabaseAuditBackend:
    """Audit backend writing to the Supabase ``audit_log`` table."""

    TABLE = "audit_log"

    def __init__(self, client: Any) -> None:
        self._client = client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.2, max=2), reraise=True)
    async def insert(self, entry: AuditLogEntry) -> None:
        self._client.table(self.TABLE).insert(entry.to_db_row()).execute()

    def _filtered(self, builder: Any, query: AuditQuery) -> Any:
        if query.user_id is not None:
            builder = builder.eq("user_id", query.user_id)
        if query.action is not None:
            # LIKE is case-sensitive in PostgreSQL
            builder = builder.like("action", f"%{_escape_like(query.action)}%")
        if query.resource_type is not None:
            builder = builder.eq("resource_type", query.resource_type)
        if query.resource_id is not None:
            builder = builder.eq("resource_id", query.resource_id)
        if query.start_date is not None:
            builder = builder.gte("created_at", query.start_date.isoformat())
        if query.end_date is not None:
            builder = builder.lte("created_at", query.end_date.isoformat())
        if query.success is not None:
            builder = builder.eq("success", query.success)
        return builder

    async def select(self, query: AuditQuery, paginate: bool = True) -> list[AuditLogEntry]:
        builder = self._filtered(self._client.table(self.TABLE).select("*"), query)
        builder = builder.order("created_at", desc=True)
        if paginate and query.limit:
            builder = builder.range(query.offset, query.offset + query.limit - 1)
        result = builder.execute()
        return [AuditLogEntry.model_validate(row) for row in (result.data or [])]

    async def count(self, query: AuditQuery) -> int:
        builder = self._filtered(self._client.table(self.TABLE).select("id", count="exact"), query)
        result = builder.limit(1).execute()
        return result.count or 0

    async def delete_before(self, cutoff) -> int:
        result = (
            self._client.table(self.TABLE)
            .delete()
            .lt("created_at", cutoff.isoformat())
            .execute()
        )
        return len(result.data or [])

    async def ping(self) -> None:
        """Run a trivial query to verify connectivity."""
        self._client.table(self.TABLE).select("id").limit(1).execute()


class AuditLogStore:
    """Durable, queryable, append-only audit trail.

    Args:
        backend: Storage backend. Defaults to an in-memory backend.
    """

    def __init__(self, backend: Optional[AuditBackend] = None) -> None:
        self._backend: AuditBackend = backend or InMemoryAuditBackend()

    @classmethod
    def from_settings(cls, settings: Settings, client: Any = None) -> "AuditLogStore":
        """Pick the Supabase backend when configured, in-memory otherwise."""
        if client is None and settings.supabase_enabled:
            from supabase import create_client

            client = create_client(
                settings.supabase_url,
                settings.supabase_key.get_secret_value(),
            )
        if client is not None:
            logger.info("audit_store_backend", backend="supabase")
            return cls(SupabaseAuditBackend(client))
        logger.info("audit_store_backend", backend="memory")
        return cls(InMemoryAuditBackend())

    @property
    def backend(self) -> AuditBackend:
        return self._backend

    async def record(self, entry: AuditLogEntry) -> bool:
        """Append an entry.

        Never raises: a storage failure is logged and reported through the
        return value only.

        Returns:
            True if the entry was stored.
        """
        try:
            await self._backend.insert(entry)
        except Exception as e:
            logger.error(
                "audit_log_write_failed",
                action=entry.action,
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            record_audit_write(False)
            return False
        record_audit_write(True)
        return True

    async def log(
        self,
        action: str,
        *,
        user_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Any = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> bool:
        """Build an entry from keyword fields and record it."""
        entry = AuditLogEntry(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            error_message=error_message,
        )
        return await self.record(entry)

    async def query(self, query: Optional[AuditQuery] = None) -> list[AuditLogEntry]:
        """Return matching entries, newest first."""
        return await self._backend.select(query or AuditQuery())

    async def count(self, query: Optional[AuditQuery] = None) -> int:
        """Number of matching entries, ignoring limit and offset."""
        return await self._backend.count(query or AuditQuery())

    async def stats(self, query: Optional[AuditQuery] = None) -> AuditStats:
        """Aggregate counts and top-10 actions/actors over the filtered window."""
        entries = await self._backend.select(query or AuditQuery(), paginate=False)

        successful = sum(1 for e in entries if e.success)
        actions = Counter(e.action for e in entries)
        users = Counter(e.user_id for e in entries if e.user_id is not None)

        return AuditStats(
            total_events=len(entries),
            successful_events=successful,
            failed_events=len(entries) - successful,
            top_actions=[CountedValue(value=a, count=c) for a, c in actions.most_common(TOP_N)],
            top_users=[CountedValue(value=u, count=c) for u, c in users.most_common(TOP_N)],
        )

    async def purge(self, older_than_days: int) -> int:
        """Delete entries older than the cutoff.

        Returns:
            Number of entries removed.
        """
        if older_than_days < 0:
            raise ValueError("older_than_days must be non-negative")
        cutoff = utcnow() - timedelta(days=older_than_days)
        removed = await self._backend.delete_before(cutoff)
        logger.info("audit_log_purged", older_than_days=older_than_days, removed=removed)
        return removed
