"""
Audit trail for privileged actions.

- store: AuditLogStore with in-memory and Supabase backends
- actions: AuditAction tag constants

Usage:
    from src.audit import AuditLogStore, AuditAction

    store = AuditLogStore.from_settings(settings)
    await store.log(AuditAction.DEPLOYMENT_EXECUTE, user_id="alice", resource_id=str(job.id))
"""

from src.audit.actions import AuditAction
from src.audit.store import (
    AUDIT_LOG_TABLE_SQL,
    AuditBackend,
    AuditLogStore,
    InMemoryAuditBackend,
    SupabaseAuditBackend,
)

__all__ = [
    "AuditAction",
    "AuditBackend",
    "AuditLogStore",
    "InMemoryAuditBackend",
    "SupabaseAuditBackend",
    "AUDIT_LOG_TABLE_SQL",
]
