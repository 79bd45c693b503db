"""Audit log endpoints."""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_actor, get_audit_store
from src.api.models import AuditListResponse, AuditPurgeResponse
from src.audit.actions import AuditAction
from src.audit.store import AuditLogStore
from src.jobs.tracker import ActorContext
from src.models.schemas import AuditQuery, AuditStats

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/audit", tags=["Audit"])


def audit_filters(
    user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None, description="Case-sensitive substring of the action tag"),
    resource_type: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    success: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> AuditQuery:
    return AuditQuery(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        success=success,
        limit=limit,
        offset=offset,
    )


@router.get(
    "",
    response_model=AuditListResponse,
    summary="Query the audit log",
    description="All given filters must match. Newest entries first.",
)
async def query_audit_log(
    query: AuditQuery = Depends(audit_filters),
    store: AuditLogStore = Depends(get_audit_store),
) -> AuditListResponse:
    entries = await store.query(query)
    return AuditListResponse(
        entries=entries,
        total=await store.count(query),
        limit=query.limit,
        offset=query.offset,
    )


@router.get(
    "/stats",
    response_model=AuditStats,
    summary="Audit statistics",
    description="Counts and top-10 actions/users within the filtered window.",
)
async def audit_stats(
    query: AuditQuery = Depends(audit_filters),
    store: AuditLogStore = Depends(get_audit_store),
) -> AuditStats:
    return await store.stats(query)


@router.delete(
    "",
    response_model=AuditPurgeResponse,
    summary="Purge old audit entries",
)
async def purge_audit_log(
    older_than_days: int = Query(..., ge=0, description="Delete entries older than this"),
    store: AuditLogStore = Depends(get_audit_store),
    actor: ActorContext = Depends(get_actor),
) -> AuditPurgeResponse:
    removed = await store.purge(older_than_days)
    await store.log(
        AuditAction.AUDIT_PURGE,
        resource_type="audit_log",
        details={"older_than_days": older_than_days, "removed": removed},
        **actor.audit_fields(),
    )
    return AuditPurgeResponse(removed=removed, older_than_days=older_than_days)
