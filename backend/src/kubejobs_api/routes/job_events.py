"""Routes for querying audited job events."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from kubejobs_api.models.audit import JobAuditEvent, JobAuditEventListResponse
from kubejobs_api.models.permission import PermissionScheme
from kubejobs_api.services.audit import AuditService, get_audit_service

AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]

router = APIRouter(prefix="/api/v1/job-events", tags=["job-events"])


@router.get("", response_model=JobAuditEventListResponse)
async def get_job_events(
    audit_service: AuditServiceDep,
    target: str | None = Query(None, description="Filter by job (real owner) name"),
    kind: PermissionScheme | None = Query(None, description="Filter by event kind"),
    success: bool | None = Query(None, description="Filter by success status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum events to return"),
    offset: int = Query(0, ge=0, description="Number of events to skip"),
) -> JobAuditEventListResponse:
    """Query job audit events, newest first."""
    events, total = audit_service.get_events(
        target_value=target,
        kind=kind,
        success=success,
        limit=limit,
        offset=offset,
    )
    return JobAuditEventListResponse(events=events, total=total, limit=limit, offset=offset)


@router.get("/{event_id}", response_model=JobAuditEvent)
async def get_job_event(event_id: str, audit_service: AuditServiceDep) -> JobAuditEvent:
    """Get a single job audit event."""
    event = audit_service.get_event(event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job event {event_id} not found",
        )
    return event
