"""
Admin Routes — Operator actions, audit trail and reconciliation preview.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Response
from sqlalchemy.orm import Session

from phrames.database import get_db
from phrames.schemas.audit_events import AuditEventType
from phrames.schemas.schemas import (
    AdminActionRequest, AdminActionResponse, AuditLogEntry, ErrorResponse, StuckCampaignsResponse,
)
from phrames.services.admin_dispatcher import CsvExport
from phrames.services.audit_service import AuditService
from phrames.services.container import ServiceContainer, get_container

router = APIRouter(prefix="/api/admin", tags=["Admin"], responses={400: {"model": ErrorResponse}})


@router.post("/actions", response_model=AdminActionResponse)
def admin_action(
    payload: AdminActionRequest,
    user_id: Optional[str] = Header(None, alias="user-id"),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Run one operator action. Exports answer with a CSV attachment."""
    if not payload.actor_id and user_id:
        payload.actor_id = user_id

    with container.metrics.track(f"admin.{payload.action}"):
        result = container.dispatcher.dispatch(db, payload)

    if isinstance(result, CsvExport):
        return Response(
            content=result.content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
        )
    return AdminActionResponse(success=result.success, message=result.message, data=result.data)


@router.get("/logs", response_model=list[AuditLogEntry])
def list_audit_logs(
    event_type: Optional[AuditEventType] = Query(None, alias="eventType"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Newest audit entries first, optionally for one event type."""
    return [
        AuditLogEntry(
            id=entry.id,
            event_type=entry.event_type,
            actor_id=entry.actor_id,
            description=entry.description,
            metadata=entry.log_metadata,
            created_at=entry.created_at,
        )
        for entry in AuditService.list_recent(db, event_type=event_type.value if event_type else None, limit=limit)
    ]


@router.get("/stuck-campaigns", response_model=StuckCampaignsResponse)
def list_stuck_campaigns(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """What a reconciliation run would repair, without changing anything."""
    stuck = container.reconciliation.find_stuck_campaigns(db)
    return StuckCampaignsResponse(count=len(stuck), campaigns=[asdict(s) for s in stuck])
