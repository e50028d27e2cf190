from typing import Optional, Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.audit import AuditEventListResponse, audit_event_from_row
from ..services.audit_service import AuditService

router = APIRouter(prefix="/api/audit", tags=["Audit"])


@router.get("/events", response_model=AuditEventListResponse)
async def list_audit_events(
    property_id: Optional[str] = Query(None),
    organization_id: Optional[str] = Query(None),
    direction: Optional[Literal["inbound", "outbound", "manual"]] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Sync audit trail, newest first"""
    service = AuditService(db)
    rows = service.list_events(
        property_id=property_id,
        organization_id=organization_id,
        direction=direction,
        limit=limit,
        offset=offset,
    )
    total = service.count_events(property_id=property_id, organization_id=organization_id, direction=direction)
    return AuditEventListResponse(events=[audit_event_from_row(r) for r in rows], total=total)
