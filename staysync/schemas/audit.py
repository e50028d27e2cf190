from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, Optional, List, Literal, Union, Any, Dict
from datetime import datetime, date


class SyncCounts(BaseModel):
    processed: int = 0
    blocked: int = 0
    freed: int = 0


class _AuditEventBase(BaseModel):
    id: str
    organization_id: Optional[str] = None
    property_id: Optional[str] = None
    timestamp: datetime


class InboundSyncEvent(_AuditEventBase):
    """Result of one reconciliation pass"""
    direction: Literal["inbound"] = "inbound"
    success: bool
    counts: SyncCounts
    errors: List[str] = []
    canceled: bool = False


class OutboundSyncEvent(_AuditEventBase):
    """Result of one reservation publish attempt"""
    direction: Literal["outbound"] = "outbound"
    success: bool
    reservation_id: Optional[str] = None
    external_reservation_id: Optional[str] = None
    error_code: Optional[str] = None
    errors: List[str] = []


class ManualBlockEvent(_AuditEventBase):
    """Operator block/unblock of a date range"""
    direction: Literal["manual"] = "manual"
    action: Literal["block", "unblock"]
    start_date: date
    end_date: date
    days_affected: int
    reason: Optional[str] = None


AuditEvent = Annotated[
    Union[InboundSyncEvent, OutboundSyncEvent, ManualBlockEvent],
    Field(discriminator="direction"),
]

_audit_event_adapter = TypeAdapter(AuditEvent)


def audit_event_from_row(row) -> Union[InboundSyncEvent, OutboundSyncEvent, ManualBlockEvent]:
    """Convert a SyncAuditEvent row into its typed event."""
    details: Dict[str, Any] = row.details or {}
    payload: Dict[str, Any] = {
        "id": row.id,
        "organization_id": row.organization_id,
        "property_id": row.property_id,
        "timestamp": row.created_at,
        "direction": row.direction,
    }

    if row.direction == "inbound":
        payload.update(
            success=row.success,
            counts={
                "processed": row.days_processed or 0,
                "blocked": row.days_blocked or 0,
                "freed": row.days_freed or 0,
            },
            errors=row.errors or [],
            canceled=bool(details.get("canceled")),
        )
    elif row.direction == "outbound":
        payload.update(
            success=row.success,
            reservation_id=row.reservation_id,
            external_reservation_id=row.external_reservation_id,
            error_code=row.error_code,
            errors=row.errors or [],
        )
    else:
        payload.update(
            action=details.get("action", "block"),
            start_date=details.get("start_date"),
            end_date=details.get("end_date"),
            days_affected=details.get("days_affected", 0),
            reason=details.get("reason"),
        )

    return _audit_event_adapter.validate_python(payload)


class AuditEventListResponse(BaseModel):
    success: bool = True
    events: List[AuditEvent]
    total: int
