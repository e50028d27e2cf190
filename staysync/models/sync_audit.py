"""
Sync Audit Event Model

Append-only trail of every reconciliation pass, outbound publish and
manual block/unblock. Rows are never updated or deleted.
"""
from sqlalchemy import Column, String, DateTime, Integer, Boolean, JSON, Index, event
from datetime import date, datetime
from decimal import Decimal
import uuid
import enum

from ..database import Base


def _serialize_for_json(obj):
    """Convert non-JSON-serializable types to serializable ones"""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {k: _serialize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize_for_json(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    return obj


class SyncDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    MANUAL = "manual"


class SyncAuditEvent(Base):
    """
    One audit record.

    direction=inbound: reconciliation tallies and per-batch errors.
    direction=outbound: publish result with external id or error code.
    direction=manual: block/unblock with the affected range.
    """
    __tablename__ = "sync_audit_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=True)
    property_id = Column(String(36), nullable=True)
    reservation_id = Column(String(36), nullable=True)

    direction = Column(String(20), nullable=False)
    success = Column(Boolean, nullable=False, default=True)

    # Counts
    days_processed = Column(Integer, default=0)
    days_blocked = Column(Integer, default=0)
    days_freed = Column(Integer, default=0)

    errors = Column(JSON, nullable=True)

    # Outbound
    external_reservation_id = Column(String(255), nullable=True)
    error_code = Column(String(100), nullable=True)

    # Free-form context (manual range, reason, ...)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sync_audit_property_created", "property_id", "created_at"),
        Index("ix_sync_audit_org_created", "organization_id", "created_at"),
        Index("ix_sync_audit_direction", "direction"),
    )

    def __repr__(self):
        return f"<SyncAuditEvent {self.direction} property={self.property_id} success={self.success}>"

    @classmethod
    def build(cls, direction: SyncDirection, **fields) -> "SyncAuditEvent":
        fields["errors"] = _serialize_for_json(fields.get("errors"))
        fields["details"] = _serialize_for_json(fields.get("details"))
        return cls(direction=direction.value, **fields)


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(SyncAuditEvent, "before_update")
def _reject_update(mapper, connection, target):
    raise AppendOnlyViolation("sync_audit_events is append-only")


@event.listens_for(SyncAuditEvent, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AppendOnlyViolation("sync_audit_events is append-only")
