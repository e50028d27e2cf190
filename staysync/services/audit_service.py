"""
Sync Audit Service

Append-only writers for the sync_audit_events table plus read helpers.
Every writer commits its own row so the trail survives a later failure
in the calling operation.
"""
import logging
from datetime import date, datetime
from typing import Optional, List, Iterable

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.sync_audit import SyncAuditEvent, SyncDirection

logger = logging.getLogger(__name__)


class AuditService:

    def __init__(self, db: Session):
        self.db = db

    def _append(self, event: SyncAuditEvent) -> Optional[SyncAuditEvent]:
        try:
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to write {event.direction} audit event for property {event.property_id}: {e}")
            return None
        return event

    def record_inbound(
        self,
        organization_id: Optional[str],
        property_id: str,
        days_processed: int,
        days_blocked: int,
        days_freed: int,
        errors: Iterable[str] = (),
        canceled: bool = False,
    ) -> Optional[SyncAuditEvent]:
        """A canceled pass covered only part of the horizon and is never a success."""
        errors = list(errors)
        return self._append(SyncAuditEvent.build(
            SyncDirection.INBOUND,
            organization_id=organization_id,
            property_id=property_id,
            success=not errors and not canceled,
            error_code="canceled" if canceled else None,
            details={"canceled": True} if canceled else None,
            days_processed=days_processed,
            days_blocked=days_blocked,
            days_freed=days_freed,
            errors=errors,
        ))

    def record_outbound(
        self,
        organization_id: Optional[str],
        property_id: str,
        reservation_id: str,
        success: bool,
        external_reservation_id: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[SyncAuditEvent]:
        return self._append(SyncAuditEvent.build(
            SyncDirection.OUTBOUND,
            organization_id=organization_id,
            property_id=property_id,
            reservation_id=reservation_id,
            success=success,
            external_reservation_id=external_reservation_id,
            error_code=error_code,
            errors=[error_message] if error_message else [],
        ))

    def record_manual(
        self,
        organization_id: Optional[str],
        property_id: str,
        action: str,
        start_date: date,
        end_date: date,
        days_affected: int,
        reason: Optional[str] = None,
    ) -> Optional[SyncAuditEvent]:
        return self._append(SyncAuditEvent.build(
            SyncDirection.MANUAL,
            organization_id=organization_id,
            property_id=property_id,
            success=True,
            days_blocked=days_affected if action == "block" else 0,
            days_freed=days_affected if action == "unblock" else 0,
            details={
                "action": action,
                "start_date": start_date,
                "end_date": end_date,
                "days_affected": days_affected,
                "reason": reason,
            },
        ))

    def list_events(
        self,
        property_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        direction: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SyncAuditEvent]:
        query = self.db.query(SyncAuditEvent)
        if property_id:
            query = query.filter(SyncAuditEvent.property_id == property_id)
        if organization_id:
            query = query.filter(SyncAuditEvent.organization_id == organization_id)
        if direction:
            query = query.filter(SyncAuditEvent.direction == direction)
        return (
            query.order_by(SyncAuditEvent.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_events(
        self,
        property_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        direction: Optional[str] = None,
    ) -> int:
        query = self.db.query(SyncAuditEvent)
        if property_id:
            query = query.filter(SyncAuditEvent.property_id == property_id)
        if organization_id:
            query = query.filter(SyncAuditEvent.organization_id == organization_id)
        if direction:
            query = query.filter(SyncAuditEvent.direction == direction)
        return query.count()

    def last_sync_at(self, property_id: str) -> Optional[datetime]:
        """Timestamp of the most recent inbound pass for a property"""
        event = (
            self.db.query(SyncAuditEvent)
            .filter(
                SyncAuditEvent.property_id == property_id,
                SyncAuditEvent.direction == SyncDirection.INBOUND.value,
            )
            .order_by(SyncAuditEvent.created_at.desc())
            .first()
        )
        return event.created_at if event else None
