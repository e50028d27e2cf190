"""
Calendar State Store

Single writer of CalendarDay rows. Every write is one atomic conditional
statement per (property_id, date):

1. INSERT ... ON CONFLICT DO NOTHING (creates the row if absent)
2. UPDATE ... WHERE reservation_id IS NULL [OR reservation_id = :rid]

A day held by a local reservation is therefore never moved by inbound sync,
webhooks or manual blocks; those writes raise ConflictLocalReservationWins.
Each write is committed on its own.

Date ranges are half-open: [start, end).
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ..errors import ConflictLocalReservationWins, NotMapped
from ..models.calendar_day import CalendarDay, DayStatus, BlockReason
from ..models.property import Property
from ..utils.db_helpers import insert_ignore
from .audit_service import AuditService

logger = logging.getLogger(__name__)

SYNC_STATUS_WINDOW_DAYS = 90


def date_range(start: date, end: date) -> List[date]:
    """Dates from start (inclusive) to end (exclusive)."""
    dates = []
    current = start
    while current < end:
        dates.append(current)
        current += timedelta(days=1)
    return dates


class CalendarStore:
    """
    Service for reading and writing the per-property daily calendar.

    Key responsibilities:
    - Atomic per-day upserts honoring the reservation hold
    - Booking/releasing internal and external reservations
    - Manual block/unblock with an audit trail
    - Sync status summary
    """

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def _get_property(self, property_id: str) -> Property:
        prop = self.db.query(Property).filter(Property.id == property_id).first()
        if not prop:
            raise NotMapped(f"Property {property_id} not found")
        return prop

    def _holder_of(self, property_id: str, day: date) -> Optional[str]:
        return self.db.query(CalendarDay.reservation_id).filter(
            CalendarDay.property_id == property_id,
            CalendarDay.date == day,
        ).scalar()

    def _status_of(self, property_id: str, day: date) -> Optional[str]:
        return self.db.query(CalendarDay.status).filter(
            CalendarDay.property_id == property_id,
            CalendarDay.date == day,
        ).scalar()

    # ==================
    # Core operations
    # ==================

    def upsert_day(
        self,
        property_id: str,
        day: date,
        status: str,
        reason: Optional[str] = None,
        reservation_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        require_available: bool = False,
    ) -> CalendarDay:
        """
        Write one day.

        With require_available the write only lands on an Available day (or
        one already held by reservation_id).

        Raises:
            ConflictLocalReservationWins: the day is held by a different
                reservation, or is not available when require_available is set
        """
        status = DayStatus(status).value
        now = datetime.utcnow()

        inserted = insert_ignore(
            self.db,
            CalendarDay,
            {
                "id": str(uuid.uuid4()),
                "organization_id": organization_id,
                "property_id": property_id,
                "date": day,
                "status": status,
                "reason": reason,
                "reservation_id": reservation_id,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=("property_id", "date"),
        )

        if not inserted:
            hold_condition = CalendarDay.reservation_id.is_(None)
            if require_available:
                hold_condition = and_(hold_condition, CalendarDay.status == DayStatus.AVAILABLE.value)
            if reservation_id is not None:
                hold_condition = or_(hold_condition, CalendarDay.reservation_id == reservation_id)

            result = self.db.execute(
                update(CalendarDay)
                .where(and_(
                    CalendarDay.property_id == property_id,
                    CalendarDay.date == day,
                    hold_condition,
                ))
                .values(status=status, reason=reason, reservation_id=reservation_id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                raise ConflictLocalReservationWins(
                    property_id, day, self._holder_of(property_id, day), status=self._status_of(property_id, day),
                )

        self.db.commit()
        return self.db.query(CalendarDay).filter(
            CalendarDay.property_id == property_id,
            CalendarDay.date == day,
        ).one()

    def get_range(self, property_id: str, start: date, end: date) -> List[CalendarDay]:
        """Stored rows in [start, end), ordered by date. Missing dates are implicitly available."""
        return self.db.query(CalendarDay).filter(
            CalendarDay.property_id == property_id,
            CalendarDay.date >= start,
            CalendarDay.date < end,
        ).order_by(CalendarDay.date).all()

    def free_day(self, property_id: str, day: date, reason: str = BlockReason.FREED_BY_SYNC) -> bool:
        """
        Make a day Available unless a reservation holds it.

        Returns True if a stored row changed, False if no row existed.
        Raises ConflictLocalReservationWins if the day is held.
        """
        result = self.db.execute(
            update(CalendarDay)
            .where(and_(
                CalendarDay.property_id == property_id,
                CalendarDay.date == day,
                CalendarDay.reservation_id.is_(None),
            ))
            .values(status=DayStatus.AVAILABLE.value, reason=reason, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            return True

        holder = self._holder_of(property_id, day)
        if holder is not None:
            raise ConflictLocalReservationWins(property_id, day, holder)
        return False

    def get_availability(self, property_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        """Every date in [start, end) with missing rows filled as available."""
        stored = {row.date: row for row in self.get_range(property_id, start, end)}
        days = []
        for d in date_range(start, end):
            row = stored.get(d)
            days.append({
                "date": d,
                "status": row.status if row else DayStatus.AVAILABLE.value,
                "reason": row.reason if row else None,
                "reservation_id": row.reservation_id if row else None,
            })
        return days

    # ==================
    # Internal reservations
    # ==================

    def book_reservation(
        self,
        property_id: str,
        reservation_id: str,
        check_in: date,
        check_out: date,
        organization_id: Optional[str] = None,
    ) -> int:
        """
        Mark every night of a stay Booked for an internal reservation.

        Every night must be Available or already held by this reservation.
        A night that is held by another reservation, booked externally or
        blocked rejects the whole stay before anything is written. A night
        taken between that check and its write rolls back the nights this
        call wrote.

        Raises:
            ConflictLocalReservationWins: some night is not available
        """
        nights = date_range(check_in, check_out)
        already_held = set()
        for row in self.get_range(property_id, check_in, check_out):
            if row.reservation_id == reservation_id:
                already_held.add(row.date)
            elif row.reservation_id is not None:
                raise ConflictLocalReservationWins(property_id, row.date, row.reservation_id)
            elif row.status != DayStatus.AVAILABLE.value:
                raise ConflictLocalReservationWins(property_id, row.date, status=row.status)

        written = []
        try:
            for night in nights:
                self.upsert_day(
                    property_id,
                    night,
                    DayStatus.BOOKED.value,
                    reason=BlockReason.GUEST_RESERVATION,
                    reservation_id=reservation_id,
                    organization_id=organization_id,
                    require_available=True,
                )
                if night not in already_held:
                    written.append(night)
        except ConflictLocalReservationWins:
            self._undo_nights(property_id, reservation_id, written)
            raise

        logger.info(f"Marked {len(nights)} nights booked for property {property_id}, reservation {reservation_id}")
        return len(nights)

    def _undo_nights(self, property_id: str, reservation_id: str, nights: List[date]) -> None:
        if not nights:
            return
        self.db.execute(
            update(CalendarDay)
            .where(and_(
                CalendarDay.property_id == property_id,
                CalendarDay.reservation_id == reservation_id,
                CalendarDay.date.in_(nights),
            ))
            .values(
                status=DayStatus.AVAILABLE.value,
                reason=BlockReason.RESERVATION_RELEASED,
                reservation_id=None,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.warning(f"Rolled back {len(nights)} nights of reservation {reservation_id} on property {property_id}")

    def release_reservation(self, reservation_id: str) -> int:
        """Free every day held by a reservation. Returns count of days freed."""
        result = self.db.execute(
            update(CalendarDay)
            .where(CalendarDay.reservation_id == reservation_id)
            .values(
                status=DayStatus.AVAILABLE.value,
                reason=BlockReason.RESERVATION_RELEASED,
                reservation_id=None,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Released {result.rowcount} days of reservation {reservation_id}")
        return result.rowcount

    # ==================
    # External (PMS-side) reservations
    # ==================

    def mark_external_booking(
        self,
        property_id: str,
        external_reservation_id: str,
        check_in: date,
        check_out: date,
        organization_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """Mark a PMS/OTA reservation's nights Booked. Nights held locally are deferred."""
        booked = 0
        deferred = 0
        reason = BlockReason.external_reservation(external_reservation_id)
        for night in date_range(check_in, check_out):
            try:
                self.upsert_day(
                    property_id, night, DayStatus.BOOKED.value,
                    reason=reason, organization_id=organization_id,
                )
                booked += 1
            except ConflictLocalReservationWins as e:
                deferred += 1
                logger.warning(f"External reservation {external_reservation_id}: {e}")
        return {"booked": booked, "deferred": deferred}

    def release_external_booking(self, property_id: str, external_reservation_id: str) -> int:
        """Free the days a canceled PMS/OTA reservation held."""
        result = self.db.execute(
            update(CalendarDay)
            .where(and_(
                CalendarDay.property_id == property_id,
                CalendarDay.reason == BlockReason.external_reservation(external_reservation_id),
                CalendarDay.reservation_id.is_(None),
            ))
            .values(
                status=DayStatus.AVAILABLE.value,
                reason=BlockReason.RESERVATION_RELEASED,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    # ==================
    # Manual operations
    # ==================

    def block_dates(
        self,
        property_id: str,
        start: date,
        end: date,
        reason: str = BlockReason.MANUAL_BLOCK,
    ) -> Dict[str, int]:
        """Block [start, end) by hand. Booked days are left alone."""
        prop = self._get_property(property_id)
        existing = {row.date: row for row in self.get_range(property_id, start, end)}

        blocked = 0
        skipped = 0
        for day in date_range(start, end):
            row = existing.get(day)
            if row is not None and row.status == DayStatus.BOOKED.value:
                skipped += 1
                continue
            try:
                self.upsert_day(
                    property_id, day, DayStatus.BLOCKED.value,
                    reason=reason, organization_id=prop.organization_id,
                )
                blocked += 1
            except ConflictLocalReservationWins:
                skipped += 1

        self.audit.record_manual(
            prop.organization_id, property_id, "block", start, end, blocked, reason=reason,
        )
        logger.info(f"Manually blocked {blocked} days for property {property_id} ({skipped} skipped)")
        return {"days_blocked": blocked, "days_skipped": skipped}

    def unblock_dates(self, property_id: str, start: date, end: date) -> Dict[str, int]:
        """Unblock [start, end). Days with a reservation are never touched."""
        prop = self._get_property(property_id)
        result = self.db.execute(
            update(CalendarDay)
            .where(and_(
                CalendarDay.property_id == property_id,
                CalendarDay.date >= start,
                CalendarDay.date < end,
                CalendarDay.status == DayStatus.BLOCKED.value,
                CalendarDay.reservation_id.is_(None),
            ))
            .values(
                status=DayStatus.AVAILABLE.value,
                reason=BlockReason.UNBLOCKED_MANUALLY,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        freed = result.rowcount

        self.audit.record_manual(prop.organization_id, property_id, "unblock", start, end, freed)
        logger.info(f"Manually unblocked {freed} days for property {property_id}")
        return {"days_freed": freed}

    # ==================
    # Status
    # ==================

    def get_sync_status(self, property_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """Counts over the next 90 days, next available date and last sync time."""
        today = today or date.today()
        end = today + timedelta(days=SYNC_STATUS_WINDOW_DAYS)
        rows = self.get_range(property_id, today, end)

        blocked_days = sum(1 for r in rows if r.status == DayStatus.BLOCKED.value)
        booked_days = sum(1 for r in rows if r.status == DayStatus.BOOKED.value)
        unavailable = {r.date for r in rows if r.status != DayStatus.AVAILABLE.value}

        next_available = None
        for d in date_range(today, end):
            if d not in unavailable:
                next_available = d
                break

        return {
            "property_id": property_id,
            "last_sync": self.audit.last_sync_at(property_id),
            "blocked_days": blocked_days,
            "booked_days": booked_days,
            "available_days": SYNC_STATUS_WINDOW_DAYS - blocked_days - booked_days,
            "next_available": next_available,
        }
