"""
Calendar Day Model

Daily booking status per property.
This is the source of truth for internal availability state.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Index, UniqueConstraint
from ..database import Base
import enum


class DayStatus(str, enum.Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"


class BlockReason:
    """Well-known values of CalendarDay.reason"""
    SYNCED_EXTERNAL = "synced-external"
    MANUAL_BLOCK = "manual-block"
    GUEST_RESERVATION = "guest-reservation"
    FREED_BY_SYNC = "freed-by-sync"
    UNBLOCKED_MANUALLY = "unblocked-manually"
    RESERVATION_RELEASED = "reservation-released"
    EXTERNAL_RESERVATION_PREFIX = "external-reservation:"

    @classmethod
    def external_reservation(cls, external_id: str) -> str:
        return f"{cls.EXTERNAL_RESERVATION_PREFIX}{external_id}"


class CalendarDay(Base):
    """
    Internal status of one property on one date.

    Invariant: a row with reservation_id set is only ever rewritten to
    confirm that same reservation. All writes go through CalendarStore,
    which enforces this with a conditional UPDATE.
    """
    __tablename__ = "calendar_days"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=True)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)

    status = Column(String(20), nullable=False, default=DayStatus.AVAILABLE.value)
    reason = Column(String(255), nullable=True)

    # Set only when Booked by an internal reservation
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        # One entry per property per date
        UniqueConstraint('property_id', 'date', name='uq_calendar_property_date'),
        Index('ix_calendar_property_status', 'property_id', 'status', 'date'),
        Index('ix_calendar_reservation', 'reservation_id'),
    )

    def __repr__(self):
        return f"<CalendarDay {self.property_id} {self.date} {self.status}>"
