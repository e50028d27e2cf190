from .property import Property
from .reservation import Reservation, ReservationStatus
from .calendar_day import CalendarDay, DayStatus, BlockReason
from .sync_audit import SyncAuditEvent, SyncDirection, AppendOnlyViolation

__all__ = [
    "Property",
    "Reservation", "ReservationStatus",
    "CalendarDay", "DayStatus", "BlockReason",
    "SyncAuditEvent", "SyncDirection", "AppendOnlyViolation",
]
