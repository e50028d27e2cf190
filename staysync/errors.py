"""
Sync Error Taxonomy

Every error raised by the sync core carries:
- code: stable machine-readable identifier (used in audit events and API responses)
- retryable: whether retrying without human intervention can succeed

Batch operations (reconciliation, orchestration) catch these per unit and
aggregate them. Single-entity operations (quote, publish) let them propagate.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync engine errors"""
    code = "sync_error"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class SourceUnavailable(SyncError):
    """PMS unreachable, timed out or rate limited"""
    code = "source_unavailable"
    retryable = True


class ListingNotFound(SyncError):
    """The PMS has no listing (or no usable snapshot) for the requested id"""
    code = "listing_not_found"


class NotMapped(SyncError):
    """Property is missing or has no external listing mapping"""
    code = "not_mapped"


class InvalidRange(SyncError):
    """check_out must be after check_in"""
    code = "invalid_range"


class ReservationNotFound(SyncError):
    code = "reservation_not_found"


class ConflictLocalReservationWins(SyncError):
    """
    A write tried to move a day held by a local reservation, or a stay was
    confirmed over nights that are no longer available.

    Expected outcome for sync writes, not a failure: the caller deferred to a
    real booking.
    """
    code = "conflict_local_reservation_wins"

    def __init__(
        self,
        property_id: str,
        day,
        reservation_id: Optional[str] = None,
        status: Optional[str] = None,
    ):
        if reservation_id is None and status is not None:
            message = f"Day {day} of property {property_id} is {status}"
        else:
            message = f"Day {day} of property {property_id} is held by reservation {reservation_id or 'unknown'}"
        super().__init__(message)
        self.property_id = property_id
        self.day = day
        self.reservation_id = reservation_id
        self.status = status


class AlreadySynced(SyncError):
    """Idempotent no-op: the outbound operation already succeeded"""
    code = "already_synced"

    def __init__(self, reservation_id: str, external_reservation_id: str):
        super().__init__(f"Reservation {reservation_id} already published as {external_reservation_id}")
        self.reservation_id = reservation_id
        self.external_reservation_id = external_reservation_id


class DatesUnavailable(SyncError):
    """PMS answered an availability check with 'not available'"""
    code = "dates_unavailable"


class PMSRequestError(SyncError):
    """PMS rejected the request (4xx other than availability answers)"""
    code = "pms_request_error"
