"""
Reservation Publisher (outbound sync)

Pushes confirmed direct reservations to the PMS exactly once, and cancels
them there when the guest cancels.

Idempotency: Reservation.external_reservation_id is the durable marker.
Once set, publish() is a no-op that reports already_synced. The marker is
written with a conditional UPDATE so two concurrent publishers cannot both
record a PMS id.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy import and_, update
from sqlalchemy.orm import Session

from ..errors import SyncError, AlreadySynced, NotMapped, ReservationNotFound
from ..models.reservation import Reservation, ReservationStatus
from ..utils.logging_config import get_logger
from .audit_service import AuditService
from .calendar_store import CalendarStore

logger = logging.getLogger(__name__)
sync_logger = get_logger(__name__)


@dataclass
class PublishResult:
    reservation_id: str
    success: bool
    external_reservation_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    already_synced: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


class ReservationPublisher:

    def __init__(
        self,
        db: Session,
        client,
        store: Optional[CalendarStore] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.client = client
        self.audit = audit or AuditService(db)
        self.store = store or CalendarStore(db, audit=self.audit)

    def _load_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if not reservation:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        return reservation

    def _load(self, reservation_id: str):
        reservation = self._load_reservation(reservation_id)
        prop = reservation.rental_property
        if not prop or not prop.is_mapped:
            raise NotMapped(f"Property {reservation.property_id} is not mapped to a PMS listing")
        return reservation, prop

    @staticmethod
    def _ensure_unpublished(reservation: Reservation) -> None:
        if reservation.external_reservation_id:
            raise AlreadySynced(reservation.id, reservation.external_reservation_id)

    @staticmethod
    def _already_synced(exc: AlreadySynced) -> PublishResult:
        return PublishResult(
            reservation_id=exc.reservation_id,
            success=True,
            external_reservation_id=exc.external_reservation_id,
            already_synced=True,
        )

    def publish(self, reservation_id: str) -> PublishResult:
        """
        Create the reservation on the PMS unless it already exists there.

        Raises:
            ReservationNotFound: unknown reservation
            NotMapped: property has no PMS listing (checked before any call)
        """
        reservation, prop = self._load(reservation_id)

        try:
            self._ensure_unpublished(reservation)
        except AlreadySynced as e:
            logger.info(str(e))
            return self._already_synced(e)

        try:
            external_id = self.client.create_reservation(
                listing_id=prop.pms_listing_id,
                check_in=reservation.check_in,
                check_out=reservation.check_out,
                adults=reservation.adults or 1,
                children=reservation.children or 0,
                first_name=reservation.guest_first_name or "",
                last_name=reservation.guest_last_name or "",
                email=reservation.guest_email or "",
                phone=reservation.guest_phone,
                notes=reservation.guest_notes,
            )
        except SyncError as e:
            logger.error(f"Failed to publish reservation {reservation_id}: {e.code}: {e}")
            self.audit.record_outbound(
                prop.organization_id, prop.id, reservation_id,
                success=False, error_code=e.code, error_message=str(e),
            )
            return PublishResult(
                reservation_id=reservation_id,
                success=False,
                error=str(e),
                error_code=e.code,
            )

        # Persist the marker only if nobody else did in the meantime
        result = self.db.execute(
            update(Reservation)
            .where(and_(
                Reservation.id == reservation_id,
                Reservation.external_reservation_id.is_(None),
            ))
            .values(external_reservation_id=external_id, external_synced_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount == 0:
            self.db.refresh(reservation)
            logger.warning(
                f"Reservation {reservation_id} was published concurrently as "
                f"{reservation.external_reservation_id}; PMS reservation {external_id} is a duplicate"
            )
            self.audit.record_outbound(
                prop.organization_id, prop.id, reservation_id,
                success=False, external_reservation_id=external_id,
                error_code="duplicate_publish",
                error_message=f"Marker already set to {reservation.external_reservation_id}",
            )
            return self._already_synced(AlreadySynced(reservation_id, reservation.external_reservation_id))

        self.audit.record_outbound(
            prop.organization_id, prop.id, reservation_id,
            success=True, external_reservation_id=external_id,
        )
        sync_logger.reservation_published(reservation_id, prop.id, external_id)
        return PublishResult(
            reservation_id=reservation_id,
            success=True,
            external_reservation_id=external_id,
        )

    def confirm(self, reservation_id: str) -> PublishResult:
        """
        Called once payment has been captured: book the nights locally,
        mark the reservation confirmed, then publish.

        Raises:
            ConflictLocalReservationWins: nights already held by another reservation
            NotMapped: booked locally, but the property has no PMS listing
        """
        reservation = self._load_reservation(reservation_id)

        self.store.book_reservation(
            reservation.property_id,
            reservation.id,
            reservation.check_in,
            reservation.check_out,
            organization_id=reservation.organization_id,
        )

        if reservation.status != ReservationStatus.CONFIRMED.value:
            reservation.status = ReservationStatus.CONFIRMED.value
            reservation.confirmed_at = datetime.utcnow()
            self.db.commit()

        return self.publish(reservation_id)

    def cancel(self, reservation_id: str) -> PublishResult:
        """
        Guest canceled: free the nights, then cancel on the PMS if the
        reservation was published there.

        The local release stands even when the PMS call fails; the failure
        is audited and reported for a retry.
        """
        reservation = self._load_reservation(reservation_id)

        released = self.store.release_reservation(reservation.id)
        if reservation.status != ReservationStatus.CANCELED.value:
            reservation.status = ReservationStatus.CANCELED.value
            self.db.commit()
        logger.info(f"Reservation {reservation_id} canceled locally, {released} nights released")

        external_id = reservation.external_reservation_id
        if not external_id:
            return PublishResult(reservation_id=reservation_id, success=True)

        prop = reservation.rental_property
        try:
            self.client.cancel_reservation(external_id)
        except SyncError as e:
            logger.error(f"Failed to cancel reservation {reservation_id} on PMS: {e.code}: {e}")
            self.audit.record_outbound(
                prop.organization_id, prop.id, reservation_id,
                success=False, external_reservation_id=external_id,
                error_code=e.code, error_message=str(e),
            )
            return PublishResult(
                reservation_id=reservation_id,
                success=False,
                external_reservation_id=external_id,
                error=str(e),
                error_code=e.code,
            )

        self.audit.record_outbound(
            prop.organization_id, prop.id, reservation_id,
            success=True, external_reservation_id=external_id,
        )
        return PublishResult(reservation_id=reservation_id, success=True, external_reservation_id=external_id)
