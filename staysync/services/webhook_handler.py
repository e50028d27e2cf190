"""
PMS Webhook Handler

Applies reservation events pushed by the PMS (bookings made on OTAs or in
the PMS itself) to the internal calendar. Writes go through CalendarStore,
so days held by a local reservation are never overwritten.

Events for reservations this system published itself are acknowledged
without any write: the nights are already Booked locally.
"""

import hashlib
import hmac
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.property import Property
from ..models.reservation import Reservation
from ..schemas.webhook import PMSWebhookPayload, WebhookResponse
from .calendar_store import CalendarStore
from .listing_cache import ListingCache

logger = logging.getLogger(__name__)

EVENT_NEW = "reservation.new"
EVENT_UPDATED = "reservation.updated"
EVENT_CANCELED = "reservation.canceled"

CANCELED_STATUSES = ("canceled", "cancelled")


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    HMAC-SHA256 of the raw body, hex encoded, compared in constant time.

    With no secret configured every request is accepted.
    """
    if not secret:
        return True
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


class PMSWebhookHandler:

    def __init__(self, db: Session, store: Optional[CalendarStore] = None, cache: Optional[ListingCache] = None):
        self.db = db
        self.store = store or CalendarStore(db)
        self.cache = cache

    def handle(self, payload: PMSWebhookPayload) -> WebhookResponse:
        data = payload.data

        prop = self.db.query(Property).filter(Property.pms_listing_id == data.listing_id).first()
        if not prop:
            logger.warning(f"Webhook {payload.event}: no property mapped for listing {data.listing_id}")
            return WebhookResponse(processed=False, action="ignored", reason="Property not mapped")

        # Upstream calendar changed; next quote must see it
        if self.cache is not None:
            self.cache.invalidate(data.listing_id)

        own = self.db.query(Reservation.id).filter(Reservation.external_reservation_id == data.id).first()
        if own:
            logger.info(f"Webhook {payload.event} for own reservation {own.id} ({data.id}), nothing to do")
            return WebhookResponse(processed=True, action="own_reservation")

        if payload.event == EVENT_NEW:
            return self._book(prop, payload)

        if payload.event == EVENT_UPDATED:
            released = self.store.release_external_booking(prop.id, data.id)
            if (data.status or "").lower() in CANCELED_STATUSES:
                return WebhookResponse(processed=True, action="released", days_released=released)
            response = self._book(prop, payload)
            response.days_released = released
            response.action = "rebooked"
            return response

        if payload.event == EVENT_CANCELED:
            released = self.store.release_external_booking(prop.id, data.id)
            logger.info(f"External reservation {data.id} canceled, released {released} days on {prop.id}")
            return WebhookResponse(processed=True, action="released", days_released=released)

        logger.info(f"Unhandled webhook event type: {payload.event}")
        return WebhookResponse(processed=False, action="ignored", reason=f"Unhandled event {payload.event}")

    def _book(self, prop: Property, payload: PMSWebhookPayload) -> WebhookResponse:
        data = payload.data
        if data.check_out <= data.check_in:
            return WebhookResponse(processed=False, action="ignored", reason="Invalid date range")

        counts = self.store.mark_external_booking(
            prop.id, data.id, data.check_in, data.check_out,
            organization_id=prop.organization_id,
        )
        logger.info(
            f"External reservation {data.id} from {data.source or 'pms'}: "
            f"{counts['booked']} days booked, {counts['deferred']} deferred on {prop.id}"
        )
        return WebhookResponse(
            processed=True,
            action="booked",
            days_booked=counts["booked"],
            days_deferred=counts["deferred"],
        )
