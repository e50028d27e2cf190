"""
Tests for ReservationPublisher (outbound sync)

Tests cover:
- Publish creates the PMS reservation exactly once
- Failures are audited and leave the marker unset
- Unmapped properties are rejected before any PMS call
- Confirmation books locally, then publishes, and refuses unavailable nights
- Cancellation frees the nights and cancels the PMS copy
"""

import pytest
from datetime import date

from staysync.errors import (
    NotMapped,
    ReservationNotFound,
    SourceUnavailable,
    ConflictLocalReservationWins,
)
from staysync.models.calendar_day import CalendarDay
from staysync.models.reservation import Reservation
from staysync.models.sync_audit import SyncAuditEvent
from staysync.services.calendar_store import CalendarStore
from staysync.services.reservation_publisher import ReservationPublisher


CHECK_IN = date(2026, 4, 1)
CHECK_OUT = date(2026, 4, 4)


def _outbound_events(db):
    return db.query(SyncAuditEvent).filter(SyncAuditEvent.direction == "outbound").all()


class TestPublish:

    def test_publish_sets_marker(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT, guest_phone="+972500000000")

        result = ReservationPublisher(db, fake_client).publish(reservation.id)

        assert result.success is True
        assert result.already_synced is False
        assert result.external_reservation_id == "PMS-5001"

        db.expire_all()
        stored = db.query(Reservation).filter(Reservation.id == reservation.id).one()
        assert stored.external_reservation_id == "PMS-5001"
        assert stored.external_synced_at is not None

        sent = fake_client.created[0]
        assert sent["listing_id"] == "L-100"
        assert sent["check_in"] == CHECK_IN
        assert sent["adults"] == 2
        assert sent["phone"] == "+972500000000"

        events = _outbound_events(db)
        assert len(events) == 1
        assert events[0].success is True
        assert events[0].external_reservation_id == "PMS-5001"

    def test_publish_twice_creates_once(self, db, make_property, make_reservation, fake_client):
        """Second publish is a no-op that reports the existing PMS id"""
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)
        publisher = ReservationPublisher(db, fake_client)

        first = publisher.publish(reservation.id)
        second = publisher.publish(reservation.id)

        assert len(fake_client.created) == 1
        assert second.success is True
        assert second.already_synced is True
        assert second.external_reservation_id == first.external_reservation_id

    def test_failure_is_audited(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)
        fake_client.create_error = SourceUnavailable("PMS timed out", code="timeout")

        result = ReservationPublisher(db, fake_client).publish(reservation.id)

        assert result.success is False
        assert result.error_code == "timeout"

        db.expire_all()
        assert db.query(Reservation).filter(Reservation.id == reservation.id).one().external_reservation_id is None

        events = _outbound_events(db)
        assert len(events) == 1
        assert events[0].success is False
        assert events[0].error_code == "timeout"
        assert events[0].errors == ["PMS timed out"]

    def test_retry_after_failure_publishes(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)
        publisher = ReservationPublisher(db, fake_client)

        fake_client.create_error = SourceUnavailable("down")
        assert publisher.publish(reservation.id).success is False

        fake_client.create_error = None
        result = publisher.publish(reservation.id)

        assert result.success is True
        assert len(fake_client.created) == 2

    def test_unmapped_property(self, db, make_property, make_reservation, fake_client):
        prop = make_property(pms_listing_id=None)
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        with pytest.raises(NotMapped):
            ReservationPublisher(db, fake_client).publish(reservation.id)
        assert fake_client.created == []

    def test_unknown_reservation(self, db, fake_client):
        with pytest.raises(ReservationNotFound):
            ReservationPublisher(db, fake_client).publish("missing")

    def test_reservation_links_property(self, db, make_property, make_reservation):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        assert reservation.rental_property.id == prop.id
        assert reservation.guest_count == 2


class TestConfirm:

    def test_confirm_books_then_publishes(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        result = ReservationPublisher(db, fake_client).confirm(reservation.id)

        assert result.success is True
        db.expire_all()
        days = db.query(CalendarDay).filter(CalendarDay.reservation_id == reservation.id).all()
        assert len(days) == 3
        assert all(d.status == "booked" for d in days)

        stored = db.query(Reservation).filter(Reservation.id == reservation.id).one()
        assert stored.status == "confirmed"
        assert stored.confirmed_at is not None

    def test_confirm_overlap_does_not_publish(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        other = make_reservation(prop, CHECK_IN, CHECK_OUT)
        CalendarStore(db).book_reservation(prop.id, other.id, CHECK_IN, CHECK_OUT)
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        with pytest.raises(ConflictLocalReservationWins):
            ReservationPublisher(db, fake_client).confirm(reservation.id)
        assert fake_client.created == []

    def test_confirm_over_ota_booking_does_not_publish(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        CalendarStore(db).mark_external_booking(prop.id, "OTA-1", CHECK_IN, CHECK_OUT)
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        with pytest.raises(ConflictLocalReservationWins):
            ReservationPublisher(db, fake_client).confirm(reservation.id)

        assert fake_client.created == []
        db.expire_all()
        assert db.query(CalendarDay).filter(CalendarDay.reservation_id == reservation.id).count() == 0
        assert db.query(Reservation).filter(Reservation.id == reservation.id).one().status == "pending"

    def test_confirm_over_blocked_day_does_not_publish(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        CalendarStore(db).block_dates(prop.id, CHECK_IN, date(2026, 4, 2), reason="owner stay")
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        with pytest.raises(ConflictLocalReservationWins):
            ReservationPublisher(db, fake_client).confirm(reservation.id)
        assert fake_client.created == []

    def test_confirm_unmapped_books_locally(self, db, make_property, make_reservation, fake_client):
        prop = make_property(pms_listing_id=None)
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)

        with pytest.raises(NotMapped):
            ReservationPublisher(db, fake_client).confirm(reservation.id)

        db.expire_all()
        assert db.query(CalendarDay).filter(CalendarDay.reservation_id == reservation.id).count() == 3


class TestCancel:

    def test_cancel_published_reservation(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)
        publisher = ReservationPublisher(db, fake_client)
        publisher.confirm(reservation.id)

        result = publisher.cancel(reservation.id)

        assert result.success is True
        assert result.external_reservation_id == "PMS-5001"
        assert fake_client.canceled == ["PMS-5001"]
        db.expire_all()
        assert db.query(CalendarDay).filter(CalendarDay.reservation_id == reservation.id).count() == 0
        assert db.query(Reservation).filter(Reservation.id == reservation.id).one().status == "canceled"
        assert len(_outbound_events(db)) == 2

    def test_cancel_unpublished_skips_pms(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)
        CalendarStore(db).book_reservation(prop.id, reservation.id, CHECK_IN, CHECK_OUT)

        result = ReservationPublisher(db, fake_client).cancel(reservation.id)

        assert result.success is True
        assert fake_client.canceled == []
        db.expire_all()
        assert db.query(CalendarDay).filter(CalendarDay.status == "booked").count() == 0

    def test_cancel_failure_keeps_local_release(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, CHECK_IN, CHECK_OUT)
        publisher = ReservationPublisher(db, fake_client)
        publisher.confirm(reservation.id)
        fake_client.cancel_error = SourceUnavailable("PMS timed out", code="timeout")

        result = publisher.cancel(reservation.id)

        assert result.success is False
        assert result.error_code == "timeout"
        db.expire_all()
        assert db.query(CalendarDay).filter(CalendarDay.reservation_id == reservation.id).count() == 0
        failed = [e for e in _outbound_events(db) if not e.success]
        assert len(failed) == 1
