"""
Tests for AvailabilityReconciler (inbound sync)

Tests cover:
- Freeing days blocked by a previous sync
- Local reservations and manual blocks are never overwritten
- Partial batch failure keeps the rest of the horizon
- Pacing (delay between batches, shared token bucket)
- Cancellation and audit trail
"""

import threading
import pytest
from datetime import date, timedelta
from unittest.mock import MagicMock

from staysync.errors import NotMapped, SourceUnavailable
from staysync.models.calendar_day import CalendarDay, DayStatus, BlockReason
from staysync.models.sync_audit import SyncAuditEvent
from staysync.schemas.audit import audit_event_from_row
from staysync.services.availability_reconciler import AvailabilityReconciler
from staysync.services.calendar_store import CalendarStore


TODAY = date(2026, 3, 9)


def _reconciler(db, client, **kwargs):
    kwargs.setdefault("days_ahead", 7)
    kwargs.setdefault("batch_days", 7)
    kwargs.setdefault("delay_seconds", 0)
    return AvailabilityReconciler(db, client, **kwargs)


def _status(db, prop, day):
    db.expire_all()
    row = db.query(CalendarDay).filter(
        CalendarDay.property_id == prop.id, CalendarDay.date == day,
    ).first()
    return row.status if row else None


class TestReconcileRules:

    def test_frees_sync_only_block(self, db, make_property, fake_client):
        """A day blocked only by a previous sync opens up when the PMS reports it available"""
        prop = make_property()
        CalendarStore(db).upsert_day(
            prop.id, date(2026, 3, 10), DayStatus.BLOCKED.value, reason=BlockReason.SYNCED_EXTERNAL,
        )

        result = _reconciler(db, fake_client).reconcile(prop.id, today=TODAY)

        assert _status(db, prop, date(2026, 3, 10)) == "available"
        assert result.days_freed == 1
        assert result.days_blocked == 0
        assert result.days_processed == 7
        assert result.success is True

    def test_external_block_preserves_local_booking(self, db, make_property, make_reservation, fake_client):
        prop = make_property()
        reservation = make_reservation(prop, date(2026, 3, 10), date(2026, 3, 11))
        CalendarStore(db).book_reservation(prop.id, reservation.id, reservation.check_in, reservation.check_out)
        fake_client.blocked_ranges["L-100"] = [(TODAY, TODAY + timedelta(days=7))]

        result = _reconciler(db, fake_client).reconcile(prop.id, today=TODAY)

        assert _status(db, prop, date(2026, 3, 10)) == "booked"
        assert _status(db, prop, TODAY) == "blocked"
        assert result.days_blocked == 6
        assert result.days_processed == 7

    def test_manual_block_survives_external_availability(self, db, make_property, fake_client):
        prop = make_property()
        CalendarStore(db).block_dates(prop.id, date(2026, 3, 10), date(2026, 3, 11), reason="owner stay")

        result = _reconciler(db, fake_client).reconcile(prop.id, today=TODAY)

        assert _status(db, prop, date(2026, 3, 10)) == "blocked"
        assert result.days_freed == 0

    def test_repeat_sync_is_stable(self, db, make_property, fake_client):
        prop = make_property()
        fake_client.blocked_ranges["L-100"] = [(TODAY, TODAY + timedelta(days=7))]
        reconciler = _reconciler(db, fake_client)

        first = reconciler.reconcile(prop.id, today=TODAY)
        second = reconciler.reconcile(prop.id, today=TODAY)

        assert first.days_blocked == 7
        # Rewritten with the same value; still one row per day
        assert second.days_blocked == 7
        assert db.query(CalendarDay).filter(CalendarDay.property_id == prop.id).count() == 7


class TestBatching:

    def test_partial_failure_keeps_other_weeks(self, db, make_property, fake_client):
        """Week 3 of 52 times out; the other 51 weeks are still processed"""
        prop = make_property()
        week3_start = TODAY + timedelta(days=14)
        fake_client.pricing_errors[("L-100", week3_start)] = SourceUnavailable("read timed out", code="timeout")

        result = _reconciler(db, fake_client, days_ahead=364).reconcile(prop.id, today=TODAY)

        assert len(fake_client.pricing_calls) == 52
        assert result.days_processed == 51 * 7
        assert len(result.errors) == 1
        assert result.errors[0].startswith(
            f"{week3_start.isoformat()}..{(week3_start + timedelta(days=7)).isoformat()}: timeout"
        )
        assert result.success is False

    def test_last_batch_is_clipped(self, db, make_property, fake_client):
        prop = make_property()

        result = _reconciler(db, fake_client, days_ahead=10).reconcile(prop.id, today=TODAY)

        assert [(c[1], c[2]) for c in fake_client.pricing_calls] == [
            (TODAY, TODAY + timedelta(days=7)),
            (TODAY + timedelta(days=7), TODAY + timedelta(days=10)),
        ]
        assert result.days_processed == 10

    def test_delay_between_batches_only(self, db, make_property, fake_client):
        prop = make_property()
        sleep = MagicMock()

        _reconciler(db, fake_client, days_ahead=21, delay_seconds=0.1, sleep=sleep).reconcile(prop.id, today=TODAY)

        assert sleep.call_count == 2
        sleep.assert_called_with(0.1)

    def test_rate_limiter_acquired_per_request(self, db, make_property, fake_client):
        prop = make_property()
        limiter = MagicMock()

        _reconciler(db, fake_client, days_ahead=21, rate_limiter=limiter).reconcile(prop.id, today=TODAY)

        assert limiter.acquire.call_count == 3


class TestReconcileLifecycle:

    def test_unmapped_property(self, db, make_property, fake_client):
        prop = make_property(pms_listing_id=None)
        with pytest.raises(NotMapped):
            _reconciler(db, fake_client).reconcile(prop.id, today=TODAY)
        assert fake_client.pricing_calls == []

    def test_missing_property(self, db, fake_client):
        with pytest.raises(NotMapped):
            _reconciler(db, fake_client).reconcile("missing", today=TODAY)

    def test_audit_event_recorded(self, db, make_property, fake_client):
        prop = make_property()
        fake_client.blocked_ranges["L-100"] = [(TODAY, TODAY + timedelta(days=7))]

        _reconciler(db, fake_client).reconcile(prop.id, today=TODAY)

        event = db.query(SyncAuditEvent).filter(SyncAuditEvent.direction == "inbound").one()
        assert event.property_id == prop.id
        assert event.success is True
        assert event.days_processed == 7
        assert event.days_blocked == 7
        assert event.errors == []

    def test_cancel_stops_at_batch_boundary(self, db, make_property, fake_client):
        prop = make_property()
        cancel = threading.Event()
        original = fake_client.get_pricing

        def cancel_after_first(*args, **kwargs):
            cancel.set()
            return original(*args, **kwargs)

        fake_client.get_pricing = cancel_after_first

        result = _reconciler(db, fake_client, days_ahead=28, cancel_event=cancel).reconcile(prop.id, today=TODAY)

        assert result.canceled is True
        assert len(fake_client.pricing_calls) == 1
        # The checked batch is still applied
        assert result.days_processed == 7
        # A partial horizon is not a successful sync
        assert result.success is False

        event = db.query(SyncAuditEvent).filter(SyncAuditEvent.direction == "inbound").one()
        assert event.success is False
        assert event.error_code == "canceled"
        assert audit_event_from_row(event).canceled is True
