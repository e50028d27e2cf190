"""
Tests for structured logging context

Tests cover:
- Request and organization ids in JSON log lines
- organization_context restores the previous value
- Reconciliation passes are tagged with the property's organization
"""

import json
import logging
from datetime import date

from staysync.services.availability_reconciler import AvailabilityReconciler
from staysync.utils.logging_config import (
    JSONFormatter,
    organization_id_var,
    organization_context,
    set_request_context,
    clear_request_context,
)


def _format(message="sync started"):
    record = logging.LogRecord("staysync.tests", logging.INFO, __file__, 1, message, None, None)
    return json.loads(JSONFormatter().format(record))


class TestRequestContext:

    def test_ids_in_json_line(self):
        set_request_context("req-1", "org-9")
        try:
            line = _format()
        finally:
            clear_request_context()

        assert line["request_id"] == "req-1"
        assert line["organization_id"] == "org-9"
        assert line["message"] == "sync started"

    def test_cleared_context_is_omitted(self):
        set_request_context("req-1", "org-9")
        clear_request_context()

        line = _format()

        assert "request_id" not in line
        assert "organization_id" not in line

    def test_organization_context_restores_previous(self):
        with organization_context("org-a"):
            with organization_context("org-b"):
                assert _format()["organization_id"] == "org-b"
            assert organization_id_var.get() == "org-a"
        assert organization_id_var.get() == ""


class TestReconcileContext:

    def test_pass_runs_under_property_organization(self, db, make_property, fake_client, monkeypatch):
        prop = make_property(organization_id="org-7")
        seen = []
        get_pricing = fake_client.get_pricing

        def recording_get_pricing(*args, **kwargs):
            seen.append(organization_id_var.get())
            return get_pricing(*args, **kwargs)

        monkeypatch.setattr(fake_client, "get_pricing", recording_get_pricing)

        AvailabilityReconciler(db, fake_client, days_ahead=7, batch_days=7, delay_seconds=0).reconcile(
            prop.id, today=date(2026, 3, 9)
        )

        assert seen == ["org-7"]
        assert organization_id_var.get() == ""
