"""
Shared fixtures: in-memory SQLite database, model factories and a fake PMS.
"""

import os
import sys
from datetime import date
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Keep the application engine off disk and the PMS unconfigured
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PMS_CLIENT_ID", "")
os.environ.setdefault("PMS_CLIENT_SECRET", "")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from staysync.database import Base
from staysync import models  # noqa: F401
from staysync.errors import DatesUnavailable
from staysync.models.property import Property
from staysync.models.reservation import Reservation


ORG_ID = "org-1"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_property(db):
    def _make(name="Sea View Loft", pms_listing_id="L-100", max_guests=4, organization_id=ORG_ID):
        prop = Property(
            name=name,
            pms_listing_id=pms_listing_id,
            max_guests=max_guests,
            organization_id=organization_id,
        )
        db.add(prop)
        db.commit()
        db.refresh(prop)
        return prop
    return _make


@pytest.fixture
def make_reservation(db):
    def _make(prop, check_in, check_out, **fields):
        reservation = Reservation(
            organization_id=prop.organization_id,
            property_id=prop.id,
            check_in=check_in,
            check_out=check_out,
            adults=fields.pop("adults", 2),
            guest_first_name=fields.pop("guest_first_name", "Dana"),
            guest_last_name=fields.pop("guest_last_name", "Levi"),
            guest_email=fields.pop("guest_email", "dana@example.com"),
            **fields,
        )
        db.add(reservation)
        db.commit()
        db.refresh(reservation)
        return reservation
    return _make


class FakePMSClient:
    """
    In-memory stand-in for PMSClient.

    blocked_ranges: listing id -> [(start, end)] windows answered as "not available"
    pricing_errors: (listing id, start) -> exception raised for that request
    """

    def __init__(self):
        self.listings: Dict[str, Dict] = {}
        self.blocked_ranges: Dict[str, List] = {}
        self.pricing_errors: Dict = {}
        self.pricing_calls: List = []
        self.created: List[Dict] = []
        self.create_error: Optional[Exception] = None
        self.canceled: List[str] = []
        self.cancel_error: Optional[Exception] = None
        self.next_reservation_id = 5000

    def is_enabled(self):
        return True

    def health_check(self):
        return {"connected": True}

    def get_listing(self, listing_id):
        return self.listings[listing_id]

    def get_pricing(self, listing_id, check_in, check_out, guests=1):
        self.pricing_calls.append((listing_id, check_in, check_out))
        error = self.pricing_errors.get((listing_id, check_in))
        if error is not None:
            raise error
        for start, end in self.blocked_ranges.get(listing_id, []):
            if check_in < end and start < check_out:
                raise DatesUnavailable(f"Listing {listing_id} not available")
        return {"total": 100}

    def create_reservation(self, **kwargs):
        self.created.append(kwargs)
        if self.create_error is not None:
            raise self.create_error
        self.next_reservation_id += 1
        return f"PMS-{self.next_reservation_id}"

    def cancel_reservation(self, external_reservation_id):
        if self.cancel_error is not None:
            raise self.cancel_error
        self.canceled.append(external_reservation_id)
        return True


@pytest.fixture
def fake_client():
    return FakePMSClient()


def listing_payload(rates: Dict[date, Dict], cleaning_fee=None, **extra) -> Dict:
    """PMS listing body with a days_rates table"""
    payload = {
        "id": extra.pop("id", "L-100"),
        "name": "Sea View Loft",
        "currency": extra.pop("currency", "ILS"),
        "days_rates": {d.isoformat(): dict(r) for d, r in rates.items()},
        "extra_info": {},
    }
    if cleaning_fee is not None:
        payload["extra_info"]["cleaning_fee"] = cleaning_fee
    payload.update(extra)
    return payload
