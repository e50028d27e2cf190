"""
Tests for PricingEngine

Tests cover:
- Fee math in integer minor units with half-up rounding
- Price unit normalization (declared and heuristic)
- Weekly and monthly stay discounts
- Binding minimum stay and blocked / missing nights (totals withheld)
- Determinism and input validation, including the stay length cap
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from staysync.errors import InvalidRange
from staysync.services.listing_cache import ListingSnapshot, RateDay, FeeConfig
from staysync.services.pricing_engine import PricingEngine, MAX_STAY_NIGHTS, iter_nights


CHECK_IN = date(2026, 3, 10)


class FakeCache:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    def get(self, external_listing_id, allow_stale=False):
        self.calls += 1
        return self.snapshot


def _snapshot(prices, cleaning_fee="0", price_unit=None, statuses=None, min_nights=None, start=CHECK_IN):
    rate_days = {}
    for i, price in enumerate(prices):
        day = start + timedelta(days=i)
        rate_days[day] = RateDay(
            date=day,
            status=(statuses or {}).get(i, "available"),
            price=Decimal(str(price)),
            min_nights=(min_nights or {}).get(i, 1),
        )
    return ListingSnapshot(
        external_listing_id="L-100",
        rate_days=rate_days,
        fee_config=FeeConfig(cleaning_fee=Decimal(str(cleaning_fee))),
        currency="ILS",
        fetched_at=0.0,
        price_unit=price_unit,
    )


def _engine(snapshot, **kwargs):
    kwargs.setdefault("service_fee_rate", 0.10)
    kwargs.setdefault("tax_rate", 0.17)
    kwargs.setdefault("service_fee_base", "accommodation")
    kwargs.setdefault("price_unit", "")
    kwargs.setdefault("weekly_discount_rate", 0.10)
    kwargs.setdefault("monthly_discount_rate", 0.20)
    return PricingEngine(FakeCache(snapshot), **kwargs)


class TestFeeMath:

    def test_service_fee_on_accommodation_and_cleaning(self):
        """10,000 + 500 cleaning at 10% service and 17% tax totals 13,514"""
        snapshot = _snapshot([5000, 5000], cleaning_fee=500, price_unit="minor")
        engine = _engine(snapshot, service_fee_base="accommodation_and_cleaning")

        quote = engine.compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=2))

        assert quote.accommodation_total == 10000
        assert quote.cleaning_fee == 500
        assert quote.service_fee == 1050
        assert quote.taxes == 1964
        assert quote.grand_total == 13514
        assert quote.average_nightly_rate == 5000

    def test_service_fee_on_accommodation_only(self):
        snapshot = _snapshot([5000, 5000], cleaning_fee=500, price_unit="minor")

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=2))

        assert quote.service_fee == 1000
        assert quote.taxes == 1955
        assert quote.grand_total == 13455

    def test_amounts_are_integers(self):
        snapshot = _snapshot(["333.33", "333.33", "333.34"], cleaning_fee="99.99", price_unit="major")

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=3))

        assert quote.accommodation_total == 100000
        assert quote.cleaning_fee == 9999
        for amount in (quote.service_fee, quote.taxes, quote.grand_total, quote.average_nightly_rate):
            assert isinstance(amount, int)
        assert quote.grand_total == (
            quote.accommodation_total + quote.cleaning_fee + quote.service_fee + quote.taxes
        )


class TestPriceUnits:

    def test_heuristic_converts_small_amounts(self):
        """Without a declared unit, 450 is read as major units"""
        snapshot = _snapshot([450])
        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=1))
        assert quote.accommodation_total == 45000

    def test_heuristic_keeps_large_amounts(self):
        snapshot = _snapshot([45000])
        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=1))
        assert quote.accommodation_total == 45000

    def test_declared_unit_wins_over_heuristic(self):
        snapshot = _snapshot([450], price_unit="minor")
        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=1))
        assert quote.accommodation_total == 450

    def test_deployment_unit_applies_when_listing_silent(self):
        snapshot = _snapshot([20000])
        quote = _engine(snapshot, price_unit="major").compute_quote(
            "L-100", CHECK_IN, CHECK_IN + timedelta(days=1)
        )
        assert quote.accommodation_total == 2000000

    def test_half_up_rounding(self):
        engine = _engine(_snapshot([1]))
        assert engine.to_minor_units(Decimal("0.005"), Decimal("1000"), "major") == 1
        assert engine.to_minor_units(Decimal("12.5"), Decimal("1000"), "minor") == 13


class TestStayDiscounts:

    def test_short_stay_has_no_discount(self):
        snapshot = _snapshot([1000] * 6, cleaning_fee=500, price_unit="minor")

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=6))

        assert quote.discounts == []
        assert quote.discount_total == 0
        assert quote.grand_total == 6000 + 500 + 600 + 1207

    def test_weekly_discount(self):
        """7 nights of 1,000: 10% off accommodation before tax, service fee unchanged"""
        snapshot = _snapshot([1000] * 7, cleaning_fee=500, price_unit="minor")

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=7))

        assert [d.type for d in quote.discounts] == ["weekly"]
        assert quote.discounts[0].description == "Weekly stay discount (10%)"
        assert quote.discounts[0].amount == 700
        assert quote.discount_total == 700
        assert quote.accommodation_total == 7000
        assert quote.service_fee == 700
        assert quote.taxes == 1275
        assert quote.grand_total == 8775

    def test_monthly_discount_stacks_with_weekly(self):
        snapshot = _snapshot([1000] * 28, cleaning_fee=500, price_unit="minor")

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=28))

        assert [(d.type, d.amount) for d in quote.discounts] == [("weekly", 2800), ("monthly", 5600)]
        assert quote.discounts[1].description == "Monthly stay discount (20%)"
        assert quote.discount_total == 8400
        assert quote.taxes == 3893
        assert quote.grand_total == 26793
        assert quote.average_nightly_rate == 1000

    def test_zero_rate_disables_tier(self):
        snapshot = _snapshot([1000] * 7, price_unit="minor")

        quote = _engine(snapshot, weekly_discount_rate=0).compute_quote(
            "L-100", CHECK_IN, CHECK_IN + timedelta(days=7)
        )

        assert quote.discounts == []
        assert quote.grand_total == 7000 + 700 + 1309

    def test_discounts_serialized(self):
        snapshot = _snapshot([1000] * 7, price_unit="minor")

        payload = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=7)).to_dict()

        assert payload["discounts"] == [
            {"type": "weekly", "description": "Weekly stay discount (10%)", "amount": 700},
        ]
        assert payload["discount_total"] == 700


class TestAvailabilityRules:

    def test_binding_min_nights_is_maximum(self):
        snapshot = _snapshot([400, 400, 400], min_nights={0: 2, 1: 5, 2: 1})

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=3))

        assert quote.min_nights_required == 5
        assert quote.meets_stay_requirements is False
        assert quote.available is True

    def test_blocked_night_is_reported(self):
        snapshot = _snapshot([400, 400, 400], statuses={1: "booked"})

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=3))

        assert quote.available is False
        assert quote.blocked_dates == [CHECK_IN + timedelta(days=1)]
        assert quote.nights == 3
        assert len(quote.nightly_rates) == 3

    def test_unavailable_quote_has_zero_totals(self):
        """A partial stay is never priced"""
        snapshot = _snapshot([1000] * 8, cleaning_fee=500, price_unit="minor", statuses={3: "blocked"})

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=8))

        assert quote.available is False
        for amount in (
            quote.accommodation_total, quote.cleaning_fee, quote.service_fee, quote.taxes,
            quote.grand_total, quote.average_nightly_rate, quote.discount_total,
        ):
            assert amount == 0
        assert quote.discounts == []
        assert [n.price for n in quote.nightly_rates] == [1000] * 8

    def test_missing_rate_is_unavailable(self):
        """A night with no published rate is never quoted as available"""
        snapshot = _snapshot([400, 400])

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=3))

        assert quote.available is False
        assert quote.blocked_dates == [CHECK_IN + timedelta(days=2)]
        assert len(quote.nightly_rates) == 2
        assert quote.nights == 3

    def test_check_availability(self):
        snapshot = _snapshot([400, 400, 400], min_nights={0: 2})
        engine = _engine(snapshot)

        assert engine.check_availability("L-100", CHECK_IN, CHECK_IN + timedelta(days=1))["available"] is False
        result = engine.check_availability("L-100", CHECK_IN, CHECK_IN + timedelta(days=2))
        assert result == {
            "available": True,
            "blocked_dates": [],
            "min_nights_required": 2,
            "nights": 2,
        }


class TestValidation:

    @pytest.mark.parametrize("days", [0, -1, MAX_STAY_NIGHTS + 1])
    def test_invalid_range(self, days):
        cache = FakeCache(_snapshot([400]))
        engine = PricingEngine(cache, service_fee_rate=0.1, tax_rate=0.17, service_fee_base="accommodation")

        with pytest.raises(InvalidRange):
            engine.compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=days))
        assert cache.calls == 0

    def test_longest_stay_is_accepted(self):
        snapshot = _snapshot([400] * MAX_STAY_NIGHTS)

        quote = _engine(snapshot).compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=MAX_STAY_NIGHTS))

        assert quote.nights == MAX_STAY_NIGHTS
        assert quote.available is True

    def test_availability_check_is_capped(self):
        cache = FakeCache(_snapshot([400]))

        with pytest.raises(InvalidRange):
            _engine(cache.snapshot).check_availability(
                "L-100", CHECK_IN, CHECK_IN + timedelta(days=MAX_STAY_NIGHTS + 1)
            )

    def test_unknown_service_fee_base(self):
        with pytest.raises(ValueError):
            PricingEngine(FakeCache(_snapshot([400])), service_fee_base="everything")

    def test_deterministic(self):
        snapshot = _snapshot([399.99, 420.5, 401], cleaning_fee=150)
        engine = _engine(snapshot)

        first = engine.compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=3), guest_count=2)
        second = engine.compute_quote("L-100", CHECK_IN, CHECK_IN + timedelta(days=3), guest_count=2)

        assert first == second

    def test_iter_nights(self):
        assert list(iter_nights(CHECK_IN, CHECK_IN + timedelta(days=2))) == [
            CHECK_IN, CHECK_IN + timedelta(days=1),
        ]
