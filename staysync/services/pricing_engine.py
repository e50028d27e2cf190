"""
Pricing Engine Service

Computes guest-facing quotes from the PMS per-day rate table:
- Nightly rates for every night in [check_in, check_out)
- Flat cleaning fee from the listing fee config
- Service fee on accommodation (optionally accommodation + cleaning)
- Weekly / monthly length-of-stay discounts on accommodation
- Taxes on discounted accommodation + cleaning + service fee

All amounts are integer minor currency units (e.g. agorot, cents).
Rounding is half-up on Decimal. Same snapshot + same inputs = same quote.
"""

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field, asdict

from ..config import settings
from ..errors import InvalidRange
from .listing_cache import ListingCache, ListingSnapshot

import logging

logger = logging.getLogger(__name__)

SERVICE_FEE_BASES = ("accommodation", "accommodation_and_cleaning")

MAX_STAY_NIGHTS = 366


@dataclass
class NightlyRate:
    """Price of a single night, in minor units"""
    date: date
    price: int
    min_nights: int
    status: str


@dataclass
class Discount:
    type: str
    description: str
    amount: int


@dataclass
class PricingQuote:
    """
    Full price breakdown for a stay (derived, never persisted).

    When any night is unavailable the money totals are zero; nightly_rates
    still lists every night that has a published rate.
    """
    external_listing_id: str
    check_in: date
    check_out: date
    guest_count: int
    nights: int
    nightly_rates: List[NightlyRate]
    accommodation_total: int
    cleaning_fee: int
    service_fee: int
    taxes: int
    grand_total: int
    average_nightly_rate: int
    currency: str
    available: bool
    blocked_dates: List[date] = field(default_factory=list)
    min_nights_required: int = 1
    max_nights_allowed: Optional[int] = None
    meets_stay_requirements: bool = True
    discounts: List[Discount] = field(default_factory=list)
    discount_total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def iter_nights(check_in: date, check_out: date):
    """Dates of every night in [check_in, check_out)"""
    current = check_in
    while current < check_out:
        yield current
        current += timedelta(days=1)


def validate_stay(check_in: date, check_out: date) -> None:
    if check_out <= check_in:
        raise InvalidRange(f"check_out ({check_out}) must be after check_in ({check_in})")
    if (check_out - check_in).days > MAX_STAY_NIGHTS:
        raise InvalidRange(f"Stays are limited to {MAX_STAY_NIGHTS} nights")


class PricingEngine:
    """
    Quote computation over a ListingCache.

    Pricing Formula:
    1. accommodation = sum of nightly prices (normalized to minor units)
    2. service_fee = round(base * service_fee_rate)
       base = accommodation, or accommodation + cleaning
    3. discounts = round(accommodation * rate) for each length-of-stay
       tier the stay reaches (weekly and monthly stack)
    4. taxes = round((accommodation - discounts + cleaning + service_fee) * tax_rate)
    5. grand_total = accommodation - discounts + cleaning + service_fee + taxes
    """

    def __init__(
        self,
        cache: ListingCache,
        service_fee_rate: Optional[float] = None,
        tax_rate: Optional[float] = None,
        service_fee_base: Optional[str] = None,
        price_unit: Optional[str] = None,
        weekly_discount_rate: Optional[float] = None,
        monthly_discount_rate: Optional[float] = None,
    ):
        self.cache = cache
        self.service_fee_rate = Decimal(str(
            service_fee_rate if service_fee_rate is not None else settings.service_fee_rate
        ))
        self.tax_rate = Decimal(str(tax_rate if tax_rate is not None else settings.tax_rate))
        self.service_fee_base = service_fee_base or settings.service_fee_base
        if self.service_fee_base not in SERVICE_FEE_BASES:
            raise ValueError(f"Unknown service fee base: {self.service_fee_base}")
        # Deployment-wide declared unit; a unit declared on the listing wins
        self.price_unit = price_unit if price_unit is not None else settings.declared_price_unit

        # (type, min nights, rate, description); a zero rate disables the tier
        self.stay_discounts = [
            (
                "weekly",
                settings.weekly_discount_min_nights,
                Decimal(str(weekly_discount_rate if weekly_discount_rate is not None
                            else settings.weekly_discount_rate)),
                "Weekly stay discount",
            ),
            (
                "monthly",
                settings.monthly_discount_min_nights,
                Decimal(str(monthly_discount_rate if monthly_discount_rate is not None
                            else settings.monthly_discount_rate)),
                "Monthly stay discount",
            ),
        ]

        self.minor_units_per_major = settings.minor_units_per_major
        self.price_threshold = Decimal(settings.price_minor_unit_threshold)
        self.fee_threshold = Decimal(settings.fee_minor_unit_threshold)

    def resolve_price_unit(self, snapshot: ListingSnapshot) -> Optional[str]:
        return snapshot.price_unit or self.price_unit

    def to_minor_units(self, amount: Decimal, threshold: Decimal, declared_unit: Optional[str] = None) -> int:
        """
        Normalize a PMS amount to integer minor units.

        A declared unit is authoritative. Without one, amounts above the
        threshold are assumed to already be in minor units.
        """
        amount = Decimal(amount)
        if declared_unit == "minor":
            return _round_half_up(amount)
        if declared_unit == "major":
            return _round_half_up(amount * self.minor_units_per_major)
        if amount > threshold:
            return _round_half_up(amount)
        return _round_half_up(amount * self.minor_units_per_major)


    def compute_discounts(self, nights: int, accommodation_total: int) -> List[Discount]:
        discounts = []
        for discount_type, min_nights, rate, description in self.stay_discounts:
            if rate <= 0 or nights < min_nights:
                continue
            discounts.append(Discount(
                type=discount_type,
                description=f"{description} ({_round_half_up(rate * 100)}%)",
                amount=_round_half_up(Decimal(accommodation_total) * rate),
            ))
        return discounts

    def compute_quote(
        self,
        external_listing_id: str,
        check_in: date,
        check_out: date,
        guest_count: int = 1,
    ) -> PricingQuote:
        """
        Compute a full breakdown for a stay.

        Raises:
            InvalidRange: check_out <= check_in, or longer than MAX_STAY_NIGHTS
            ListingNotFound: no snapshot for the listing
            SourceUnavailable: PMS unreachable with no fresh snapshot
        """
        validate_stay(check_in, check_out)

        snapshot = self.cache.get(external_listing_id)
        unit = self.resolve_price_unit(snapshot)

        nightly_rates: List[NightlyRate] = []
        blocked_dates: List[date] = []
        accommodation_total = 0
        min_nights_required = 1
        max_nights_allowed: Optional[int] = None
        nights = 0

        for night in iter_nights(check_in, check_out):
            nights += 1
            rate_day = snapshot.rate_days.get(night)

            if rate_day is None:
                # No rate published for this date: not bookable
                blocked_dates.append(night)
                continue

            if not rate_day.is_available:
                blocked_dates.append(night)

            price = self.to_minor_units(rate_day.price, self.price_threshold, unit)
            nightly_rates.append(NightlyRate(
                date=night,
                price=price,
                min_nights=rate_day.min_nights,
                status=rate_day.status,
            ))
            accommodation_total += price
            min_nights_required = max(min_nights_required, rate_day.min_nights)
            if rate_day.max_nights:
                max_nights_allowed = (
                    rate_day.max_nights if max_nights_allowed is None
                    else min(max_nights_allowed, rate_day.max_nights)
                )

        meets_stay_requirements = nights >= min_nights_required and (
            max_nights_allowed is None or nights <= max_nights_allowed
        )

        quote = PricingQuote(
            external_listing_id=str(external_listing_id),
            check_in=check_in,
            check_out=check_out,
            guest_count=guest_count,
            nights=nights,
            nightly_rates=nightly_rates,
            accommodation_total=0,
            cleaning_fee=0,
            service_fee=0,
            taxes=0,
            grand_total=0,
            average_nightly_rate=0,
            currency=snapshot.currency,
            available=not blocked_dates,
            blocked_dates=blocked_dates,
            min_nights_required=min_nights_required,
            max_nights_allowed=max_nights_allowed,
            meets_stay_requirements=meets_stay_requirements,
        )
        if blocked_dates:
            logger.debug(f"Listing {external_listing_id}: {len(blocked_dates)} unavailable nights, totals withheld")
            return quote

        cleaning_fee = self.to_minor_units(snapshot.fee_config.cleaning_fee, self.fee_threshold, unit)

        fee_base = accommodation_total
        if self.service_fee_base == "accommodation_and_cleaning":
            fee_base += cleaning_fee
        service_fee = _round_half_up(Decimal(fee_base) * self.service_fee_rate)

        discounts = self.compute_discounts(nights, accommodation_total)
        discount_total = sum(d.amount for d in discounts)

        subtotal = accommodation_total - discount_total + cleaning_fee + service_fee
        taxes = _round_half_up(Decimal(subtotal) * self.tax_rate)

        quote.accommodation_total = accommodation_total
        quote.cleaning_fee = cleaning_fee
        quote.service_fee = service_fee
        quote.discounts = discounts
        quote.discount_total = discount_total
        quote.taxes = taxes
        quote.grand_total = subtotal + taxes
        quote.average_nightly_rate = _round_half_up(Decimal(accommodation_total) / nights)
        return quote

    def check_availability(self, external_listing_id: str, check_in: date, check_out: date) -> Dict[str, Any]:
        """
        Bookability of a stay: every night available and the binding
        minimum stay satisfied.
        """
        validate_stay(check_in, check_out)

        snapshot = self.cache.get(external_listing_id)

        blocked_dates: List[date] = []
        min_nights_required = 1
        nights = 0
        for night in iter_nights(check_in, check_out):
            nights += 1
            rate_day = snapshot.rate_days.get(night)
            if rate_day is None or not rate_day.is_available:
                blocked_dates.append(night)
            if rate_day is not None:
                min_nights_required = max(min_nights_required, rate_day.min_nights)

        return {
            "available": not blocked_dates and nights >= min_nights_required,
            "blocked_dates": blocked_dates,
            "min_nights_required": min_nights_required,
            "nights": nights,
        }
