"""
Listing Read-Through Cache

Holds ListingSnapshots (per-day rate table + fee config) keyed by external
listing id, refreshed from the PMS when older than the TTL.

- Thread-safe; concurrent misses for the same key trigger one fetch
- Clock is injected so expiry is testable without sleeping
- A stale snapshot is only served when the caller passes allow_stale=True
"""

import time
import threading
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Any

from ..config import settings
from ..errors import SourceUnavailable, ListingNotFound, PMSRequestError
from ..models.calendar_day import DayStatus

logger = logging.getLogger(__name__)

PRICE_UNITS = ("major", "minor")


@dataclass
class RateDay:
    """One day of the PMS rate table (read-only)"""
    date: date
    status: str
    price: Decimal
    min_nights: int = 1
    max_nights: Optional[int] = None
    note: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.status == DayStatus.AVAILABLE.value


@dataclass
class FeeConfig:
    cleaning_fee: Decimal = Decimal("0")


@dataclass
class ListingSnapshot:
    external_listing_id: str
    rate_days: Dict[date, RateDay]
    fee_config: FeeConfig
    currency: str
    fetched_at: float
    # "major", "minor" or None when the PMS does not declare it
    price_unit: Optional[str] = None
    name: Optional[str] = None


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _to_int(value: Any, default: Optional[int]) -> Optional[int]:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_cleaning_fee(extra_info: Dict) -> Decimal:
    """Flat cleaning fee from extra_info.cleaning_fee, else a cleaning item in extra_info.fees."""
    if extra_info.get("cleaning_fee"):
        return _to_decimal(extra_info["cleaning_fee"])

    for fee in extra_info.get("fees") or []:
        if not isinstance(fee, dict):
            continue
        title = str(fee.get("title") or "").lower()
        if "clean" in title or fee.get("type") == "cleaning":
            return _to_decimal(fee.get("amount"))
    return Decimal("0")


def _parse_rate_day(day: date, raw: Dict) -> RateDay:
    status = str(raw.get("status") or "").lower()
    # Unknown statuses are treated as not bookable
    if status not in (DayStatus.AVAILABLE.value, DayStatus.BOOKED.value, DayStatus.BLOCKED.value):
        status = DayStatus.BLOCKED.value
    return RateDay(
        date=day,
        status=status,
        price=_to_decimal(raw.get("price")),
        min_nights=_to_int(raw.get("minNights", raw.get("min_nights")), 1),
        max_nights=_to_int(raw.get("maxNights", raw.get("max_nights")), None),
        note=raw.get("note"),
    )


def parse_listing(external_listing_id: str, data: Dict, fetched_at: float) -> ListingSnapshot:
    """
    Build a snapshot from the PMS listing payload.

    Raises ListingNotFound when the payload carries no days_rates table.
    """
    days_rates = data.get("days_rates")
    if days_rates is None:
        raise ListingNotFound(f"Listing {external_listing_id} has no days_rates")

    rate_days: Dict[date, RateDay] = {}
    for key, raw in days_rates.items():
        try:
            day = date.fromisoformat(str(key)[:10])
        except ValueError:
            logger.warning(f"Listing {external_listing_id}: skipping malformed rate date {key!r}")
            continue
        if isinstance(raw, dict):
            rate_days[day] = _parse_rate_day(day, raw)

    extra_info = data.get("extra_info") or {}
    price_unit = str(data.get("price_unit") or extra_info.get("price_unit") or "").lower() or None
    if price_unit not in PRICE_UNITS:
        price_unit = None

    return ListingSnapshot(
        external_listing_id=str(external_listing_id),
        rate_days=rate_days,
        fee_config=FeeConfig(cleaning_fee=_parse_cleaning_fee(extra_info)),
        currency=data.get("currency") or settings.default_currency,
        fetched_at=fetched_at,
        price_unit=price_unit,
        name=data.get("name") or data.get("title"),
    )


@dataclass
class _CacheStats:
    hits: int = 0
    misses: int = 0
    stale_served: int = 0
    fetch_errors: int = 0


class ListingCache:
    """
    Read-through cache in front of PMSClient.get_listing.
    """

    def __init__(
        self,
        client,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.listing_cache_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, ListingSnapshot] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._stats = _CacheStats()

    def _is_fresh(self, snapshot: Optional[ListingSnapshot]) -> bool:
        return snapshot is not None and (self._clock() - snapshot.fetched_at) < self.ttl_seconds

    def _key_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get(self, external_listing_id: str, allow_stale: bool = False) -> ListingSnapshot:
        """
        Return a fresh snapshot, fetching from the PMS on miss/expiry.

        Raises:
            ListingNotFound: PMS has no such listing (or no rate table)
            SourceUnavailable: PMS failed and no acceptable cached value exists
        """
        key = str(external_listing_id)

        with self._lock:
            cached = self._entries.get(key)
            if self._is_fresh(cached):
                self._stats.hits += 1
                return cached

        # Single-flight per key
        with self._key_lock(key):
            with self._lock:
                cached = self._entries.get(key)
                if self._is_fresh(cached):
                    self._stats.hits += 1
                    return cached
                self._stats.misses += 1

            try:
                data = self.client.get_listing(key)
                snapshot = parse_listing(key, data, fetched_at=self._clock())
            except ListingNotFound:
                with self._lock:
                    self._entries.pop(key, None)
                raise
            except (SourceUnavailable, PMSRequestError) as e:
                with self._lock:
                    self._stats.fetch_errors += 1
                    if cached is not None and allow_stale:
                        self._stats.stale_served += 1
                        age = self._clock() - cached.fetched_at
                        logger.warning(f"Listing {key}: PMS fetch failed ({e.code}), serving snapshot aged {age:.0f}s")
                        return cached
                if isinstance(e, SourceUnavailable):
                    raise
                raise SourceUnavailable(f"Listing {key}: {e}", code=e.code, status_code=e.status_code) from e

            with self._lock:
                self._entries[key] = snapshot
            logger.debug(f"Listing {key}: cached {len(snapshot.rate_days)} rate days")
            return snapshot

    def invalidate(self, external_listing_id: str) -> bool:
        """Drop one entry. Returns True if something was cached."""
        with self._lock:
            return self._entries.pop(str(external_listing_id), None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            fresh = sum(1 for s in self._entries.values() if self._is_fresh(s))
            return {
                "size": len(self._entries),
                "fresh_entries": fresh,
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "stale_served": self._stats.stale_served,
                "fetch_errors": self._stats.fetch_errors,
                "ttl_seconds": self.ttl_seconds,
            }


_default_cache: Optional[ListingCache] = None
_default_cache_lock = threading.Lock()


def get_listing_cache() -> ListingCache:
    """Process-wide cache backed by the shared PMS client."""
    global _default_cache
    from .pms_client import get_pms_client

    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = ListingCache(get_pms_client())
        return _default_cache
