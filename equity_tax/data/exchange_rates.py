"""
Historical USD/DKK exchange rates.

Fetches official rates from Danmarks Nationalbank and caches them per
date. Manually entered rates always take precedence over fetched ones.
Every currency conversion in the tax engine goes through
ExchangeRateService so that historical transactions are never converted
at a "current" rate.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import requests

from ..config import DATA_DIR, EXCHANGE_RATES_FILE, FX_CONFIG
from ..exceptions import RateUnavailable, ValidationError
from .records import parse_date, to_decimal

logger = logging.getLogger(__name__)

SOURCE_FETCHED = "fetched"
SOURCE_MANUAL = "manual"


@dataclass(frozen=True)
class ExchangeRateEntry:
    """A cached rate for one date."""

    date: date
    usd_to_dkk: Decimal
    source: str
    fetched_at: datetime

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "date": self.date.isoformat(),
            "usd_to_dkk": str(self.usd_to_dkk),
            "source": self.source,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExchangeRateEntry":
        """Create from dictionary."""
        return cls(
            date=parse_date(data["date"]),
            usd_to_dkk=to_decimal(data["usd_to_dkk"]),
            source=data.get("source", SOURCE_FETCHED),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
        )


class NationalbankenProvider:
    """
    Fetches daily rates from the Danmarks Nationalbank currency API.

    The API quotes DKK per 100 units of foreign currency; fetch() returns
    DKK per 1 USD.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = base_url or FX_CONFIG["base_url"]
        self.timeout = timeout or FX_CONFIG["timeout"]
        self.currency = FX_CONFIG["currency"]

    def fetch(self, on_date: date) -> Optional[Decimal]:
        """
        Fetch the USD rate for a date.

        Args:
            on_date: Rate date

        Returns:
            DKK per USD, or None if the API has no rate for that date
        """
        params = {"date": on_date.isoformat()}
        try:
            response = requests.get(
                self.base_url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            if response.status_code != 200:
                logger.error(
                    f"Nationalbanken API error {response.status_code} for {on_date}: "
                    f"{response.text[:200]}"
                )
                return None
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching exchange rate for {on_date}: {e}")
            return None

        if not isinstance(data, list):
            logger.error(f"Unexpected Nationalbanken response for {on_date}: {str(data)[:200]}")
            return None

        usd = next(
            (r for r in data if isinstance(r, dict) and r.get("code") == self.currency), None
        )
        if not usd or not usd.get("rate"):
            logger.warning(f"{self.currency} rate not found in response for {on_date}")
            return None

        try:
            rate = to_decimal(usd["rate"])
        except ValidationError:
            logger.error(f"Invalid {self.currency} rate for {on_date}: {usd['rate']!r}")
            return None
        if not rate.is_finite() or rate <= 0:
            logger.error(f"Unusable {self.currency} rate for {on_date}: {rate}")
            return None
        return rate / FX_CONFIG["quote_unit"]


class ExchangeRateService:
    """
    Resolves the USD/DKK rate for arbitrary dates.

    Lookup falls back to the nearest preceding trading day (never a later
    one). Fetched rates are cached and persisted; manual rates override
    fetched ones permanently.

    Example:
        service = ExchangeRateService(data_dir=Path("data"))
        rate = service.rate_for(date(2024, 3, 15))
        amount_dkk, rate = service.convert(Decimal("100"), "USD", date(2024, 3, 15))
    """

    def __init__(
        self,
        provider=None,
        data_dir: Optional[Path] = None,
        max_lookback_days: Optional[int] = None,
        persist: bool = True,
    ):
        """
        Initialize the exchange rate service.

        Args:
            provider: Upstream with a fetch(date) -> Optional[Decimal] method
            data_dir: Directory for the persisted rate cache
            max_lookback_days: Days to walk back on non-trading days
            persist: Write the cache to disk after every change
        """
        self.provider = provider or NationalbankenProvider()
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.max_lookback_days = (
            FX_CONFIG["max_lookback_days"] if max_lookback_days is None else max_lookback_days
        )
        self.persist = persist

        self._rates: Dict[date, ExchangeRateEntry] = {}
        self._unavailable: Set[date] = set()
        self._lock = threading.Lock()

        if self.persist and self.filepath.exists():
            self.load()

    @property
    def filepath(self) -> Path:
        return self.data_dir / EXCHANGE_RATES_FILE

    def get_entry(self, on_date: date) -> Optional[ExchangeRateEntry]:
        """Get the cached entry for exactly this date."""
        return self._rates.get(on_date)

    def rate_for(self, on_date: date) -> Decimal:
        """
        Get DKK per USD for a date.

        Args:
            on_date: Transaction date

        Returns:
            Rate of the date itself or of the nearest preceding trading day

        Raises:
            RateUnavailable: If no rate is found within the lookback window
        """
        for offset in range(self.max_lookback_days + 1):
            day = on_date - timedelta(days=offset)
            entry = self._rates.get(day)
            if entry is not None:
                if offset:
                    logger.debug(f"Using rate of {day} for {on_date}")
                return entry.usd_to_dkk

            if day.weekday() >= 5 or day in self._unavailable:
                continue

            rate = self._fetch_quietly(day)
            if rate is None:
                self._unavailable.add(day)
                continue

            self._store(day, rate, SOURCE_FETCHED)
            self._save_if_persistent()
            return rate

        raise RateUnavailable(
            on_date, f"no fetched or manual rate within {self.max_lookback_days} days before"
        )

    def convert(self, amount: Decimal, currency: str, on_date: date) -> Tuple[Decimal, Decimal]:
        """
        Convert an amount to DKK at the rate of its own date.

        Args:
            amount: Amount in the given currency
            currency: 'USD' or 'DKK'
            on_date: Date of the transaction the amount belongs to

        Returns:
            Tuple of (amount in DKK, rate used)
        """
        currency = currency.upper()
        if currency == "DKK":
            return amount, Decimal("1")
        if currency != "USD":
            raise RateUnavailable(on_date, f"unsupported currency {currency}")
        rate = self.rate_for(on_date)
        return amount * rate, rate

    def set_manual_rate(self, on_date: date, rate) -> ExchangeRateEntry:
        """
        Set a manual rate for a date, overriding any fetched rate.

        Args:
            on_date: Rate date
            rate: DKK per USD

        Returns:
            The stored entry
        """
        rate = to_decimal(rate)
        if rate <= 0:
            raise ValidationError(f"Invalid exchange rate for {on_date}: {rate}")

        entry = self._store(on_date, rate, SOURCE_MANUAL)
        self._save_if_persistent()
        logger.info(f"Set manual rate for {on_date}: {rate}")
        return entry

    def prefetch_range(self, start: date, end: date, max_workers: Optional[int] = None) -> int:
        """
        Fetch and cache every missing trading day in [start, end].

        Failures for individual dates (holidays, API errors) are logged
        and skipped.

        Args:
            start: First date
            end: Last date (inclusive)
            max_workers: Parallel fetches

        Returns:
            Number of rates newly cached
        """
        if end < start:
            raise ValidationError(f"End date {end} is before start date {start}")

        missing = []
        day = start
        while day <= end:
            # Nationalbanken does not publish rates on weekends
            if day.weekday() < 5 and day not in self._rates:
                missing.append(day)
            day += timedelta(days=1)

        if not missing:
            return 0

        workers = max_workers or FX_CONFIG["prefetch_workers"]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(self._fetch_quietly, missing))

        cached = 0
        for day, rate in zip(missing, results):
            if rate is None:
                logger.warning(f"No exchange rate available for {day}, skipping")
                continue
            entry = self._store(day, rate, SOURCE_FETCHED)
            if entry.source == SOURCE_FETCHED:
                cached += 1

        self._save_if_persistent()
        logger.info(f"Prefetched {cached} exchange rates for {start} to {end}")
        return cached

    def get_cached_rates(self, limit: int = 100) -> List[ExchangeRateEntry]:
        """Get cached entries, newest first."""
        entries = sorted(self._rates.values(), key=lambda e: e.date, reverse=True)
        return entries[:limit]

    def _fetch_quietly(self, day: date) -> Optional[Decimal]:
        try:
            return self.provider.fetch(day)
        except Exception as e:
            logger.warning(f"Exchange rate fetch failed for {day}: {e}")
            return None

    def _store(self, on_date: date, rate: Decimal, source: str) -> ExchangeRateEntry:
        """Write one entry; a fetched rate never replaces a manual one."""
        with self._lock:
            existing = self._rates.get(on_date)
            if existing is not None and existing.source == SOURCE_MANUAL and source != SOURCE_MANUAL:
                logger.debug(f"Keeping manual rate for {on_date}")
                return existing

            entry = ExchangeRateEntry(
                date=on_date,
                usd_to_dkk=rate,
                source=source,
                fetched_at=datetime.now(),
            )
            self._rates[on_date] = entry
            self._unavailable.discard(on_date)
            return entry

    def _save_if_persistent(self) -> None:
        if self.persist:
            self.save()

    def save(self) -> Path:
        """
        Save the rate cache to file.

        Returns:
            Path to saved file
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)

        with self._lock:
            data = {
                "saved_at": datetime.now().isoformat(),
                "rates": [e.to_dict() for e in sorted(self._rates.values(), key=lambda e: e.date)],
            }

        with open(self.filepath, "w") as f:
            json.dump(data, f, indent=2)

        logger.debug(f"Saved exchange rates: {self.filepath}")
        return self.filepath

    def load(self) -> None:
        """Load the rate cache from file."""
        with open(self.filepath) as f:
            data = json.load(f)

        with self._lock:
            self._rates = {}
            for item in data.get("rates", []):
                entry = ExchangeRateEntry.from_dict(item)
                self._rates[entry.date] = entry

        logger.info(f"Loaded exchange rates: {len(self._rates)} dates")
