"""Shared fixtures for the equity tax tests."""

import os
import sys
import threading
from datetime import date
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from equity_tax.data.exchange_rates import ExchangeRateService


class FakeProvider:
    """Stands in for Nationalbanken; answers from a dict, records calls."""

    def __init__(self, rates=None, default=None, fail_on=()):
        self.rates = {d: Decimal(str(r)) for d, r in (rates or {}).items()}
        self.default = None if default is None else Decimal(str(default))
        self.fail_on = set(fail_on)
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, on_date: date):
        with self._lock:
            self.calls.append(on_date)
        if on_date in self.fail_on:
            raise ConnectionError(f"upstream down for {on_date}")
        return self.rates.get(on_date, self.default)


@pytest.fixture
def fake_provider():
    """Provider quoting 7 DKK per USD on every date."""
    return FakeProvider(default="7")


@pytest.fixture
def rate_service(tmp_path, fake_provider):
    """In-memory rate service backed by the fake provider."""
    return ExchangeRateService(provider=fake_provider, data_dir=tmp_path, persist=False)
