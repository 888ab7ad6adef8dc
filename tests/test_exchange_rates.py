"""Tests for the exchange rate service."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from equity_tax.data.exchange_rates import (
    SOURCE_FETCHED,
    SOURCE_MANUAL,
    ExchangeRateService,
    NationalbankenProvider,
)
from equity_tax.exceptions import RateUnavailable, ValidationError

from conftest import FakeProvider

FRIDAY = date(2024, 3, 15)
SATURDAY = date(2024, 3, 16)
SUNDAY = date(2024, 3, 17)
MONDAY = date(2024, 3, 18)


class TestNationalbankenProvider:
    """Tests for the upstream API client."""

    def _response(self, status_code=200, payload=None):
        response = MagicMock()
        response.status_code = status_code
        response.text = "Server error"
        response.json.return_value = payload
        return response

    def test_fetch_divides_by_quote_unit(self):
        """Test that the per-100 quote becomes DKK per USD."""
        payload = [
            {"code": "EUR", "rate": "745.53"},
            {"code": "USD", "rate": "689.12"},
        ]
        with patch("equity_tax.data.exchange_rates.requests.get") as get:
            get.return_value = self._response(payload=payload)
            rate = NationalbankenProvider().fetch(FRIDAY)

        assert rate == Decimal("6.8912")
        assert get.call_args.kwargs["params"] == {"date": "2024-03-15"}

    def test_fetch_http_error(self):
        """Test that a non-200 response yields no rate."""
        with patch("equity_tax.data.exchange_rates.requests.get") as get:
            get.return_value = self._response(status_code=500)
            assert NationalbankenProvider().fetch(FRIDAY) is None

    def test_fetch_connection_error(self):
        """Test that network errors yield no rate."""
        with patch("equity_tax.data.exchange_rates.requests.get") as get:
            get.side_effect = requests.ConnectionError("boom")
            assert NationalbankenProvider().fetch(FRIDAY) is None

    def test_fetch_usd_missing(self):
        """Test a response without USD."""
        with patch("equity_tax.data.exchange_rates.requests.get") as get:
            get.return_value = self._response(payload=[{"code": "EUR", "rate": "745.53"}])
            assert NationalbankenProvider().fetch(FRIDAY) is None

    @pytest.mark.parametrize("payload", [
        {"message": "maintenance"},
        ["not a record", None],
        [{"code": "USD", "rate": "n/a"}],
        [{"code": "USD", "rate": "-5"}],
    ])
    def test_fetch_malformed_body(self, payload):
        """Test that an unexpected response body yields no rate."""
        with patch("equity_tax.data.exchange_rates.requests.get") as get:
            get.return_value = self._response(payload=payload)
            assert NationalbankenProvider().fetch(FRIDAY) is None


class TestRateLookup:
    """Tests for rate_for and convert."""

    def test_fetch_and_cache(self, rate_service, fake_provider):
        """Test that a fetched rate is cached."""
        assert rate_service.rate_for(FRIDAY) == Decimal("7")
        assert rate_service.rate_for(FRIDAY) == Decimal("7")

        assert fake_provider.calls == [FRIDAY]
        assert rate_service.get_entry(FRIDAY).source == SOURCE_FETCHED

    def test_sunday_uses_friday(self, tmp_path):
        """Test fallback to the nearest preceding trading day."""
        provider = FakeProvider(rates={FRIDAY: "6.85", MONDAY: "6.99"})
        service = ExchangeRateService(provider=provider, data_dir=tmp_path, persist=False)

        assert service.rate_for(SUNDAY) == Decimal("6.85")
        # Weekends are never fetched and the fallback is not stored under Sunday
        assert provider.calls == [FRIDAY]
        assert service.get_entry(SUNDAY) is None

    def test_holiday_falls_back(self, tmp_path):
        """Test a weekday without a published rate."""
        thursday = date(2024, 3, 14)
        provider = FakeProvider(rates={thursday: "6.80"})
        service = ExchangeRateService(provider=provider, data_dir=tmp_path, persist=False)

        assert service.rate_for(FRIDAY) == Decimal("6.80")
        assert service.rate_for(FRIDAY) == Decimal("6.80")
        # The failed Friday is not fetched again
        assert provider.calls == [FRIDAY, thursday]

    def test_upstream_error_falls_back(self, tmp_path):
        """Test a provider exception counts as a missing rate."""
        thursday = date(2024, 3, 14)
        provider = FakeProvider(rates={thursday: "6.80"}, fail_on=[FRIDAY])
        service = ExchangeRateService(provider=provider, data_dir=tmp_path, persist=False)

        assert service.rate_for(FRIDAY) == Decimal("6.80")
        assert service.get_entry(FRIDAY) is None

    def test_upstream_error_without_lookback(self, tmp_path):
        """Test a provider exception surfaces as RateUnavailable."""
        provider = FakeProvider(default="7", fail_on=[FRIDAY])
        service = ExchangeRateService(
            provider=provider, data_dir=tmp_path, max_lookback_days=0, persist=False
        )

        with pytest.raises(RateUnavailable):
            service.rate_for(FRIDAY)

    def test_malformed_response_falls_back(self, tmp_path):
        """Test a garbage API body during lookup falls back to the day before."""
        thursday = date(2024, 3, 14)
        bodies = {
            FRIDAY.isoformat(): {"message": "maintenance"},
            thursday.isoformat(): [{"code": "USD", "rate": "680.00"}],
        }

        def fake_get(url, params=None, **kwargs):
            response = MagicMock()
            response.status_code = 200
            response.json.return_value = bodies[params["date"]]
            return response

        service = ExchangeRateService(
            provider=NationalbankenProvider(), data_dir=tmp_path, persist=False
        )
        with patch("equity_tax.data.exchange_rates.requests.get", side_effect=fake_get):
            assert service.rate_for(FRIDAY) == Decimal("6.80")

    def test_never_looks_forward(self, tmp_path):
        """Test that a later rate is never used."""
        provider = FakeProvider(rates={MONDAY: "6.99"})
        service = ExchangeRateService(provider=provider, data_dir=tmp_path, persist=False)

        with pytest.raises(RateUnavailable) as exc_info:
            service.rate_for(SUNDAY)
        assert exc_info.value.date == SUNDAY
        assert MONDAY not in provider.calls

    def test_lookback_disabled(self, tmp_path, fake_provider):
        """Test that max_lookback_days=0 disables fallback."""
        service = ExchangeRateService(
            provider=fake_provider, data_dir=tmp_path, max_lookback_days=0, persist=False
        )
        with pytest.raises(RateUnavailable):
            service.rate_for(SATURDAY)
        assert fake_provider.calls == []

    def test_convert(self, rate_service):
        """Test currency conversion."""
        assert rate_service.convert(Decimal("100"), "USD", FRIDAY) == (Decimal("700"), Decimal("7"))
        assert rate_service.convert(Decimal("100"), "DKK", FRIDAY) == (Decimal("100"), Decimal("1"))
        with pytest.raises(RateUnavailable):
            rate_service.convert(Decimal("100"), "EUR", FRIDAY)


class TestManualRates:
    """Tests for manual overrides."""

    def test_manual_overrides_fetched(self, rate_service):
        """Test that a manual rate replaces a fetched one."""
        rate_service.rate_for(FRIDAY)
        rate_service.set_manual_rate(FRIDAY, "6.5")

        assert rate_service.rate_for(FRIDAY) == Decimal("6.5")
        assert rate_service.get_entry(FRIDAY).source == SOURCE_MANUAL

    def test_prefetch_keeps_manual(self, rate_service):
        """Test that prefetching a range never overwrites a manual rate."""
        rate_service.rate_for(FRIDAY)
        rate_service.set_manual_rate(FRIDAY, "6.5")

        rate_service.prefetch_range(date(2024, 3, 11), MONDAY)

        assert rate_service.rate_for(FRIDAY) == Decimal("6.5")
        assert rate_service.get_entry(FRIDAY).source == SOURCE_MANUAL

    def test_fetched_write_after_manual_is_dropped(self, rate_service):
        """Test the write rule directly."""
        rate_service.set_manual_rate(FRIDAY, "6.5")
        entry = rate_service._store(FRIDAY, Decimal("7"), SOURCE_FETCHED)

        assert entry.usd_to_dkk == Decimal("6.5")
        assert entry.source == SOURCE_MANUAL

    def test_manual_rate_idempotent(self, rate_service):
        """Test setting the same manual rate twice."""
        rate_service.set_manual_rate(FRIDAY, "6.5")
        rate_service.set_manual_rate(FRIDAY, "6.5")
        assert rate_service.rate_for(FRIDAY) == Decimal("6.5")

    def test_manual_on_weekend(self, rate_service, fake_provider):
        """Test that a manual weekend rate is used directly."""
        rate_service.set_manual_rate(SUNDAY, "6.6")
        assert rate_service.rate_for(SUNDAY) == Decimal("6.6")
        assert fake_provider.calls == []

    def test_invalid_manual_rate(self, rate_service):
        """Test that non-positive rates are rejected."""
        with pytest.raises(ValidationError):
            rate_service.set_manual_rate(FRIDAY, "0")
        with pytest.raises(ValidationError):
            rate_service.set_manual_rate(FRIDAY, "-6.5")


class TestPrefetch:
    """Tests for range prefetching."""

    def test_prefetch_weekdays_only(self, rate_service, fake_provider):
        """Test that only weekdays are fetched."""
        count = rate_service.prefetch_range(date(2024, 3, 11), SUNDAY)

        assert count == 5
        assert sorted(fake_provider.calls) == [date(2024, 3, d) for d in range(11, 16)]

    def test_prefetch_skips_failures(self, tmp_path):
        """Test that per-date failures are skipped."""
        provider = FakeProvider(default="7", fail_on={date(2024, 3, 12)})
        provider.rates[date(2024, 3, 13)] = None
        service = ExchangeRateService(provider=provider, data_dir=tmp_path, persist=False)

        count = service.prefetch_range(date(2024, 3, 11), FRIDAY, max_workers=2)

        assert count == 3
        assert service.get_entry(date(2024, 3, 12)) is None
        assert service.get_entry(date(2024, 3, 13)) is None

    def test_prefetch_skips_cached(self, rate_service, fake_provider):
        """Test that cached dates are not fetched again."""
        rate_service.rate_for(FRIDAY)
        count = rate_service.prefetch_range(date(2024, 3, 14), FRIDAY)

        assert count == 1
        assert fake_provider.calls.count(FRIDAY) == 1

    def test_prefetch_invalid_range(self, rate_service):
        """Test end before start."""
        with pytest.raises(ValidationError):
            rate_service.prefetch_range(FRIDAY, date(2024, 3, 1))

    def test_cached_rates_newest_first(self, rate_service):
        """Test cache listing."""
        rate_service.prefetch_range(date(2024, 3, 11), FRIDAY)
        entries = rate_service.get_cached_rates(limit=2)

        assert [e.date for e in entries] == [FRIDAY, date(2024, 3, 14)]


class TestPersistence:
    """Tests for the JSON rate cache."""

    def test_manual_rate_survives_reload(self, tmp_path, fake_provider):
        """Test that manual rates are persisted."""
        service = ExchangeRateService(provider=fake_provider, data_dir=tmp_path)
        service.rate_for(MONDAY)
        service.set_manual_rate(FRIDAY, "6.5")

        assert service.filepath.exists()

        reloaded = ExchangeRateService(provider=FakeProvider(), data_dir=tmp_path)
        assert reloaded.rate_for(FRIDAY) == Decimal("6.5")
        assert reloaded.get_entry(FRIDAY).source == SOURCE_MANUAL
        assert reloaded.rate_for(MONDAY) == Decimal("7")
