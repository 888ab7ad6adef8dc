"""
Exception classes for the equity tax engine.

Every error carries the ticker, date or year needed to diagnose it.
"""

from datetime import date
from decimal import Decimal


class EquityTaxError(Exception):
    """Base exception for all equity tax errors."""
    pass


class RateUnavailable(EquityTaxError):
    """Raised when no usable exchange rate exists for a date."""

    def __init__(self, on_date: date, reason: str = ""):
        self.date = on_date
        message = f"No USD/DKK exchange rate available for {on_date.isoformat()}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InsufficientShares(EquityTaxError):
    """Raised when a disposal exceeds the recorded open quantity."""

    def __init__(self, ticker: str, on_date: date, requested: Decimal, available: Decimal):
        self.ticker = ticker
        self.date = on_date
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot dispose of {requested} {ticker} on {on_date.isoformat()}: "
            f"only {available} open (missing acquisition records?)"
        )


class ValidationError(EquityTaxError):
    """Raised when caller input validation fails."""
    pass


class InvalidYear(ValidationError):
    """Raised for a tax year outside the supported range."""

    def __init__(self, year, reason: str = ""):
        self.year = year
        message = f"Invalid tax year: {year}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidMethod(ValidationError):
    """Raised for an unknown cost basis method."""

    def __init__(self, method):
        self.method = method
        super().__init__(
            f"Invalid cost basis method: {method!r}. "
            f"Must be 'lot-based' or 'average-cost'"
        )


class ComputationError(EquityTaxError):
    """Raised when an internal invariant is violated during matching."""
    pass
