"""
Central configuration for the equity tax engine.

This module serves as the single source of truth for all constants,
tax tables, and configuration settings used throughout the system.
"""

from decimal import Decimal
from pathlib import Path
from typing import Dict, Any, Tuple
import logging

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = logging.INFO


def setup_logging(level: int = LOG_LEVEL) -> None:
    """Configure logging for the application."""
    logging.basicConfig(format=LOG_FORMAT, level=level)


# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root (parent of equity_tax/)
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"

# Output directories
REPORTS_DIR = PROJECT_ROOT / "reports"

# Default file names inside the data directory
LOTS_FILE = "lots.csv"
TRANSACTIONS_FILE = "transactions.csv"
GRANTS_FILE = "grants.csv"
EXCHANGE_RATES_FILE = "exchange_rates.json"
COST_BASIS_METHODS_FILE = "cost_basis_methods.yaml"
LEDGER_FILE = "lot_ledger.json"

# =============================================================================
# TAX YEARS
# =============================================================================

# Years accepted by the report generators (inclusive)
TAX_YEAR_RANGE: Tuple[int, int] = (2000, 2100)

# =============================================================================
# DANISH INCOME TAX TABLES
# =============================================================================

# Rates per income year. A year missing here cannot be computed.
# municipal_tax is the national average kommuneskat.
DANISH_TAX_RATES: Dict[int, Dict[str, Decimal]] = {
    2023: {
        "am_bidrag": Decimal("0.08"),
        "bottom_tax": Decimal("0.1209"),
        "top_tax": Decimal("0.15"),
        "municipal_tax": Decimal("0.25"),
        "top_tax_threshold": Decimal("568900"),
        "personal_allowance": Decimal("48000"),
        "allowance_7p_rate": Decimal("0.20"),
    },
    2024: {
        "am_bidrag": Decimal("0.08"),
        "bottom_tax": Decimal("0.1209"),
        "top_tax": Decimal("0.15"),
        "municipal_tax": Decimal("0.25"),
        "top_tax_threshold": Decimal("588900"),
        "personal_allowance": Decimal("49700"),
        "allowance_7p_rate": Decimal("0.20"),
    },
    2025: {
        "am_bidrag": Decimal("0.08"),
        "bottom_tax": Decimal("0.1201"),
        "top_tax": Decimal("0.15"),
        "municipal_tax": Decimal("0.25"),
        "top_tax_threshold": Decimal("611800"),
        "personal_allowance": Decimal("51600"),
        "allowance_7p_rate": Decimal("0.20"),
    },
}

# Share income (aktieindkomst) progression, used for the dividend credit cap
SHARE_INCOME_TAX: Dict[int, Dict[str, Decimal]] = {
    2023: {
        "low_rate": Decimal("0.27"),
        "high_rate": Decimal("0.42"),
        "threshold": Decimal("58900"),
    },
    2024: {
        "low_rate": Decimal("0.27"),
        "high_rate": Decimal("0.42"),
        "threshold": Decimal("61000"),
    },
    2025: {
        "low_rate": Decimal("0.27"),
        "high_rate": Decimal("0.42"),
        "threshold": Decimal("67500"),
    },
}

# =============================================================================
# DIVIDEND TAX CONFIGURATION
# =============================================================================

DIVIDEND_TAX: Dict[str, Any] = {
    # US-Denmark treaty rate on portfolio dividends
    "treaty_rate": Decimal("0.15"),

    # Tax return boxes (rubrikker)
    "gross_dividend_box": 452,
    "foreign_tax_credit_box": 496,
}

# Transaction activity labels recognised as each transaction type
TRANSACTION_TYPE_ALIASES: Dict[str, str] = {
    "sale": "sale",
    "sold": "sale",
    "dividend": "dividend",
    "dividend (cash)": "dividend",
    "withholding": "withholding",
    "tax withholding": "withholding",
    "irs nonresident alien withholding": "withholding",
}

# =============================================================================
# CAPITAL GAINS CONFIGURATION
# =============================================================================

CAPITAL_GAINS: Dict[str, Any] = {
    # Tax return box for gains/losses on listed shares
    "gain_type": "box_454",
    "box": 454,

    # Holding period boundary for short/long classification (days)
    "long_term_days": 365,
}

# Cost basis method used for tickers without an explicit setting
COST_BASIS_METHOD = "lot-based"

# =============================================================================
# EXCHANGE RATE CONFIGURATION
# =============================================================================

FX_CONFIG: Dict[str, Any] = {
    "base_url": "https://www.nationalbanken.dk/api/currencyrates",
    "currency": "USD",
    # Nationalbanken quotes DKK per 100 units of foreign currency
    "quote_unit": Decimal("100"),
    "timeout": 30,
    # How many days back to look for a rate on non-trading days (0 = none)
    "max_lookback_days": 7,
    "prefetch_workers": 4,
}
