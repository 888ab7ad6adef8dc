"""
Normalized input records for the tax engine.

Lots, transactions and grants arrive from an external import layer in
a normalized shape. This module defines those records, the point-in-time
Dataset snapshot the report generators work on, and loaders for the
normalized CSV files.
"""

import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
from dateutil import parser as date_parser

from ..config import GRANTS_FILE, LOTS_FILE, TRANSACTIONS_FILE, TRANSACTION_TYPE_ALIASES
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """
    Convert a boundary value to Decimal without passing through binary floats.

    Args:
        value: int, str, Decimal or float
        default: Returned for missing values; None makes them an error

    Returns:
        Decimal value
    """
    if isinstance(value, Decimal):
        return value
    missing = value is None or (isinstance(value, str) and not value.strip())
    if isinstance(value, float) and math.isnan(value):
        missing = True
    if missing:
        if default is None:
            raise ValidationError("Missing numeric value")
        return default
    if isinstance(value, float):
        value = str(value)
    if isinstance(value, str):
        value = value.replace(",", "").replace("$", "").strip()
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValidationError(f"Invalid numeric value: {value!r}") from e


def parse_date(value: Any) -> date:
    """Parse a date from a string, datetime or date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        raise ValidationError("Missing date value")
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid date: {value!r}") from e


class TransactionType(Enum):
    """Transaction categories relevant to the tax engine."""

    SALE = "sale"
    DIVIDEND = "dividend"
    WITHHOLDING = "withholding"
    OTHER = "other"

    @classmethod
    def from_label(cls, label: str) -> "TransactionType":
        """Map a broker activity label to a transaction type."""
        key = (label or "").strip().lower()
        return cls(TRANSACTION_TYPE_ALIASES.get(key, key if key in _TYPE_VALUES else "other"))


_TYPE_VALUES = {"sale", "dividend", "withholding", "other"}


@dataclass(frozen=True)
class Lot:
    """An acquisition batch of shares with its own date and cost basis."""

    ticker: str
    acquisition_date: date
    quantity: Decimal
    cost_basis: Decimal
    currency: str = "USD"
    lot_number: Optional[int] = None
    sequence: int = 0

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError(
                f"Lot quantity must be positive: {self.ticker} {self.acquisition_date} "
                f"({self.quantity})"
            )
        if self.cost_basis < 0:
            raise ValidationError(
                f"Lot cost basis must not be negative: {self.ticker} {self.acquisition_date}"
            )

    @property
    def cost_per_share(self) -> Decimal:
        """Cost basis per share."""
        return self.cost_basis / self.quantity

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "ticker": self.ticker,
            "acquisition_date": self.acquisition_date.isoformat(),
            "quantity": str(self.quantity),
            "cost_basis": str(self.cost_basis),
            "currency": self.currency,
            "lot_number": self.lot_number,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Lot":
        """Create from dictionary."""
        return cls(
            ticker=data["ticker"],
            acquisition_date=parse_date(data["acquisition_date"]),
            quantity=to_decimal(data["quantity"]),
            cost_basis=to_decimal(data["cost_basis"]),
            currency=data.get("currency", "USD"),
            lot_number=data.get("lot_number"),
            sequence=data.get("sequence", 0),
        )


@dataclass(frozen=True)
class Disposal:
    """A sale of shares, matched against lots by the cost basis matcher."""

    ticker: str
    date: date
    quantity: Decimal
    proceeds: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    currency: str = "USD"
    sequence: int = 0
    transaction_id: str = ""

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError(
                f"Disposal quantity must be positive: {self.ticker} {self.date} ({self.quantity})"
            )

    @property
    def net_proceeds(self) -> Decimal:
        """Proceeds after transaction fees."""
        return self.proceeds - self.fees

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "ticker": self.ticker,
            "date": self.date.isoformat(),
            "quantity": str(self.quantity),
            "proceeds": str(self.proceeds),
            "fees": str(self.fees),
            "currency": self.currency,
            "sequence": self.sequence,
            "transaction_id": self.transaction_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Disposal":
        """Create from dictionary."""
        return cls(
            ticker=data["ticker"],
            date=parse_date(data["date"]),
            quantity=to_decimal(data["quantity"]),
            proceeds=to_decimal(data.get("proceeds"), Decimal("0")),
            fees=to_decimal(data.get("fees"), Decimal("0")),
            currency=data.get("currency", "USD"),
            sequence=data.get("sequence", 0),
            transaction_id=data.get("transaction_id", ""),
        )


@dataclass(frozen=True)
class Transaction:
    """A brokerage transaction (sale, dividend, withholding or other)."""

    type: TransactionType
    date: date
    ticker: str
    quantity: Decimal = Decimal("0")
    price: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    currency: str = "USD"
    transaction_id: str = ""

    @property
    def cash_value(self) -> Decimal:
        """Absolute cash amount; sales without an amount use quantity x price."""
        if self.amount:
            return abs(self.amount)
        return abs(self.quantity) * self.price

    def to_disposal(self, sequence: int = 0) -> Disposal:
        """Convert a sale transaction into a Disposal."""
        if self.type is not TransactionType.SALE:
            raise ValidationError(f"Transaction {self.transaction_id or self.date} is not a sale")
        return Disposal(
            ticker=self.ticker,
            date=self.date,
            quantity=abs(self.quantity),
            proceeds=self.cash_value,
            fees=self.fees,
            currency=self.currency,
            sequence=sequence,
            transaction_id=self.transaction_id,
        )


@dataclass(frozen=True)
class Grant:
    """An employer equity grant, possibly reported under section 7P."""

    ticker: str
    grant_date: date
    vest_date: date
    shares: Decimal
    cost_basis: Decimal
    currency: str = "USD"
    covered_by_7p: bool = False


@dataclass(frozen=True)
class Dataset:
    """
    Point-in-time snapshot of all records.

    Report generators hold a Dataset, so records added to the underlying
    store after construction are never observed mid-computation.
    """

    lots: Tuple[Lot, ...] = ()
    transactions: Tuple[Transaction, ...] = ()
    grants: Tuple[Grant, ...] = ()

    @classmethod
    def from_records(
        cls,
        lots: Iterable[Lot] = (),
        transactions: Iterable[Transaction] = (),
        grants: Iterable[Grant] = (),
    ) -> "Dataset":
        """Build a snapshot, numbering lots in insertion order."""
        numbered = tuple(replace(lot, sequence=i) for i, lot in enumerate(lots))
        return cls(lots=numbered, transactions=tuple(transactions), grants=tuple(grants))

    def tickers(self) -> List[str]:
        """All tickers with lots or sales."""
        tickers = {lot.ticker for lot in self.lots}
        tickers.update(t.ticker for t in self.transactions if t.type is TransactionType.SALE)
        return sorted(tickers)

    def lots_for(self, ticker: str) -> List[Lot]:
        """Lots of one ticker in insertion order."""
        return [lot for lot in self.lots if lot.ticker == ticker]

    def disposals_for(self, ticker: str) -> List[Disposal]:
        """Sale transactions of one ticker as Disposals, numbered in record order."""
        return [
            t.to_disposal(sequence=i)
            for i, t in enumerate(self.transactions)
            if t.type is TransactionType.SALE and t.ticker == ticker
        ]

    def transactions_in_year(self, tx_type: TransactionType, year: int) -> List[Transaction]:
        """Transactions of a type dated within a calendar year, oldest first."""
        selected = [
            t for t in self.transactions
            if t.type is tx_type and date(year, 1, 1) <= t.date <= date(year, 12, 31)
        ]
        return sorted(selected, key=lambda t: t.date)


# =============================================================================
# CSV LOADERS
# =============================================================================

def _read_csv(filepath: Path, required: List[str]) -> pd.DataFrame:
    """Read a normalized CSV as strings and check required columns."""
    df = pd.read_csv(filepath, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower() for c in df.columns]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValidationError(f"{filepath}: missing columns {missing}")
    return df


def load_lots_csv(filepath: Path) -> List[Lot]:
    """
    Load acquisition lots.

    Columns: ticker, acquisition_date, quantity, cost_basis,
    optional currency, lot_number.
    """
    df = _read_csv(filepath, ["ticker", "acquisition_date", "quantity", "cost_basis"])
    lots = []
    for row in df.to_dict("records"):
        lot_number = row.get("lot_number", "")
        lots.append(Lot(
            ticker=row["ticker"].strip().upper(),
            acquisition_date=parse_date(row["acquisition_date"]),
            quantity=to_decimal(row["quantity"]),
            cost_basis=to_decimal(row["cost_basis"]),
            currency=(row.get("currency") or "USD").strip().upper(),
            lot_number=int(lot_number) if lot_number else None,
        ))
    logger.info(f"Loaded {len(lots)} lots from {filepath}")
    return lots


def load_transactions_csv(filepath: Path) -> List[Transaction]:
    """
    Load brokerage transactions.

    Columns: type, date, ticker, optional quantity, price, amount, fees,
    currency, id.
    """
    df = _read_csv(filepath, ["type", "date", "ticker"])
    transactions = []
    for row in df.to_dict("records"):
        transactions.append(Transaction(
            type=TransactionType.from_label(row["type"]),
            date=parse_date(row["date"]),
            ticker=row["ticker"].strip().upper(),
            quantity=to_decimal(row.get("quantity"), Decimal("0")),
            price=to_decimal(row.get("price"), Decimal("0")),
            amount=to_decimal(row.get("amount"), Decimal("0")),
            fees=to_decimal(row.get("fees"), Decimal("0")),
            currency=(row.get("currency") or "USD").strip().upper(),
            transaction_id=row.get("id", ""),
        ))
    logger.info(f"Loaded {len(transactions)} transactions from {filepath}")
    return transactions


def load_grants_csv(filepath: Path) -> List[Grant]:
    """
    Load equity grants.

    Columns: ticker, grant_date, vest_date, shares, cost_basis,
    optional currency, covered_by_7p.
    """
    df = _read_csv(filepath, ["ticker", "grant_date", "vest_date", "shares", "cost_basis"])
    grants = []
    for row in df.to_dict("records"):
        covered = str(row.get("covered_by_7p", "")).strip().lower()
        grants.append(Grant(
            ticker=row["ticker"].strip().upper(),
            grant_date=parse_date(row["grant_date"]),
            vest_date=parse_date(row["vest_date"]),
            shares=to_decimal(row["shares"]),
            cost_basis=to_decimal(row["cost_basis"]),
            currency=(row.get("currency") or "USD").strip().upper(),
            covered_by_7p=covered in ("1", "true", "yes", "y"),
        ))
    logger.info(f"Loaded {len(grants)} grants from {filepath}")
    return grants


def load_dataset(data_dir: Path) -> Dataset:
    """Load whichever of the normalized CSV files exist in a directory."""
    data_dir = Path(data_dir)
    lots: List[Lot] = []
    transactions: List[Transaction] = []
    grants: List[Grant] = []

    if (data_dir / LOTS_FILE).exists():
        lots = load_lots_csv(data_dir / LOTS_FILE)
    if (data_dir / TRANSACTIONS_FILE).exists():
        transactions = load_transactions_csv(data_dir / TRANSACTIONS_FILE)
    if (data_dir / GRANTS_FILE).exists():
        grants = load_grants_csv(data_dir / GRANTS_FILE)

    return Dataset.from_records(lots, transactions, grants)
