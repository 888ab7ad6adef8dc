"""
Dividend tax report for the Danish tax return.

Covers Box 452 (gross foreign dividends) and Box 496 (foreign tax
credit). Each dividend and withholding payment is converted to DKK at
the rate of its own payment date.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from ..config import DIVIDEND_TAX, SHARE_INCOME_TAX
from ..data.exchange_rates import ExchangeRateService
from ..data.records import Dataset, TransactionType, to_decimal
from ..exceptions import InvalidYear, ValidationError
from .capital_gains import validate_tax_year

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class DividendPayment:
    """A dividend or withholding payment converted to DKK."""

    ticker: str
    payment_date: date
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    amount_dkk: Decimal
    transaction_id: str = ""

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "ticker": self.ticker,
            "payment_date": self.payment_date.isoformat(),
            "amount": str(self.amount),
            "currency": self.currency,
            "exchange_rate": str(self.exchange_rate),
            "amount_dkk": str(self.amount_dkk),
            "transaction_id": self.transaction_id,
        }


@dataclass
class DividendTaxReport:
    """Dividend income and foreign tax credit for one tax year."""

    year: int
    is_us_person: bool
    gross_dividends: Decimal
    gross_dividends_dkk: Decimal
    withheld: Decimal
    withheld_dkk: Decimal
    foreign_tax_credit: Decimal
    foreign_tax_credit_dkk: Decimal
    irs_tax_paid: Optional[Decimal] = None
    by_ticker: Dict[str, Dict] = field(default_factory=dict)
    dividends: List[DividendPayment] = field(default_factory=list)
    withholdings: List[DividendPayment] = field(default_factory=list)

    @property
    def net_received(self) -> Decimal:
        return self.gross_dividends - self.withheld

    @property
    def net_received_dkk(self) -> Decimal:
        return self.gross_dividends_dkk - self.withheld_dkk

    @property
    def effective_rate(self) -> Optional[Decimal]:
        """DKK per USD averaged over the year's dividend payments."""
        if self.gross_dividends == 0:
            return None
        return self.gross_dividends_dkk / self.gross_dividends

    def to_dict(self) -> Dict:
        """Convert to dictionary with Decimals rendered as strings."""
        return {
            "year": self.year,
            "is_us_person": self.is_us_person,
            "gross_dividends": str(self.gross_dividends),
            "gross_dividends_dkk": str(self.gross_dividends_dkk),
            "withheld": str(self.withheld),
            "withheld_dkk": str(self.withheld_dkk),
            "net_received": str(self.net_received),
            "net_received_dkk": str(self.net_received_dkk),
            "foreign_tax_credit": str(self.foreign_tax_credit),
            "foreign_tax_credit_dkk": str(self.foreign_tax_credit_dkk),
            "irs_tax_paid": None if self.irs_tax_paid is None else str(self.irs_tax_paid),
            "boxes": {
                DIVIDEND_TAX["gross_dividend_box"]: str(self.gross_dividends_dkk),
                DIVIDEND_TAX["foreign_tax_credit_box"]: str(self.foreign_tax_credit_dkk),
            },
            "by_ticker": {
                ticker: {k: (str(v) if isinstance(v, Decimal) else v) for k, v in info.items()}
                for ticker, info in self.by_ticker.items()
            },
            "dividends": [p.to_dict() for p in self.dividends],
            "withholdings": [p.to_dict() for p in self.withholdings],
        }


def share_income_tax(amount_dkk: Decimal, year: int) -> Decimal:
    """
    Danish tax on share income (aktieindkomst).

    Args:
        amount_dkk: Share income in DKK
        year: Income year selecting the progression threshold

    Returns:
        Tax at the low rate up to the threshold and the high rate above it
    """
    if year not in SHARE_INCOME_TAX:
        raise InvalidYear(year, "no share income tax table")
    table = SHARE_INCOME_TAX[year]
    if amount_dkk <= 0:
        return ZERO

    low_part = min(amount_dkk, table["threshold"])
    high_part = amount_dkk - low_part
    return low_part * table["low_rate"] + high_part * table["high_rate"]


class DividendTaxReportGenerator:
    """
    Generates the yearly dividend report.

    Foreign tax credit rules:
    - Tax paid abroad known, not a US person: credit is the lesser of the
      Danish share income tax on the dividend and the tax paid abroad
    - Tax paid abroad known, US person: credit is the lesser of the IRS
      tax paid and the 15% treaty rate on the gross dividend
    - Otherwise: the lesser of the treaty rate and the tax withheld at source

    Example:
        generator = DividendTaxReportGenerator(dataset, rates)
        report = generator.generate(2024)
        print(report.foreign_tax_credit_dkk)
    """

    def __init__(self, dataset: Dataset, rate_service: ExchangeRateService):
        """
        Initialize the generator.

        Args:
            dataset: Snapshot of transactions
            rate_service: Exchange rate service used for every conversion
        """
        self.dataset = dataset
        self.rates = rate_service
        self.treaty_rate = DIVIDEND_TAX["treaty_rate"]

    def _payments(self, tx_type: TransactionType, year: int) -> List[DividendPayment]:
        payments = []
        for tx in self.dataset.transactions_in_year(tx_type, year):
            amount = abs(tx.amount)
            amount_dkk, rate = self.rates.convert(amount, tx.currency, tx.date)
            payments.append(DividendPayment(
                ticker=tx.ticker,
                payment_date=tx.date,
                amount=amount,
                currency=tx.currency,
                exchange_rate=rate,
                amount_dkk=amount_dkk,
                transaction_id=tx.transaction_id,
            ))
        return payments

    def _credit(
        self,
        year: int,
        gross: Decimal,
        gross_dkk: Decimal,
        withheld: Decimal,
        withheld_dkk: Decimal,
        is_us_person: bool,
        irs_tax_paid: Optional[Decimal],
    ):
        """Returns (credit, credit_dkk)."""
        treaty_max = gross * self.treaty_rate

        if irs_tax_paid is None:
            if withheld <= treaty_max:
                return withheld, withheld_dkk
            return treaty_max, gross_dkk * self.treaty_rate

        if gross == 0:
            return ZERO, ZERO
        effective_rate = gross_dkk / gross

        if is_us_person:
            credit = min(irs_tax_paid, treaty_max)
            return credit, credit * effective_rate

        if year not in SHARE_INCOME_TAX:
            raise ValidationError(
                f"Foreign tax credit for {year} needs the share income tax table, "
                f"available for {min(SHARE_INCOME_TAX)}-{max(SHARE_INCOME_TAX)}; "
                f"omit irs_tax_paid to credit tax withheld at source"
            )
        paid_dkk = irs_tax_paid * effective_rate
        danish_tax_dkk = share_income_tax(gross_dkk, year)
        credit_dkk = min(danish_tax_dkk, paid_dkk)
        return credit_dkk / effective_rate, credit_dkk

    def generate(
        self,
        year: int,
        is_us_person: bool = False,
        irs_tax_paid=None,
    ) -> DividendTaxReport:
        """
        Generate the dividend report for a tax year.

        Args:
            year: Tax year
            is_us_person: Whether the taxpayer is a US person
            irs_tax_paid: Tax actually paid abroad for the year (USD)

        Returns:
            DividendTaxReport

        Raises:
            InvalidYear: For years outside the supported range
            ValidationError: If irs_tax_paid is given for a non-US person in a
                year without a share income tax table
            RateUnavailable: If a payment date has no exchange rate
        """
        validate_tax_year(year)
        if irs_tax_paid is not None:
            irs_tax_paid = to_decimal(irs_tax_paid)
            if irs_tax_paid < 0:
                raise ValidationError(f"IRS tax paid must not be negative: {irs_tax_paid}")

        dividends = self._payments(TransactionType.DIVIDEND, year)
        withholdings = self._payments(TransactionType.WITHHOLDING, year)

        by_ticker: Dict[str, Dict] = {}

        def ticker_entry(ticker: str) -> Dict:
            return by_ticker.setdefault(ticker, {
                "gross_dividends": ZERO,
                "gross_dividends_dkk": ZERO,
                "withheld": ZERO,
                "withheld_dkk": ZERO,
                "transaction_count": 0,
            })

        for p in dividends:
            entry = ticker_entry(p.ticker)
            entry["gross_dividends"] += p.amount
            entry["gross_dividends_dkk"] += p.amount_dkk
            entry["transaction_count"] += 1

        for p in withholdings:
            entry = ticker_entry(p.ticker)
            entry["withheld"] += p.amount
            entry["withheld_dkk"] += p.amount_dkk

        gross = sum((p.amount for p in dividends), ZERO)
        gross_dkk = sum((p.amount_dkk for p in dividends), ZERO)
        withheld = sum((p.amount for p in withholdings), ZERO)
        withheld_dkk = sum((p.amount_dkk for p in withholdings), ZERO)

        credit, credit_dkk = self._credit(
            year, gross, gross_dkk, withheld, withheld_dkk, is_us_person, irs_tax_paid
        )

        report = DividendTaxReport(
            year=year,
            is_us_person=is_us_person,
            gross_dividends=gross,
            gross_dividends_dkk=gross_dkk,
            withheld=withheld,
            withheld_dkk=withheld_dkk,
            foreign_tax_credit=credit,
            foreign_tax_credit_dkk=credit_dkk,
            irs_tax_paid=irs_tax_paid,
            by_ticker=by_ticker,
            dividends=dividends,
            withholdings=withholdings,
        )

        logger.info(
            f"Dividends {year}: {len(dividends)} payments, gross {gross_dkk:.2f} DKK, "
            f"credit {credit_dkk:.2f} DKK"
        )
        return report
