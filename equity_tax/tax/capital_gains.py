"""
Danish capital gains report (Rubrik 454).

Calculates realized gains and losses on listed shares per tax year.
Lot costs are converted to DKK at each lot's acquisition-date rate and
proceeds at the disposal-date rate, then the ticker's full disposal
history is replayed in DKK with its configured cost basis method.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from ..config import CAPITAL_GAINS, COST_BASIS_METHOD, TAX_YEAR_RANGE
from ..data.exchange_rates import ExchangeRateService
from ..data.records import Dataset, Lot
from ..exceptions import ComputationError, InvalidYear
from .cost_basis import CostBasisMethod, DisposalMatch, match_disposals, resolve_method

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def validate_tax_year(year) -> int:
    """Check a tax year against the supported range."""
    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidYear(year, "not an integer")
    low, high = TAX_YEAR_RANGE
    if not low <= year <= high:
        raise InvalidYear(year, f"must be between {low} and {high}")
    return year


def classify_holding(days: int) -> str:
    """Short or long holding period."""
    return "long" if days >= CAPITAL_GAINS["long_term_days"] else "short"


@dataclass
class CapitalGainsLineItem:
    """One disposal on the yearly report."""

    ticker: str
    disposal_date: date
    quantity: Decimal
    proceeds: Decimal
    currency: str
    exchange_rate: Decimal
    proceeds_dkk: Decimal
    cost_basis_dkk: Decimal
    gain_loss_dkk: Decimal
    holding_period_days: int
    holding_classification: str
    method: str
    gain_type: str = CAPITAL_GAINS["gain_type"]
    lots_used: List[Dict] = field(default_factory=list)

    @property
    def is_loss(self) -> bool:
        return self.gain_loss_dkk < 0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "ticker": self.ticker,
            "disposal_date": self.disposal_date.isoformat(),
            "quantity": str(self.quantity),
            "proceeds": str(self.proceeds),
            "currency": self.currency,
            "exchange_rate": str(self.exchange_rate),
            "proceeds_dkk": str(self.proceeds_dkk),
            "cost_basis_dkk": str(self.cost_basis_dkk),
            "gain_loss_dkk": str(self.gain_loss_dkk),
            "holding_period_days": self.holding_period_days,
            "holding_classification": self.holding_classification,
            "method": self.method,
            "gain_type": self.gain_type,
            "lots_used": self.lots_used,
        }


@dataclass
class CapitalGainsReport:
    """Realized capital gains for one tax year."""

    year: int
    line_items: List[CapitalGainsLineItem]
    total_gain_dkk: Decimal
    total_loss_dkk: Decimal
    net_dkk: Decimal
    total_proceeds_dkk: Decimal
    total_cost_basis_dkk: Decimal
    short_term_net_dkk: Decimal
    long_term_net_dkk: Decimal
    by_ticker: Dict[str, Dict]

    @property
    def n_disposals(self) -> int:
        return len(self.line_items)

    def to_dict(self) -> Dict:
        """Convert to dictionary with Decimals rendered as strings."""
        return {
            "year": self.year,
            "box": CAPITAL_GAINS["box"],
            "n_disposals": self.n_disposals,
            "total_gain_dkk": str(self.total_gain_dkk),
            "total_loss_dkk": str(self.total_loss_dkk),
            "net_dkk": str(self.net_dkk),
            "total_proceeds_dkk": str(self.total_proceeds_dkk),
            "total_cost_basis_dkk": str(self.total_cost_basis_dkk),
            "short_term_net_dkk": str(self.short_term_net_dkk),
            "long_term_net_dkk": str(self.long_term_net_dkk),
            "by_ticker": {
                ticker: {k: (str(v) if isinstance(v, Decimal) else v) for k, v in info.items()}
                for ticker, info in self.by_ticker.items()
            },
            "line_items": [item.to_dict() for item in self.line_items],
        }


@dataclass
class PositionLot:
    """An open lot inside a portfolio position."""

    lot_number: Optional[int]
    acquisition_date: date
    shares: Decimal
    cost_per_share: Decimal
    holding_classification: str


@dataclass
class PortfolioPosition:
    """Open holdings of one ticker under its current cost basis method."""

    ticker: str
    total_shares: Decimal
    total_cost_basis: Decimal
    currency: str
    cost_basis_method: str
    average_cost_per_share: Optional[Decimal]
    lots: List[PositionLot]


class CapitalGainsReportGenerator:
    """
    Generates the yearly capital gains report for the Danish tax return.

    The generator works on a Dataset snapshot and a snapshot of the
    per-ticker method settings, so a report is reproducible from those two
    inputs plus the exchange rate cache.

    Example:
        generator = CapitalGainsReportGenerator(dataset, rates, settings.snapshot())
        report = generator.generate(2024)
        print(report.net_dkk)
    """

    def __init__(
        self,
        dataset: Dataset,
        rate_service: ExchangeRateService,
        methods: Optional[Mapping[str, object]] = None,
        default_method: str = COST_BASIS_METHOD,
    ):
        """
        Initialize the generator.

        Args:
            dataset: Snapshot of lots and transactions
            rate_service: Exchange rate service used for every conversion
            methods: Ticker -> cost basis method snapshot
            default_method: Method for tickers missing from the mapping
        """
        self.dataset = dataset
        self.rates = rate_service
        self.methods = dict(methods or {})
        self.default_method = default_method

    def method_for(self, ticker: str) -> CostBasisMethod:
        return resolve_method(self.methods, ticker, self.default_method)

    def _lots_in_dkk(self, lots: List[Lot]) -> List[Lot]:
        """Convert each lot's cost at its own acquisition-date rate."""
        converted = []
        for lot in lots:
            cost_dkk, _ = self.rates.convert(lot.cost_basis, lot.currency, lot.acquisition_date)
            converted.append(replace(lot, cost_basis=cost_dkk, currency="DKK"))
        return converted

    def _line_item(self, match: DisposalMatch) -> CapitalGainsLineItem:
        disposal = match.disposal
        proceeds = disposal.net_proceeds
        proceeds_dkk, rate = self.rates.convert(proceeds, disposal.currency, disposal.date)
        cost_dkk = match.cost_basis

        oldest = min(c.lot.acquisition_date for c in match.consumptions)
        days = (disposal.date - oldest).days

        return CapitalGainsLineItem(
            ticker=disposal.ticker,
            disposal_date=disposal.date,
            quantity=disposal.quantity,
            proceeds=proceeds,
            currency=disposal.currency,
            exchange_rate=rate,
            proceeds_dkk=proceeds_dkk,
            cost_basis_dkk=cost_dkk,
            gain_loss_dkk=proceeds_dkk - cost_dkk,
            holding_period_days=days,
            holding_classification=classify_holding(days),
            method=match.method.value,
            lots_used=[c.to_dict() for c in match.consumptions],
        )

    def generate(self, year: int) -> CapitalGainsReport:
        """
        Generate the capital gains report for a tax year.

        Args:
            year: Tax year; disposals dated Jan 1 - Dec 31 are included

        Returns:
            CapitalGainsReport

        Raises:
            InvalidYear: For years outside the supported range
            RateUnavailable: If a required exchange rate is missing
            InsufficientShares: If sales exceed the recorded lots
        """
        validate_tax_year(year)
        year_end = date(year, 12, 31)

        line_items: List[CapitalGainsLineItem] = []
        by_ticker: Dict[str, Dict] = {}

        for ticker in self.dataset.tickers():
            disposals = [d for d in self.dataset.disposals_for(ticker) if d.date <= year_end]
            if not any(d.date.year == year for d in disposals):
                continue

            # Lots bought after the last disposal cannot be consumed by it
            last_disposal = max(d.date for d in disposals)
            method = self.method_for(ticker)
            lots = [
                lot for lot in self.dataset.lots_for(ticker) if lot.acquisition_date <= last_disposal
            ]
            plan = match_disposals(self._lots_in_dkk(lots), disposals, method)

            for match in plan.matches:
                if match.disposal.date.year != year:
                    continue
                item = self._line_item(match)
                line_items.append(item)

                info = by_ticker.setdefault(ticker, {
                    "net_gain_loss_dkk": ZERO,
                    "shares_sold": ZERO,
                    "transaction_count": 0,
                    "cost_basis_method": method.value,
                })
                info["net_gain_loss_dkk"] += item.gain_loss_dkk
                info["shares_sold"] += item.quantity
                info["transaction_count"] += 1

        line_items.sort(key=lambda i: (i.disposal_date, i.ticker))

        gains = [i.gain_loss_dkk for i in line_items if i.gain_loss_dkk > 0]
        losses = [-i.gain_loss_dkk for i in line_items if i.gain_loss_dkk < 0]
        total_gain = sum(gains, ZERO)
        total_loss = sum(losses, ZERO)

        report = CapitalGainsReport(
            year=year,
            line_items=line_items,
            total_gain_dkk=total_gain,
            total_loss_dkk=total_loss,
            net_dkk=total_gain - total_loss,
            total_proceeds_dkk=sum((i.proceeds_dkk for i in line_items), ZERO),
            total_cost_basis_dkk=sum((i.cost_basis_dkk for i in line_items), ZERO),
            short_term_net_dkk=sum(
                (i.gain_loss_dkk for i in line_items if i.holding_classification == "short"), ZERO
            ),
            long_term_net_dkk=sum(
                (i.gain_loss_dkk for i in line_items if i.holding_classification == "long"), ZERO
            ),
            by_ticker=by_ticker,
        )

        logger.info(
            f"Capital gains {year}: {report.n_disposals} disposals, "
            f"net {report.net_dkk:.2f} DKK"
        )
        return report

    def get_portfolio_positions(self, as_of: Optional[date] = None) -> List[PortfolioPosition]:
        """
        Snapshot of open lots per ticker, independent of any tax year.

        Args:
            as_of: Date used for holding classification (default today)

        Returns:
            List of PortfolioPosition in cost currency
        """
        as_of = as_of or date.today()
        positions = []

        for ticker in self.dataset.tickers():
            lots = self.dataset.lots_for(ticker)
            currencies = {lot.currency for lot in lots}
            if len(currencies) > 1:
                raise ComputationError(f"{ticker}: lots in mixed currencies {sorted(currencies)}")

            method = self.method_for(ticker)
            plan = match_disposals(lots, self.dataset.disposals_for(ticker), method)
            if plan.open_quantity == 0:
                continue

            positions.append(PortfolioPosition(
                ticker=ticker,
                total_shares=plan.open_quantity,
                total_cost_basis=plan.open_cost_basis,
                currency=currencies.pop(),
                cost_basis_method=method.value,
                average_cost_per_share=(
                    plan.average_cost if method is CostBasisMethod.AVERAGE_COST else None
                ),
                lots=[
                    PositionLot(
                        lot_number=o.lot.lot_number,
                        acquisition_date=o.lot.acquisition_date,
                        shares=o.remaining_quantity,
                        cost_per_share=o.cost_per_share,
                        holding_classification=classify_holding(
                            (as_of - o.lot.acquisition_date).days
                        ),
                    )
                    for o in plan.open_lots
                ],
            ))

        return positions
