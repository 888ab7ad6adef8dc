"""
Cost basis matching for Danish tax calculations.

Supports the two methods allowed for listed shares:
- lot-based: oldest open lot consumed first (FIFO)
- average-cost: gennemsnitsmetoden, all open shares of a ticker pooled
  at their weighted average cost

Matching is a pure replay over (lots, disposals, method). Changing a
ticker's method never patches earlier results; the history is replayed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from ..config import COST_BASIS_METHOD, COST_BASIS_METHODS_FILE, DATA_DIR
from ..data.records import Disposal, Lot
from ..exceptions import ComputationError, InsufficientShares, InvalidMethod

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CostBasisMethod(Enum):
    """Per-ticker cost basis method."""

    LOT_BASED = "lot-based"
    AVERAGE_COST = "average-cost"

    @classmethod
    def parse(cls, value) -> "CostBasisMethod":
        """Parse a method name, raising InvalidMethod for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidMethod(value) from None


@dataclass(frozen=True)
class LotConsumption:
    """Shares of one lot consumed by one disposal."""

    lot: Lot
    quantity: Decimal
    cost_basis: Decimal

    def to_dict(self) -> Dict:
        return {
            "lot_sequence": self.lot.sequence,
            "lot_number": self.lot.lot_number,
            "acquisition_date": self.lot.acquisition_date.isoformat(),
            "quantity": str(self.quantity),
            "cost_basis": str(self.cost_basis),
        }


@dataclass(frozen=True)
class DisposalMatch:
    """A disposal together with the lot slices it consumed."""

    disposal: Disposal
    consumptions: Tuple[LotConsumption, ...]
    method: CostBasisMethod

    @property
    def quantity(self) -> Decimal:
        return sum((c.quantity for c in self.consumptions), ZERO)

    @property
    def cost_basis(self) -> Decimal:
        return sum((c.cost_basis for c in self.consumptions), ZERO)


@dataclass(frozen=True)
class OpenLot:
    """A lot with shares left after all disposals were replayed."""

    lot: Lot
    remaining_quantity: Decimal
    remaining_cost_basis: Decimal

    @property
    def cost_per_share(self) -> Decimal:
        return self.remaining_cost_basis / self.remaining_quantity


@dataclass
class ConsumptionPlan:
    """Result of replaying one ticker's disposals under one method."""

    method: CostBasisMethod
    matches: List[DisposalMatch] = field(default_factory=list)
    open_lots: List[OpenLot] = field(default_factory=list)
    acquired_quantity: Decimal = ZERO

    @property
    def open_quantity(self) -> Decimal:
        return sum((o.remaining_quantity for o in self.open_lots), ZERO)

    @property
    def open_cost_basis(self) -> Decimal:
        return sum((o.remaining_cost_basis for o in self.open_lots), ZERO)

    @property
    def consumed_quantity(self) -> Decimal:
        return sum((m.quantity for m in self.matches), ZERO)

    @property
    def average_cost(self) -> Optional[Decimal]:
        """Weighted average cost per open share (None when nothing is open)."""
        quantity = self.open_quantity
        if quantity == 0:
            return None
        return self.open_cost_basis / quantity

    def match_for(self, disposal: Disposal) -> DisposalMatch:
        """Find the match of a disposal by its ticker, date and sequence."""
        for match in self.matches:
            d = match.disposal
            if (d.ticker, d.date, d.sequence) == (disposal.ticker, disposal.date, disposal.sequence):
                return match
        raise KeyError(f"Disposal not in plan: {disposal.ticker} {disposal.date}")


def _lot_order(lot: Lot):
    return (lot.acquisition_date, lot.sequence)


def _disposal_order(disposal: Disposal):
    return (disposal.date, disposal.sequence)


def match_disposals(
    lots: Iterable[Lot],
    disposals: Iterable[Disposal],
    method=CostBasisMethod.LOT_BASED,
) -> ConsumptionPlan:
    """
    Replay a ticker's disposals against its lots.

    Lots become available on their acquisition date (a lot acquired on
    the disposal date can be sold that day). Under average-cost the pool
    average is computed at the moment of each disposal.

    Args:
        lots: Acquisition lots of one ticker
        disposals: Disposals of the same ticker
        method: CostBasisMethod or its string value

    Returns:
        ConsumptionPlan with per-disposal consumptions and open lots

    Raises:
        InsufficientShares: If a disposal exceeds the open quantity on its date
        ComputationError: If a matching invariant is violated
    """
    method = CostBasisMethod.parse(method)
    ordered_lots = sorted(lots, key=_lot_order)
    ordered_disposals = sorted(disposals, key=_disposal_order)

    remaining_qty = [lot.quantity for lot in ordered_lots]
    remaining_cost = [lot.cost_basis for lot in ordered_lots]
    pool_qty = ZERO
    pool_cost = ZERO
    n_available = 0

    plan = ConsumptionPlan(
        method=method,
        acquired_quantity=sum((lot.quantity for lot in ordered_lots), ZERO),
    )

    for disposal in ordered_disposals:
        while n_available < len(ordered_lots) and \
                ordered_lots[n_available].acquisition_date <= disposal.date:
            pool_qty += remaining_qty[n_available]
            pool_cost += remaining_cost[n_available]
            n_available += 1

        if disposal.quantity > pool_qty:
            raise InsufficientShares(disposal.ticker, disposal.date, disposal.quantity, pool_qty)

        if method is CostBasisMethod.AVERAGE_COST:
            if disposal.quantity == pool_qty:
                total_cost = pool_cost
            else:
                total_cost = disposal.quantity * pool_cost / pool_qty
            average = total_cost / disposal.quantity
        else:
            total_cost = None
            average = None

        consumptions = []
        to_sell = disposal.quantity
        allocated_cost = ZERO

        for i in range(n_available):
            if to_sell <= 0:
                break
            if remaining_qty[i] <= 0:
                continue

            take = min(remaining_qty[i], to_sell)
            if method is CostBasisMethod.AVERAGE_COST:
                # Last slice absorbs the rounding residue of the average
                cost = total_cost - allocated_cost if take == to_sell else take * average
            elif take == remaining_qty[i]:
                cost = remaining_cost[i]
            else:
                cost = remaining_cost[i] * take / remaining_qty[i]

            remaining_qty[i] -= take
            if method is CostBasisMethod.LOT_BASED:
                remaining_cost[i] -= cost
            to_sell -= take
            allocated_cost += cost
            consumptions.append(LotConsumption(lot=ordered_lots[i], quantity=take, cost_basis=cost))

        if to_sell != 0:
            raise ComputationError(
                f"{disposal.ticker} {disposal.date}: {to_sell} shares left unmatched"
            )

        pool_qty -= disposal.quantity
        pool_cost -= allocated_cost

        if pool_qty < 0 or any(q < 0 for q in remaining_qty):
            raise ComputationError(
                f"{disposal.ticker} {disposal.date}: negative open quantity after matching"
            )

        plan.matches.append(DisposalMatch(
            disposal=disposal,
            consumptions=tuple(consumptions),
            method=method,
        ))

    # Lots acquired after the last disposal
    for i in range(n_available, len(ordered_lots)):
        pool_qty += remaining_qty[i]
        pool_cost += remaining_cost[i]

    for i, lot in enumerate(ordered_lots):
        if remaining_qty[i] <= 0:
            continue
        if method is CostBasisMethod.AVERAGE_COST:
            cost = remaining_qty[i] * pool_cost / pool_qty
        else:
            cost = remaining_cost[i]
        plan.open_lots.append(OpenLot(lot=lot, remaining_quantity=remaining_qty[i], remaining_cost_basis=cost))

    if plan.consumed_quantity + plan.open_quantity != plan.acquired_quantity:
        raise ComputationError("Share quantities are not conserved after matching")

    return plan


class CostBasisSettings:
    """
    Per-ticker cost basis method configuration.

    Tickers without an entry use the default method. The mapping is
    persisted as YAML so an external settings store can edit it.

    Example:
        settings = CostBasisSettings()
        settings.set_method("MSFT", "average-cost")
        methods = settings.snapshot()
    """

    def __init__(
        self,
        default_method: Optional[str] = None,
        data_dir: Optional[Path] = None,
        persist: bool = True,
    ):
        """
        Initialize the settings.

        Args:
            default_method: Method for tickers without a setting
            data_dir: Directory for the YAML file
            persist: Write changes to disk
        """
        self.default_method = CostBasisMethod.parse(default_method or COST_BASIS_METHOD)
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.persist = persist
        self.methods: Dict[str, CostBasisMethod] = {}

        if self.persist and self.filepath.exists():
            self.load()

    @property
    def filepath(self) -> Path:
        return self.data_dir / COST_BASIS_METHODS_FILE

    def method_for(self, ticker: str) -> CostBasisMethod:
        """Get the method configured for a ticker."""
        return self.methods.get(ticker, self.default_method)

    def set_method(self, ticker: str, method) -> CostBasisMethod:
        """
        Set the method for a ticker.

        Historical disposals of the ticker are matched with the new method
        the next time a report or ledger view is produced.
        """
        method = CostBasisMethod.parse(method)
        previous = self.method_for(ticker)
        self.methods[ticker] = method

        if previous is not method:
            logger.info(f"Cost basis method for {ticker}: {previous.value} -> {method.value}")
        if self.persist:
            self.save()
        return method

    def snapshot(self) -> Mapping[str, CostBasisMethod]:
        """Read-only copy of the explicit per-ticker settings."""
        return MappingProxyType(dict(self.methods))

    def save(self) -> Path:
        """Save settings to YAML."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "saved_at": datetime.now().isoformat(),
            "default": self.default_method.value,
            "methods": {t: m.value for t, m in sorted(self.methods.items())},
        }
        with open(self.filepath, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

        logger.debug(f"Saved cost basis settings: {self.filepath}")
        return self.filepath

    def load(self) -> None:
        """Load settings from YAML."""
        with open(self.filepath) as f:
            data = yaml.safe_load(f) or {}

        if "default" in data:
            self.default_method = CostBasisMethod.parse(data["default"])
        self.methods = {
            ticker: CostBasisMethod.parse(method)
            for ticker, method in (data.get("methods") or {}).items()
        }
        logger.info(f"Loaded cost basis settings: {len(self.methods)} tickers")


def resolve_method(
    methods: Mapping[str, object],
    ticker: str,
    default=COST_BASIS_METHOD,
) -> CostBasisMethod:
    """Look up a ticker's method in a plain mapping snapshot."""
    return CostBasisMethod.parse(methods.get(ticker, default))
