"""
Per-ticker acquisition lot ledger.

The ledger only stores records. Remaining quantities are derived by
replaying the ticker's disposals with the method configured for it, so
a method change applies to the whole history.
"""

import json
import logging
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from ..config import DATA_DIR, LEDGER_FILE
from ..data.records import Disposal, Lot, to_decimal
from .cost_basis import (
    ConsumptionPlan,
    CostBasisSettings,
    LotConsumption,
    OpenLot,
    match_disposals,
)

logger = logging.getLogger(__name__)


class LotLedger:
    """
    Maintains acquisition lots and disposals per ticker.

    Example:
        ledger = LotLedger(settings=CostBasisSettings(persist=False))
        ledger.record_acquisition(Lot("MSFT", date(2023, 1, 5), Decimal("100"), Decimal("1000")))
        used = ledger.record_disposal("MSFT", Decimal("40"), date(2024, 2, 1))
    """

    def __init__(
        self,
        settings: Optional[CostBasisSettings] = None,
        data_dir: Optional[Path] = None,
    ):
        """
        Initialize the ledger.

        Args:
            settings: Per-ticker cost basis methods
            data_dir: Directory for persisting the ledger
        """
        self.settings = settings or CostBasisSettings(persist=False)
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR

        self.lots: Dict[str, List[Lot]] = {}
        self.disposals: Dict[str, List[Disposal]] = {}
        self._sequence = 0

    def _next_sequence(self) -> int:
        sequence = self._sequence
        self._sequence += 1
        return sequence

    def record_acquisition(self, lot: Lot) -> Lot:
        """
        Append an acquisition lot.

        Args:
            lot: Lot record (its sequence number is assigned here)

        Returns:
            The stored lot
        """
        lot = replace(lot, sequence=self._next_sequence())
        self.lots.setdefault(lot.ticker, []).append(lot)

        logger.info(
            f"Recorded acquisition: {lot.quantity} {lot.ticker} on {lot.acquisition_date} "
            f"(cost {lot.cost_basis} {lot.currency})"
        )
        return lot

    def record_disposal(
        self,
        ticker: str,
        quantity,
        on_date: date,
        proceeds=Decimal("0"),
        fees=Decimal("0"),
        currency: str = "USD",
    ) -> List[LotConsumption]:
        """
        Record a disposal and return the lot slices it consumed.

        Args:
            ticker: Ticker symbol
            quantity: Shares sold
            on_date: Disposal date
            proceeds: Sale proceeds
            fees: Transaction fees
            currency: Currency of the proceeds

        Returns:
            List of LotConsumption (lot, quantity, cost basis used)

        Raises:
            InsufficientShares: If the ledger cannot cover the disposal; the
                ledger is left unchanged
        """
        disposal = Disposal(
            ticker=ticker,
            date=on_date,
            quantity=to_decimal(quantity),
            proceeds=to_decimal(proceeds),
            fees=to_decimal(fees),
            currency=currency,
            sequence=self._sequence,
        )

        history = self.disposals.get(ticker, []) + [disposal]
        plan = match_disposals(self.lots.get(ticker, []), history, self.settings.method_for(ticker))

        self._next_sequence()
        self.disposals[ticker] = history

        consumptions = list(plan.match_for(disposal).consumptions)
        cost = sum((c.cost_basis for c in consumptions), Decimal("0"))
        logger.info(
            f"Recorded disposal: {disposal.quantity} {ticker} on {on_date} "
            f"from {len(consumptions)} lot(s), cost basis {cost}"
        )
        return consumptions

    def consumption_plan(self, ticker: str, as_of: Optional[date] = None) -> ConsumptionPlan:
        """Replay a ticker's history with its current method."""
        lots = self.lots.get(ticker, [])
        disposals = self.disposals.get(ticker, [])
        if as_of is not None:
            lots = [lot for lot in lots if lot.acquisition_date <= as_of]
            disposals = [d for d in disposals if d.date <= as_of]
        return match_disposals(lots, disposals, self.settings.method_for(ticker))

    def open_lots(self, ticker: str, as_of: Optional[date] = None) -> List[OpenLot]:
        """
        Get open lots of a ticker, oldest first.

        Ties on acquisition date keep insertion order.
        """
        return self.consumption_plan(ticker, as_of).open_lots

    def set_method(self, ticker: str, method) -> None:
        """Change a ticker's method; the next read replays its history."""
        self.settings.set_method(ticker, method)

    def get_total_shares(self, ticker: str) -> Decimal:
        """Get total open shares for a ticker."""
        return self.consumption_plan(ticker).open_quantity

    def get_all_tickers(self) -> List[str]:
        """Get all tickers with recorded lots."""
        return sorted(t for t, lots in self.lots.items() if lots)

    def get_summary(self) -> Dict:
        """Get summary of all positions."""
        summary = {}
        for ticker in self.get_all_tickers():
            plan = self.consumption_plan(ticker)
            summary[ticker] = {
                "shares": plan.open_quantity,
                "cost_basis": plan.open_cost_basis,
                "avg_cost": plan.average_cost,
                "method": plan.method.value,
                "n_lots": len(plan.open_lots),
            }
        return summary

    def save(self, filename: str = LEDGER_FILE) -> Path:
        """
        Save lots and disposals to file.

        Args:
            filename: Output filename

        Returns:
            Path to saved file
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.data_dir / filename

        data = {
            "saved_at": datetime.now().isoformat(),
            "next_sequence": self._sequence,
            "lots": {t: [lot.to_dict() for lot in lots] for t, lots in self.lots.items()},
            "disposals": {t: [d.to_dict() for d in ds] for t, ds in self.disposals.items()},
        }

        with open(filepath, "w") as f:
            json.dump(data, f, indent=2)

        logger.info(f"Saved lot ledger: {filepath}")
        return filepath

    def load(self, filename: str = LEDGER_FILE) -> None:
        """
        Load lots and disposals from file.

        Args:
            filename: Input filename
        """
        filepath = self.data_dir / filename

        with open(filepath) as f:
            data = json.load(f)

        self.lots = {
            t: [Lot.from_dict(item) for item in items]
            for t, items in data.get("lots", {}).items()
        }
        self.disposals = {
            t: [Disposal.from_dict(item) for item in items]
            for t, items in data.get("disposals", {}).items()
        }
        self._sequence = data.get("next_sequence", 0)

        logger.info(f"Loaded lot ledger: {len(self.lots)} tickers")
