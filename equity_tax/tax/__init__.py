"""Danish tax calculation modules."""

from .cost_basis import (
    ConsumptionPlan,
    CostBasisMethod,
    CostBasisSettings,
    LotConsumption,
    match_disposals,
)
from .lot_ledger import LotLedger
from .capital_gains import CapitalGainsReport, CapitalGainsReportGenerator, PortfolioPosition
from .dividends import DividendTaxReport, DividendTaxReportGenerator
from .danish_tax import TaxInput, TaxResult, calculate_danish_tax, get_tax_rates
from .section_7p import Section7PSummary, summarize_7p
from .tax_reporter import TaxReporter

__all__ = [
    "ConsumptionPlan",
    "CostBasisMethod",
    "CostBasisSettings",
    "LotConsumption",
    "match_disposals",
    "LotLedger",
    "CapitalGainsReport",
    "CapitalGainsReportGenerator",
    "PortfolioPosition",
    "DividendTaxReport",
    "DividendTaxReportGenerator",
    "TaxInput",
    "TaxResult",
    "calculate_danish_tax",
    "get_tax_rates",
    "Section7PSummary",
    "summarize_7p",
    "TaxReporter",
]
