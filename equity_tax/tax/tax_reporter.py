"""
Annual tax report generation for the Danish tax return.

Combines the capital gains, dividend and income tax figures into one
report and exports it as JSON or CSV.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..config import CAPITAL_GAINS, DIVIDEND_TAX, REPORTS_DIR
from .capital_gains import CapitalGainsReport, CapitalGainsReportGenerator
from .danish_tax import TaxInput, TaxResult, calculate_danish_tax
from .dividends import DividendTaxReport, DividendTaxReportGenerator

logger = logging.getLogger(__name__)

CAPITAL_GAINS_COLUMNS = [
    "date", "ticker", "quantity", "proceeds", "currency", "exchange_rate",
    "proceeds_dkk", "cost_basis_dkk", "gain_loss_dkk", "holding_period_days",
    "holding", "method",
]

DIVIDEND_COLUMNS = [
    "date", "ticker", "type", "amount", "currency", "exchange_rate", "amount_dkk",
]


class TaxReporter:
    """
    Generates annual tax reports for SKAT.

    Example:
        reporter = TaxReporter(gains_generator, dividend_generator)
        report = reporter.generate_annual_report(2024)
        reporter.export_json(report)
    """

    def __init__(
        self,
        capital_gains: CapitalGainsReportGenerator,
        dividends: DividendTaxReportGenerator,
        reports_dir: Optional[Path] = None,
    ):
        """
        Initialize the tax reporter.

        Args:
            capital_gains: Capital gains report generator
            dividends: Dividend report generator
            reports_dir: Directory for output reports
        """
        self.capital_gains = capital_gains
        self.dividends = dividends
        self.reports_dir = Path(reports_dir) if reports_dir else REPORTS_DIR

    def generate_annual_report(
        self,
        year: int,
        is_us_person: bool = False,
        irs_tax_paid=None,
        tax_input: Optional[TaxInput] = None,
    ) -> Dict:
        """
        Generate the annual tax report.

        Args:
            year: Tax year
            is_us_person: Whether the taxpayer is a US person
            irs_tax_paid: Tax paid to the IRS on dividends (USD)
            tax_input: Optional income figures for the income tax section

        Returns:
            Dict containing full report data (amounts as strings)
        """
        gains = self.capital_gains.generate(year)
        dividends = self.dividends.generate(year, is_us_person, irs_tax_paid)
        income_tax = calculate_danish_tax(tax_input) if tax_input is not None else None

        report = {
            "year": year,
            "generated_at": datetime.now().isoformat(),
            "capital_gains": self._format_capital_gains_section(gains),
            "dividend_income": self._format_dividend_section(dividends),
            "income_tax": income_tax.to_dict() if income_tax is not None else None,
            "summary": self._generate_summary(gains, dividends, income_tax),
        }

        return report

    def _format_capital_gains_section(self, report: CapitalGainsReport) -> Dict:
        """Format capital gains section of report."""
        section = report.to_dict()
        section["notes"] = [
            f"Net gain or loss on listed shares is reported in rubrik {CAPITAL_GAINS['box']}.",
            "Cost basis is converted at each lot's acquisition date rate, "
            "proceeds at the sale date rate.",
            "Losses on listed shares can only be offset against gains on listed shares.",
        ]
        return section

    def _format_dividend_section(self, report: DividendTaxReport) -> Dict:
        """Format dividend section of report."""
        section = report.to_dict()
        section["notes"] = [
            f"Gross foreign dividends go in rubrik {DIVIDEND_TAX['gross_dividend_box']}.",
            f"Foreign tax credit goes in rubrik {DIVIDEND_TAX['foreign_tax_credit_box']}.",
            "The US-Denmark treaty limits the credit to 15% of the gross dividend.",
        ]
        return section

    def _generate_summary(
        self,
        gains: CapitalGainsReport,
        dividends: DividendTaxReport,
        income_tax: Optional[TaxResult],
    ) -> Dict:
        """Generate overall summary."""
        boxes = {
            str(CAPITAL_GAINS["box"]): str(gains.net_dkk),
            str(DIVIDEND_TAX["gross_dividend_box"]): str(dividends.gross_dividends_dkk),
            str(DIVIDEND_TAX["foreign_tax_credit_box"]): str(dividends.foreign_tax_credit_dkk),
        }
        summary = {
            "boxes": boxes,
            "capital_gains_net_dkk": str(gains.net_dkk),
            "dividend_gross_dkk": str(dividends.gross_dividends_dkk),
            "foreign_tax_credit_dkk": str(dividends.foreign_tax_credit_dkk),
            "key_dates": {
                "tax_return_opens": f"{gains.year + 1}-03-01",
                "tax_return_deadline": f"{gains.year + 1}-05-01",
            },
            "notes": [
                "Check the pre-filled amounts in TastSelv against this report.",
                "Foreign shares are not reported automatically by Danish brokers.",
            ],
        }
        if income_tax is not None:
            summary["income_tax_total_dkk"] = str(income_tax.total_tax)
            summary["tax_7p_reduction_dkk"] = str(income_tax.tax_7p_reduction)
        return summary

    def export_json(self, report: Dict, filename: Optional[str] = None) -> Path:
        """
        Export report as JSON.

        Args:
            report: Report data
            filename: Output filename

        Returns:
            Path to saved file
        """
        if filename is None:
            filename = f"tax_report_{report['year']}.json"

        self.reports_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.reports_dir / filename

        with open(filepath, "w") as f:
            json.dump(report, f, indent=2)

        logger.info(f"Exported tax report: {filepath}")
        return filepath

    def export_csv(self, report: Dict) -> Dict[str, Path]:
        """
        Export report as multiple CSV files.

        Args:
            report: Report data

        Returns:
            Dict of section name -> filepath
        """
        year = report["year"]
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        paths = {}

        gains_rows = [
            {
                "date": item["disposal_date"],
                "ticker": item["ticker"],
                "quantity": item["quantity"],
                "proceeds": item["proceeds"],
                "currency": item["currency"],
                "exchange_rate": item["exchange_rate"],
                "proceeds_dkk": item["proceeds_dkk"],
                "cost_basis_dkk": item["cost_basis_dkk"],
                "gain_loss_dkk": item["gain_loss_dkk"],
                "holding_period_days": item["holding_period_days"],
                "holding": item["holding_classification"],
                "method": item["method"],
            }
            for item in report["capital_gains"]["line_items"]
        ]
        gains_path = self.reports_dir / f"capital_gains_{year}.csv"
        pd.DataFrame(gains_rows, columns=CAPITAL_GAINS_COLUMNS).to_csv(gains_path, index=False)
        paths["capital_gains"] = gains_path

        div = report["dividend_income"]
        div_rows: List[Dict] = []
        for kind, key in (("dividend", "dividends"), ("withholding", "withholdings")):
            for p in div[key]:
                div_rows.append({
                    "date": p["payment_date"],
                    "ticker": p["ticker"],
                    "type": kind,
                    "amount": p["amount"],
                    "currency": p["currency"],
                    "exchange_rate": p["exchange_rate"],
                    "amount_dkk": p["amount_dkk"],
                })
        div_rows.sort(key=lambda r: (r["date"], r["ticker"]))
        div_path = self.reports_dir / f"dividends_{year}.csv"
        pd.DataFrame(div_rows, columns=DIVIDEND_COLUMNS).to_csv(div_path, index=False)
        paths["dividends"] = div_path

        logger.info(f"Exported CSV reports: {list(paths.values())}")
        return paths

    def print_report(self, report: Dict) -> None:
        """Print an annual tax report to console."""
        year = report["year"]

        print("\n" + "=" * 70)
        print(f"DANISH TAX REPORT - {year}")
        print("=" * 70)

        cg = report["capital_gains"]
        print("\n" + "-" * 70)
        print(f"CAPITAL GAINS (RUBRIK {CAPITAL_GAINS['box']})")
        print("-" * 70)
        print(f"Disposals:        {cg['n_disposals']}")
        print(f"Total Proceeds:   DKK {Decimal(cg['total_proceeds_dkk']):,.2f}")
        print(f"Total Cost Basis: DKK {Decimal(cg['total_cost_basis_dkk']):,.2f}")
        print(f"Gains:            DKK {Decimal(cg['total_gain_dkk']):,.2f}")
        print(f"Losses:           DKK {Decimal(cg['total_loss_dkk']):,.2f}")
        print(f"NET GAIN/LOSS:    DKK {Decimal(cg['net_dkk']):,.2f}")

        div = report["dividend_income"]
        print("\n" + "-" * 70)
        print("DIVIDEND INCOME")
        print("-" * 70)
        print(f"Payments:          {len(div['dividends'])}")
        print(f"Gross Dividends:   USD {Decimal(div['gross_dividends']):,.2f}")
        print(f"US Withholding:    USD {Decimal(div['withheld']):,.2f}")
        print(
            f"Rubrik {DIVIDEND_TAX['gross_dividend_box']}:        "
            f"DKK {Decimal(div['gross_dividends_dkk']):,.2f}"
        )
        print(
            f"Rubrik {DIVIDEND_TAX['foreign_tax_credit_box']}:        "
            f"DKK {Decimal(div['foreign_tax_credit_dkk']):,.2f}"
        )

        tax = report.get("income_tax")
        if tax:
            print("\n" + "-" * 70)
            print("INCOME TAX")
            print("-" * 70)
            print(f"Total Income:      DKK {Decimal(tax['total_income']):,.2f}")
            print(f"AM-bidrag:         DKK {Decimal(tax['am_bidrag']):,.2f}")
            print(f"Municipal Tax:     DKK {Decimal(tax['municipal_tax']):,.2f}")
            print(f"Bottom Tax:        DKK {Decimal(tax['bottom_tax']):,.2f}")
            print(f"Top Tax:           DKK {Decimal(tax['top_tax']):,.2f}")
            print(f"7P Reduction:      DKK {Decimal(tax['tax_7p_reduction']):,.2f}")
            print(f"TOTAL TAX:         DKK {Decimal(tax['total_tax']):,.2f}")
            print(f"Effective Rate:    {Decimal(tax['effective_tax_rate']) * 100:.1f}%")

        summary = report["summary"]
        print("\nKey Dates:")
        for date_type, date_val in summary["key_dates"].items():
            print(f"  {date_type.replace('_', ' ').title()}: {date_val}")

        print("\n" + "=" * 70)
