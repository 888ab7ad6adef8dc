"""Tests for the annual tax reporter."""

import json
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from equity_tax.data.records import Dataset, Lot, Transaction, TransactionType
from equity_tax.tax.capital_gains import CapitalGainsReportGenerator
from equity_tax.tax.danish_tax import TaxInput
from equity_tax.tax.dividends import DividendTaxReportGenerator
from equity_tax.tax.tax_reporter import TaxReporter


@pytest.fixture
def dataset():
    lots = [Lot("MSFT", date(2023, 1, 5), Decimal("100"), Decimal("1000"))]
    transactions = [
        Transaction(TransactionType.SALE, date(2024, 3, 15), "MSFT", Decimal("40"), Decimal("30")),
        Transaction(TransactionType.DIVIDEND, date(2024, 3, 14), "MSFT", amount=Decimal("100")),
        Transaction(TransactionType.WITHHOLDING, date(2024, 3, 14), "MSFT", amount=Decimal("-15")),
    ]
    return Dataset.from_records(lots, transactions)


@pytest.fixture
def reporter(dataset, rate_service, tmp_path):
    """Reporter writing to a temp directory; every rate is 7."""
    return TaxReporter(
        CapitalGainsReportGenerator(dataset, rate_service),
        DividendTaxReportGenerator(dataset, rate_service),
        reports_dir=tmp_path / "reports",
    )


class TestTaxReporter:
    """Tests for report assembly and export."""

    def test_generate_annual_report(self, reporter):
        """Test the report sections."""
        report = reporter.generate_annual_report(2024)

        assert report["year"] == 2024
        assert report["capital_gains"]["n_disposals"] == 1
        # (1200 - 400) x 7
        assert Decimal(report["capital_gains"]["net_dkk"]) == Decimal("5600")
        assert Decimal(report["dividend_income"]["gross_dividends_dkk"]) == Decimal("700")
        assert report["income_tax"] is None
        assert Decimal(report["summary"]["boxes"]["454"]) == Decimal("5600")
        assert Decimal(report["summary"]["boxes"]["496"]) == Decimal("105")
        assert report["summary"]["key_dates"]["tax_return_deadline"] == "2025-05-01"

    def test_income_tax_section(self, reporter):
        """Test the optional income tax section."""
        tax_input = TaxInput.create("600000", year=2024)
        report = reporter.generate_annual_report(2024, tax_input=tax_input)

        assert Decimal(report["income_tax"]["total_tax"]) == Decimal("234303.07")
        assert "income_tax_total_dkk" in report["summary"]

    def test_export_json(self, reporter):
        """Test JSON export."""
        report = reporter.generate_annual_report(2024)
        path = reporter.export_json(report)

        assert path.name == "tax_report_2024.json"
        with open(path) as f:
            loaded = json.load(f)
        assert loaded["capital_gains"]["net_dkk"] == report["capital_gains"]["net_dkk"]

    def test_export_csv(self, reporter):
        """Test CSV export."""
        report = reporter.generate_annual_report(2024)
        paths = reporter.export_csv(report)

        gains = pd.read_csv(paths["capital_gains"])
        assert len(gains) == 1
        assert gains.loc[0, "ticker"] == "MSFT"

        dividends = pd.read_csv(paths["dividends"])
        assert sorted(dividends["type"]) == ["dividend", "withholding"]

    def test_export_csv_empty_year(self, reporter):
        """Test a year without activity still writes headers."""
        report = reporter.generate_annual_report(2023)
        paths = reporter.export_csv(report)

        gains = pd.read_csv(paths["capital_gains"])
        assert gains.empty
        assert "gain_loss_dkk" in gains.columns

    def test_print_report(self, reporter, capsys):
        """Test console output."""
        reporter.print_report(reporter.generate_annual_report(2024))
        out = capsys.readouterr().out

        assert "DANISH TAX REPORT - 2024" in out
        assert "RUBRIK 454" in out
