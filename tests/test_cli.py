"""Smoke tests for the command-line interface."""

from datetime import date

import pytest
import yaml
from click.testing import CliRunner

from equity_tax.cli import cli
from equity_tax.data.exchange_rates import ExchangeRateService

from conftest import FakeProvider


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    """Records plus manual rates for every date they use."""
    (tmp_path / "lots.csv").write_text(
        "ticker,acquisition_date,quantity,cost_basis\n"
        "MSFT,2023-01-05,100,1000\n"
        "MSFT,2023-06-01,100,2000\n"
    )
    (tmp_path / "transactions.csv").write_text(
        "type,date,ticker,quantity,price,amount\n"
        "Sale,2024-03-15,MSFT,150,30,\n"
        "Dividend,2024-03-14,MSFT,,,100\n"
        "Withholding,2024-03-14,MSFT,,,-15\n"
    )
    service = ExchangeRateService(provider=FakeProvider(), data_dir=tmp_path)
    for day, value in [
        (date(2023, 1, 5), "6.5"),
        (date(2023, 6, 1), "7.0"),
        (date(2024, 3, 14), "7.0"),
        (date(2024, 3, 15), "6.8"),
    ]:
        service.set_manual_rate(day, value)
    return tmp_path


def invoke(runner, data_dir, *args):
    return runner.invoke(cli, ["--data-dir", str(data_dir), *args], obj={})


class TestCLI:
    """Tests for the equity-tax commands."""

    def test_tax_calc(self, runner, tmp_path):
        """Test the tax calculator command."""
        result = invoke(runner, tmp_path, "tax-calc", "--salary", "600000", "--year", "2024")

        assert result.exit_code == 0, result.output
        assert "234,303.07" in result.output

    def test_tax_calc_unknown_year(self, runner, tmp_path):
        """Test engine errors exit non-zero."""
        result = invoke(runner, tmp_path, "tax-calc", "--salary", "600000", "--year", "2019")

        assert result.exit_code == 1
        assert "Invalid tax year" in result.output

    def test_capital_gains(self, runner, data_dir):
        """Test the capital gains command."""
        result = invoke(runner, data_dir, "capital-gains", "--year", "2024")

        assert result.exit_code == 0, result.output
        assert "17,100.00" in result.output

    def test_set_method_changes_report(self, runner, data_dir):
        """Test a method switch applies to the next report."""
        result = invoke(runner, data_dir, "set-method", "msft", "average-cost")
        assert result.exit_code == 0, result.output

        with open(data_dir / "cost_basis_methods.yaml") as f:
            assert yaml.safe_load(f)["methods"] == {"MSFT": "average-cost"}

        result = invoke(runner, data_dir, "capital-gains", "--year", "2024")
        assert "15,225.00" in result.output

    def test_set_method_invalid(self, runner, data_dir):
        """Test an unknown method is rejected by click."""
        result = invoke(runner, data_dir, "set-method", "MSFT", "lifo")
        assert result.exit_code != 0

    def test_positions(self, runner, data_dir):
        """Test the positions command."""
        result = invoke(runner, data_dir, "positions", "--as-of", "2024-12-31")

        assert result.exit_code == 0, result.output
        assert "MSFT: 50 shares" in result.output

    def test_dividends(self, runner, data_dir):
        """Test the dividends command."""
        result = invoke(runner, data_dir, "dividends", "--year", "2024")

        assert result.exit_code == 0, result.output
        assert "700.00" in result.output

    def test_rates(self, runner, tmp_path):
        """Test setting and reading a manual rate."""
        result = invoke(runner, tmp_path, "set-rate", "2024-03-16", "6.55")
        assert result.exit_code == 0, result.output

        result = invoke(runner, tmp_path, "rate", "2024-03-16")
        assert result.exit_code == 0, result.output
        assert "6.55" in result.output

        result = invoke(runner, tmp_path, "cached-rates")
        assert "manual" in result.output

    def test_invalid_rate(self, runner, tmp_path):
        """Test a non-positive manual rate."""
        result = invoke(runner, tmp_path, "set-rate", "2024-03-16", "0")
        assert result.exit_code == 1

    def test_tax_report_json(self, runner, data_dir, tmp_path):
        """Test JSON export of the annual report."""
        reports_dir = tmp_path / "out"
        result = invoke(
            runner, data_dir, "tax-report", "--year", "2024", "--format", "json",
            "--reports-dir", str(reports_dir),
        )

        assert result.exit_code == 0, result.output
        assert (reports_dir / "tax_report_2024.json").exists()

    def test_tax_report_console(self, runner, data_dir):
        """Test console report with the income tax section."""
        result = invoke(
            runner, data_dir, "tax-report", "--year", "2024", "--salary", "600000",
        )

        assert result.exit_code == 0, result.output
        assert "INCOME TAX" in result.output
