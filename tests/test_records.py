"""Tests for input records and CSV loaders."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from equity_tax.data.records import (
    Dataset,
    Disposal,
    Lot,
    Transaction,
    TransactionType,
    load_dataset,
    parse_date,
    to_decimal,
)
from equity_tax.exceptions import ValidationError


class TestConversions:
    """Tests for boundary value conversion."""

    def test_float_goes_through_str(self):
        """Test that floats do not carry binary noise into Decimal."""
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")

    def test_formatted_string(self):
        """Test thousands separators and currency signs."""
        assert to_decimal("$1,234.50") == Decimal("1234.50")

    def test_missing_value(self):
        """Test missing values raise unless a default is given."""
        with pytest.raises(ValidationError):
            to_decimal("")
        assert to_decimal("", Decimal("0")) == Decimal("0")
        assert to_decimal(float("nan"), Decimal("0")) == Decimal("0")

    def test_invalid_value(self):
        """Test garbage input."""
        with pytest.raises(ValidationError):
            to_decimal("abc")

    def test_parse_date(self):
        """Test date parsing."""
        assert parse_date("2024-03-15") == date(2024, 3, 15)
        assert parse_date(datetime(2024, 3, 15, 10, 30)) == date(2024, 3, 15)
        with pytest.raises(ValidationError):
            parse_date("not a date")


class TestRecords:
    """Tests for record dataclasses."""

    def test_transaction_type_labels(self):
        """Test broker labels map to transaction types."""
        assert TransactionType.from_label("Dividend (Cash)") is TransactionType.DIVIDEND
        assert TransactionType.from_label("IRS Nonresident Alien Withholding") is TransactionType.WITHHOLDING
        assert TransactionType.from_label("Sale") is TransactionType.SALE
        assert TransactionType.from_label("Journal") is TransactionType.OTHER

    def test_lot_validation(self):
        """Test that a lot needs a positive quantity."""
        with pytest.raises(ValidationError):
            Lot("MSFT", date(2024, 1, 1), Decimal("0"), Decimal("100"))
        with pytest.raises(ValidationError):
            Lot("MSFT", date(2024, 1, 1), Decimal("10"), Decimal("-1"))

    def test_lot_serialization(self):
        """Test lot persistence format."""
        lot = Lot("MSFT", date(2024, 1, 1), Decimal("10"), Decimal("1234.56"), lot_number=7, sequence=3)
        assert Lot.from_dict(lot.to_dict()) == lot

    def test_disposal_net_proceeds(self):
        """Test fees reduce proceeds."""
        disposal = Disposal("MSFT", date(2024, 1, 1), Decimal("10"), Decimal("4000"), Decimal("5"))
        assert disposal.net_proceeds == Decimal("3995")

    def test_sale_without_amount(self):
        """Test a sale without amount uses quantity times price."""
        tx = Transaction(
            type=TransactionType.SALE,
            date=date(2024, 3, 15),
            ticker="MSFT",
            quantity=Decimal("-10"),
            price=Decimal("400.25"),
        )
        disposal = tx.to_disposal(sequence=4)
        assert disposal.quantity == Decimal("10")
        assert disposal.proceeds == Decimal("4002.50")
        assert disposal.sequence == 4

    def test_non_sale_to_disposal(self):
        """Test that only sales convert to disposals."""
        tx = Transaction(TransactionType.DIVIDEND, date(2024, 3, 15), "MSFT", amount=Decimal("10"))
        with pytest.raises(ValidationError):
            tx.to_disposal()


class TestDataset:
    """Tests for the dataset snapshot and loaders."""

    @pytest.fixture
    def data_dir(self, tmp_path):
        """Write normalized CSV files."""
        (tmp_path / "lots.csv").write_text(
            "ticker,acquisition_date,quantity,cost_basis,currency,lot_number\n"
            "msft,2023-01-05,100,1000,USD,1\n"
            "MSFT,2023-06-01,100,2000,USD,\n"
            "AAPL,2023-02-01,10,1500,,\n"
        )
        (tmp_path / "transactions.csv").write_text(
            "type,date,ticker,quantity,price,amount,fees,currency,id\n"
            "Sale,2024-03-15,MSFT,150,30,,1.5,USD,t1\n"
            "Dividend (Cash),2024-03-14,MSFT,,,100,,USD,t2\n"
            "Tax Withholding,2024-03-14,MSFT,,,-15,,USD,t3\n"
            "Dividend,2023-12-14,MSFT,,,90,,USD,t4\n"
        )
        (tmp_path / "grants.csv").write_text(
            "ticker,grant_date,vest_date,shares,cost_basis,currency,covered_by_7p\n"
            "MSFT,2022-09-01,2024-02-29,20,8000,USD,true\n"
        )
        return tmp_path

    def test_load_dataset(self, data_dir):
        """Test loading all three files."""
        dataset = load_dataset(data_dir)

        assert len(dataset.lots) == 3
        assert len(dataset.transactions) == 4
        assert len(dataset.grants) == 1
        assert dataset.tickers() == ["AAPL", "MSFT"]
        assert [lot.sequence for lot in dataset.lots] == [0, 1, 2]
        assert dataset.lots[0].lot_number == 1
        assert dataset.lots[1].lot_number is None
        assert dataset.grants[0].covered_by_7p

    def test_disposals_for(self, data_dir):
        """Test sale transactions become disposals."""
        dataset = load_dataset(data_dir)
        disposals = dataset.disposals_for("MSFT")

        assert len(disposals) == 1
        assert disposals[0].proceeds == Decimal("4500")
        assert disposals[0].net_proceeds == Decimal("4498.5")
        assert disposals[0].transaction_id == "t1"

    def test_transactions_in_year(self, data_dir):
        """Test year filtering."""
        dataset = load_dataset(data_dir)

        assert len(dataset.transactions_in_year(TransactionType.DIVIDEND, 2024)) == 1
        assert len(dataset.transactions_in_year(TransactionType.DIVIDEND, 2023)) == 1
        assert len(dataset.transactions_in_year(TransactionType.WITHHOLDING, 2024)) == 1

    def test_missing_column(self, tmp_path):
        """Test that a file without required columns is rejected."""
        (tmp_path / "lots.csv").write_text("ticker,quantity\nMSFT,10\n")
        with pytest.raises(ValidationError):
            load_dataset(tmp_path)

    def test_empty_directory(self, tmp_path):
        """Test that missing files give an empty dataset."""
        assert load_dataset(tmp_path) == Dataset()
