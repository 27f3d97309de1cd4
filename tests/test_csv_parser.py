"""Tests for the delimited-text statement parser."""

from datetime import date
from decimal import Decimal

import pytest
from fixtures import get_csv_sample

from statement_importer.parsers import CSVStatementParser, StatementParseError
from statement_importer.parsers.base import parse_amount, parse_date
from statement_importer.parsers.csv_parser import map_columns, sniff_delimiter


class TestParseAmount:
    """Tests for amount notation handling."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1234.56", "1234.56"),
            ("1234,56", "1234.56"),
            ("1.234,56", "1234.56"),
            ("1,234.56", "1234.56"),
            ("-605,00", "-605.00"),
            ("€ 12,50", "12.50"),
            ("12,50-", "-12.50"),
        ],
    )
    def test_notations(self, value, expected):
        assert parse_amount(value) == Decimal(expected)

    def test_invalid(self):
        assert parse_amount("n/a") is None
        assert parse_amount(None) is None


class TestParseDate:
    """Tests for date parsing."""

    def test_formats(self):
        assert parse_date("2024-01-15") == date(2024, 1, 15)
        assert parse_date("20240115") == date(2024, 1, 15)
        assert parse_date("15-01-2024") == date(2024, 1, 15)
        assert parse_date("15.01.2024") == date(2024, 1, 15)

    def test_datetime_value(self):
        assert parse_date("2024-01-15T08:30:00") == date(2024, 1, 15)

    def test_invalid(self):
        assert parse_date("yesterday") is None
        assert parse_date("") is None


class TestHeaderMapping:
    """Tests for delimiter sniffing and column mapping."""

    def test_sniff_delimiter(self):
        assert sniff_delimiter("Date;Name;Amount\n") == ";"
        assert sniff_delimiter("Date,Name,Amount\n") == ","
        assert sniff_delimiter("Date\tAmount\n") == "\t"
        assert sniff_delimiter("Amount\n") == ","

    def test_dutch_headers(self):
        columns = map_columns(["Datum", "Naam / Omschrijving", "Tegenrekening", "Af Bij", "Bedrag (EUR)", "Mededelingen"])
        assert columns["date"] == 0
        assert columns["name"] == 1
        assert columns["account"] == 2
        assert columns["indicator"] == 3
        assert columns["amount"] == 4
        assert columns["description"] == 5


class TestCSVStatementParser:
    """Tests for CSV parsing."""

    def test_scenario_file(self):
        result = CSVStatementParser().parse(get_csv_sample())
        assert result.format == "csv"
        assert result.skipped == 0
        assert len(result.transactions) == 2

        payment, supplier = result.transactions
        assert payment.transaction_date == date(2024, 1, 15)
        assert payment.amount == Decimal("1210.00")
        assert payment.counterparty_name == "Example Customer"
        assert payment.counterparty_account_ref == "NL20INGB0001234567"
        assert payment.description == "Payment INV-2024-001"
        assert supplier.amount == Decimal("-605.00")
        assert supplier.counterparty_name == "Example Supplier"

    def test_debit_credit_indicator_column(self):
        content = (
            "Datum,Naam / Omschrijving,Af Bij,Bedrag (EUR),Mededelingen\n"
            "20240201,Albert Heijn,Af,\"23,40\",Boodschappen\n"
            "20240202,Werkgever BV,Bij,\"2500,00\",Salaris\n"
        )
        result = CSVStatementParser().parse(content)
        assert [tx.amount for tx in result.transactions] == [Decimal("-23.40"), Decimal("2500.00")]
        assert result.transactions[0].description == "Boodschappen"

    def test_bad_rows_are_skipped(self):
        content = (
            "Date;Amount;Description\n"
            "2024-01-01;10,00;ok\n"
            "not-a-date;10,00;bad date\n"
            "2024-01-02;abc;bad amount\n"
            ";;\n"
            "2024-01-03;0,00;zero\n"
        )
        result = CSVStatementParser().parse(content)
        assert len(result.transactions) == 1
        assert result.skipped == 3
        assert [w.location for w in result.warnings] == ["line 3", "line 4", "line 6"]

    def test_description_falls_back_to_name(self):
        content = "Date;Name;Amount\n2024-01-01;Someone;5,00\n"
        tx = CSVStatementParser().parse(content).transactions[0]
        assert tx.description == "Someone"

    def test_missing_required_columns(self):
        with pytest.raises(StatementParseError, match="amount"):
            CSVStatementParser().parse("Date;Description\n2024-01-01;x\n")

    def test_empty_file(self):
        with pytest.raises(StatementParseError):
            CSVStatementParser().parse("\ufeff  \n")

    def test_can_parse_by_extension(self):
        assert CSVStatementParser().can_parse("", "export.CSV")
        assert not CSVStatementParser().can_parse("Date;Amount", "export.txt")
