"""
Delimited-text (CSV) statement parser.

Bank CSV exports differ per bank in delimiter, column order, header
language and amount notation. Columns are identified by header name
(English or Dutch synonyms, case-insensitive); only Date and Amount are
required.
"""

import csv
import io
import logging
from typing import Optional

from ..schemas.transactions import ParseResult, RawTransaction
from .base import BaseStatementParser, StatementParseError, clean_text, parse_amount, parse_date

logger = logging.getLogger(__name__)

DELIMITERS = ",;\t|"

# Header synonyms per logical column, most specific first
COLUMN_SYNONYMS: dict[str, tuple[str, ...]] = {
    "date": (
        "date", "datum", "transaction date", "booking date", "boekdatum",
        "transactiedatum", "value date", "valutadatum", "rentedatum",
    ),
    "amount": ("amount", "bedrag", "amount (eur)", "bedrag (eur)", "transactiebedrag"),
    "description": (
        "description", "omschrijving", "mededelingen", "memo", "details",
        "remittance information", "omschrijving-1",
    ),
    "name": (
        "name", "naam", "tegenpartij", "counterparty", "naam tegenpartij",
        "naam / omschrijving", "payee", "beneficiary",
    ),
    "account": (
        "tegenrekening", "counterparty account", "tegenrekening iban", "iban",
        "account", "rekening", "counterparty iban",
    ),
    "reference": ("reference", "referentie", "kenmerk", "transaction id", "transactiereferentie"),
    "indicator": ("af bij", "af/bij", "debit/credit", "credit/debit", "d/c", "cd"),
}

DEBIT_MARKERS = {"af", "d", "debit", "dbit", "debet"}
CREDIT_MARKERS = {"bij", "c", "credit", "crdt"}


def sniff_delimiter(content: str) -> str:
    """Pick the delimiter that occurs most often in the header line."""
    header = content.splitlines()[0] if content else ""
    counts = {delimiter: header.count(delimiter) for delimiter in DELIMITERS}
    best = max(DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] else ","


def map_columns(header: list[str]) -> dict[str, int]:
    """
    Map logical columns to header positions.

    Returns:
        Dict of logical column name -> index, for the columns found
    """
    normalized = [" ".join(cell.strip().lower().split()) for cell in header]
    mapping: dict[str, int] = {}
    for column, synonyms in COLUMN_SYNONYMS.items():
        for synonym in synonyms:
            if synonym in normalized:
                index = normalized.index(synonym)
                if index not in mapping.values():
                    mapping[column] = index
                    break
    return mapping


class CSVStatementParser(BaseStatementParser):
    """Parse delimited bank exports into raw transactions."""

    @property
    def name(self) -> str:
        return "csv"

    def can_parse(self, content: str, filename: str = "") -> bool:
        return filename.lower().endswith(".csv")

    def parse(self, content: str, file_bytes: Optional[bytes] = None) -> ParseResult:
        result = ParseResult(format=self.name)
        content = content.lstrip("\ufeff")
        if not content.strip():
            raise StatementParseError("CSV file is empty")

        delimiter = sniff_delimiter(content)
        rows = list(csv.reader(io.StringIO(content), delimiter=delimiter))
        if not rows:
            raise StatementParseError("CSV file is empty")

        columns = map_columns(rows[0])
        missing = [name for name in ("date", "amount") if name not in columns]
        if missing:
            raise StatementParseError(
                f"CSV header lacks required column(s): {', '.join(missing)} "
                f"(header: {rows[0]!r})"
            )

        for line_number, row in enumerate(rows[1:], start=2):
            if not any(cell.strip() for cell in row):
                continue
            transaction = self._parse_row(row, columns, f"line {line_number}", result)
            if transaction is not None:
                result.transactions.append(transaction)

        logger.debug(
            "CSV (delimiter %r): %d transactions, %d skipped",
            delimiter,
            len(result.transactions),
            result.skipped,
        )
        return result

    def _parse_row(
        self, row: list[str], columns: dict[str, int], location: str, result: ParseResult
    ) -> Optional[RawTransaction]:
        def cell(column: str) -> Optional[str]:
            index = columns.get(column)
            if index is None or index >= len(row):
                return None
            return clean_text(row[index])

        transaction_date = parse_date(cell("date"))
        if transaction_date is None:
            result.skip(location, f"invalid date {cell('date')!r}")
            return None

        amount = parse_amount(cell("amount"))
        if amount is None:
            result.skip(location, f"invalid amount {cell('amount')!r}")
            return None

        indicator = (cell("indicator") or "").lower()
        if indicator in DEBIT_MARKERS:
            amount = -abs(amount)
        elif indicator in CREDIT_MARKERS:
            amount = abs(amount)

        if amount == 0:
            result.skip(location, "zero amount")
            return None

        name = cell("name")
        account = cell("account")
        return RawTransaction(
            transaction_date=transaction_date,
            amount=amount,
            description=cell("description") or name or "Bank transaction",
            counterparty_name=name,
            counterparty_account_ref=account.replace(" ", "").upper() if account else None,
            source_reference=cell("reference"),
        )
