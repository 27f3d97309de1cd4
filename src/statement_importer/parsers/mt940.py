"""
MT940 statement parser.

MT940 is the SWIFT customer statement format most Dutch and German banks
export. A statement is a sequence of tagged fields (":20:", ":25:", ...);
each booked line is a ":61:" statement line optionally followed by a
":86:" information field. Lines that do not start with a tag continue
the previous field.

Only ":61:" / ":86:" pairs produce transactions; header and balance
fields are ignored.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..schemas.transactions import ParseResult, RawTransaction
from .base import BaseStatementParser, clean_text

logger = logging.getLogger(__name__)

# Two-digit years from this value on are read as 19xx, below it as 20xx
YEAR_PIVOT = 70

TAG_PATTERN = re.compile(r"^:(\d{2}[A-Z]?):")

# :61: value date, optional entry date, mark, optional funds code, amount,
# transaction type, customer reference, optional //bank reference
STATEMENT_LINE_PATTERN = re.compile(
    r"^(?P<value_date>\d{6})"
    r"(?P<entry_date>\d{4})?"
    r"(?P<mark>RC|RD|C|D)"
    r"(?P<funds_code>[A-Z])?"
    r"(?P<amount>\d+(?:,\d*)?)"
    r"(?P<type_code>[NSF][A-Z0-9]{3})?"
    r"(?P<customer_ref>.*?)"
    r"(?://(?P<bank_ref>.*))?$"
)

# Label style :86: ("NAME: ... IBAN: ... REMI: ...")
LABEL_NAME = re.compile(r"NAME:\s*(.+?)\s*(?:IBAN:|REMI:|BIC:|$)", re.IGNORECASE)
LABEL_IBAN = re.compile(r"IBAN:\s*([A-Z]{2}[0-9]{2}[A-Z0-9]{4,30})")
LABEL_REMI = re.compile(r"REMI:\s*(.+?)\s*(?:NAME:|IBAN:|BIC:|$)", re.IGNORECASE)

# Slash style :86: ("/TRTP/.../IBAN/.../NAME/.../REMI/...")
SLASH_KEYS = (
    "TRTP", "IBAN", "BIC", "NAME", "REMI", "EREF", "MARF", "CSID",
    "ORDP", "BENM", "ADDR", "CNTP", "ISDT", "PREF", "RTRN", "SVCL",
)
SLASH_SPLIT = re.compile(r"/(" + "|".join(SLASH_KEYS) + r")/")

NO_REFERENCE = "NONREF"


@dataclass
class _Field:
    tag: str
    value: str
    line_number: int


@dataclass
class InformationDetails:
    """Parsed content of a :86: field."""

    name: Optional[str] = None
    iban: Optional[str] = None
    remittance: Optional[str] = None
    text: str = ""


def _tokenize(content: str) -> list[_Field]:
    """Split content into tagged fields, folding continuation lines."""
    fields: list[_Field] = []
    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.rstrip()
        if not line:
            continue
        match = TAG_PATTERN.match(line)
        if match:
            fields.append(_Field(match.group(1), line[match.end():], line_number))
        elif fields and line not in ("-", "-}"):
            fields[-1].value += "\n" + line
    return fields


def parse_information(text: str) -> InformationDetails:
    """Parse a :86: information field (label or slash style)."""
    flat = " ".join(text.split())
    details = InformationDetails(text=flat)

    if flat.startswith("/"):
        parts = SLASH_SPLIT.split(flat)
        # parts = [prefix, key, value, key, value, ...]
        values: dict[str, str] = {}
        for key, value in zip(parts[1::2], parts[2::2]):
            values.setdefault(key, value.strip(" /"))
        details.name = clean_text(values.get("NAME"))
        details.iban = clean_text(values.get("IBAN"))
        details.remittance = clean_text(values.get("REMI"))
        return details

    name = LABEL_NAME.search(flat)
    if name:
        details.name = clean_text(name.group(1))
    iban = LABEL_IBAN.search(flat)
    if iban:
        details.iban = iban.group(1)
    remi = LABEL_REMI.search(flat)
    if remi:
        details.remittance = clean_text(remi.group(1))
    return details


def _parse_value_date(value: str) -> Optional[date]:
    if len(value) != 6 or not value.isdigit():
        return None
    year = int(value[:2])
    century = 1900 if year >= YEAR_PIVOT else 2000
    try:
        return date(century + year, int(value[2:4]), int(value[4:6]))
    except ValueError:
        return None


def _signed_amount(mark: str, amount: Decimal) -> Decimal:
    # RC reverses a credit (money leaves), RD reverses a debit (money returns)
    if mark in ("D", "RC"):
        return -amount
    return amount


class MT940Parser(BaseStatementParser):
    """Parse MT940 statements into raw transactions."""

    EXTENSIONS = (".sta", ".940", ".mt940", ".swi")

    @property
    def name(self) -> str:
        return "mt940"

    def can_parse(self, content: str, filename: str = "") -> bool:
        lower = filename.lower()
        if lower.endswith(self.EXTENSIONS) or "mt940" in lower:
            return True
        return any(TAG_PATTERN.match(line) for line in content.splitlines()[:50])

    def parse(self, content: str, file_bytes: Optional[bytes] = None) -> ParseResult:
        result = ParseResult(format=self.name)
        fields = _tokenize(content.lstrip("\ufeff"))

        index = 0
        while index < len(fields):
            current = fields[index]
            index += 1
            if current.tag != "61":
                continue

            info: Optional[_Field] = None
            if index < len(fields) and fields[index].tag == "86":
                info = fields[index]
                index += 1

            transaction = self._build_transaction(current, info, result)
            if transaction is not None:
                result.transactions.append(transaction)

        logger.debug(
            "MT940: %d transactions, %d skipped", len(result.transactions), result.skipped
        )
        return result

    def _build_transaction(
        self, statement_line: _Field, info: Optional[_Field], result: ParseResult
    ) -> Optional[RawTransaction]:
        location = f"line {statement_line.line_number}"
        first_line = statement_line.value.split("\n", 1)[0].strip()

        match = STATEMENT_LINE_PATTERN.match(first_line)
        if not match:
            result.skip(location, f"unrecognized :61: statement line {first_line[:40]!r}")
            return None

        transaction_date = _parse_value_date(match.group("value_date"))
        if transaction_date is None:
            result.skip(location, f"invalid value date {match.group('value_date')!r}")
            return None

        try:
            amount = Decimal(match.group("amount").replace(",", "."))
        except InvalidOperation:
            result.skip(location, f"invalid amount {match.group('amount')!r}")
            return None
        if amount == 0:
            result.skip(location, "zero amount")
            return None

        customer_ref = (match.group("customer_ref") or "").strip()
        bank_ref = (match.group("bank_ref") or "").strip()
        source_reference = bank_ref or (
            customer_ref if customer_ref and customer_ref.upper() != NO_REFERENCE else None
        )

        details = parse_information(info.value) if info else InformationDetails()
        description = details.remittance or details.text or "Bank transaction"

        return RawTransaction(
            transaction_date=transaction_date,
            amount=_signed_amount(match.group("mark"), amount),
            description=description,
            counterparty_name=details.name,
            counterparty_account_ref=details.iban,
            source_reference=source_reference,
        )
