"""
Base statement parser interface and common errors.
"""

import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..schemas.transactions import ParseResult


class StatementImportError(Exception):
    """Base class for errors that abort the import of a whole file."""

    pass


class UnsupportedFormatError(StatementImportError):
    """No parser recognizes the uploaded file."""

    pass


class StatementParseError(StatementImportError):
    """The file claims a format but is structurally broken."""

    pass


class ExtractionFailedError(StatementImportError):
    """The external document extractor failed or returned nothing usable."""

    pass


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a statement amount string to Decimal.

    Accepts "1234.56", "1234,56", "1.234,56", "1,234.56", currency
    symbols and a leading sign. The right-most separator is taken as
    the decimal separator.
    """
    if value is None:
        return None
    cleaned = re.sub(r"[^\d.,+\-]", "", value.strip())
    if not cleaned or not re.search(r"\d", cleaned):
        return None

    sign = ""
    if cleaned[0] in "+-":
        sign, cleaned = cleaned[0], cleaned[1:]
    elif cleaned.endswith("-"):
        # Some banks put the sign behind the amount
        sign, cleaned = "-", cleaned[:-1]

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma > last_dot:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        amount = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None
    return -amount if sign == "-" else amount


DATE_FORMATS = [
    "%Y-%m-%d",  # 2024-11-18
    "%Y%m%d",  # 20241118
    "%d-%m-%Y",  # 18-11-2024
    "%d.%m.%Y",  # 18.11.2024
    "%d/%m/%Y",  # 18/11/2024
    "%Y/%m/%d",  # 2024/11/18
]


def parse_date(value: Optional[str], formats: Optional[list[str]] = None) -> Optional[date]:
    """Parse a date string using the first matching format."""
    if not value:
        return None
    value = value.strip()
    # Drop a time component (ISO datetimes in XML)
    if "T" in value and len(value) > 10:
        value = value.split("T", 1)[0]
    for fmt in formats or DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    collapsed = " ".join(value.split())
    return collapsed or None


class BaseStatementParser(ABC):
    """
    Base class for all statement parsers.

    Each parser implements one statement format:
    - MT940 tagged lines
    - CAMT.053 XML
    - Delimited text (CSV)
    - Scanned documents via an external extractor

    Parsers are pure: the same input always yields the same ParseResult.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Format name for logging and reports."""
        pass

    @abstractmethod
    def can_parse(self, content: str, filename: str = "") -> bool:
        """
        Check if this parser recognizes the given content.

        Args:
            content: Decoded file content
            filename: Original file name (extension is a strong hint)

        Returns:
            True if this parser should be used
        """
        pass

    @abstractmethod
    def parse(self, content: str, file_bytes: Optional[bytes] = None) -> ParseResult:
        """
        Parse statement content into raw transactions.

        Args:
            content: Decoded file content
            file_bytes: Original file bytes

        Returns:
            ParseResult with transactions and skipped-line warnings

        Raises:
            StatementParseError: if the file is structurally broken
        """
        pass
