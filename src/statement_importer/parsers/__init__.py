"""
Statement parsers.

Each parser turns one bank statement format into RawTransactions.
"""

from .base import (
    BaseStatementParser,
    ExtractionFailedError,
    StatementImportError,
    StatementParseError,
    UnsupportedFormatError,
)
from .camt import CAMTParser
from .csv_parser import CSVStatementParser
from .detector import FormatDetector, decode_content
from .document import DocumentExtractor, DocumentStatementParser
from .mt940 import MT940Parser

__all__ = [
    "BaseStatementParser",
    "CAMTParser",
    "CSVStatementParser",
    "DocumentExtractor",
    "DocumentStatementParser",
    "ExtractionFailedError",
    "FormatDetector",
    "MT940Parser",
    "StatementImportError",
    "StatementParseError",
    "UnsupportedFormatError",
    "decode_content",
]
