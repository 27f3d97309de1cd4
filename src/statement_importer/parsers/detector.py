"""
Format detector - chooses the statement parser for an uploaded file.
"""

import logging
from typing import Optional

from ..schemas.transactions import ParseResult
from .base import BaseStatementParser, UnsupportedFormatError
from .camt import CAMTParser
from .csv_parser import CSVStatementParser
from .document import DocumentExtractor, DocumentStatementParser
from .mt940 import MT940Parser

logger = logging.getLogger(__name__)

# Tried in order when decoding statement bytes
ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


def decode_content(file_bytes: bytes) -> str:
    """Decode statement bytes, falling back through common bank encodings."""
    for encoding in ENCODINGS:
        try:
            return file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    # latin-1 maps every byte, so this is unreachable in practice
    return file_bytes.decode("latin-1", errors="replace")


class FormatDetector:
    """
    Routes a file to the appropriate parser.

    Detection order (first match wins):
    1. XML (extension or content) - CAMT
    2. MT940 markers (extension, name or tagged lines)
    3. .csv extension - delimited text
    4. Scanned document, when a document extractor is configured
    A format hint, when given, bypasses detection.
    """

    def __init__(self, document_extractor: Optional[DocumentExtractor] = None):
        self.parsers: list[BaseStatementParser] = [
            CAMTParser(),
            MT940Parser(),
            CSVStatementParser(),
        ]
        if document_extractor is not None:
            self.parsers.append(DocumentStatementParser(document_extractor))
        self._by_name = {parser.name: parser for parser in self.parsers}

    @property
    def supported_formats(self) -> list[str]:
        return [parser.name for parser in self.parsers]

    def detect(
        self, content: str, filename: str, format_hint: Optional[str] = None
    ) -> BaseStatementParser:
        """
        Choose the parser for decoded content.

        Raises:
            UnsupportedFormatError: if no parser recognizes the file
        """
        if format_hint:
            parser = self._by_name.get(format_hint.lower())
            if parser is None:
                raise UnsupportedFormatError(
                    f"Unknown format {format_hint!r} (supported: "
                    f"{', '.join(self.supported_formats)})"
                )
            return parser

        for parser in self.parsers:
            if parser.can_parse(content, filename):
                logger.debug("Detected format %s for %s", parser.name, filename)
                return parser

        raise UnsupportedFormatError(f"Unrecognized statement format: {filename}")

    def parse(
        self, file_bytes: bytes, filename: str, format_hint: Optional[str] = None
    ) -> ParseResult:
        """Detect the format of a file and parse it."""
        content = decode_content(file_bytes)
        parser = self.detect(content, filename, format_hint)
        if isinstance(parser, DocumentStatementParser):
            return parser.parse(content, file_bytes, filename=filename)
        return parser.parse(content, file_bytes)
