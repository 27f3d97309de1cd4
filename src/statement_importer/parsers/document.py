"""
Scanned-document statement parser.

PDF and image statements cannot be parsed deterministically; the bytes
are handed to an external DocumentExtractor (OCR or vision model) which
returns raw transactions. Any failure of the extractor is fatal to the
file.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..schemas.transactions import ParseResult, RawTransaction
from .base import BaseStatementParser, ExtractionFailedError

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = (".pdf", ".png", ".jpg", ".jpeg")


class DocumentExtractor(ABC):
    """External collaborator that turns a scanned statement into transactions."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor name for logging."""
        pass

    @abstractmethod
    def extract(self, file_bytes: bytes, filename: str) -> list[RawTransaction]:
        """
        Extract statement lines from a document.

        Args:
            file_bytes: Original file bytes
            filename: Original file name

        Returns:
            Parsed transactions (may raise on failure)
        """
        pass


class DocumentStatementParser(BaseStatementParser):
    """Parse scanned statements through a DocumentExtractor."""

    def __init__(self, extractor: DocumentExtractor):
        self.extractor = extractor

    @property
    def name(self) -> str:
        return "document"

    def can_parse(self, content: str, filename: str = "") -> bool:
        return filename.lower().endswith(DOCUMENT_EXTENSIONS)

    def parse(
        self, content: str, file_bytes: Optional[bytes] = None, filename: str = ""
    ) -> ParseResult:
        if not file_bytes:
            raise ExtractionFailedError("Document parser requires the original file bytes")

        try:
            extracted = self.extractor.extract(file_bytes, filename)
        except Exception as e:
            raise ExtractionFailedError(
                f"Document extractor {self.extractor.name!r} failed: {e}"
            ) from e

        if not extracted:
            raise ExtractionFailedError(
                f"Document extractor {self.extractor.name!r} returned no transactions"
            )
        invalid = [item for item in extracted if not isinstance(item, RawTransaction)]
        if invalid:
            raise ExtractionFailedError(
                f"Document extractor {self.extractor.name!r} returned "
                f"{len(invalid)} invalid item(s)"
            )

        logger.debug("Document extractor %s: %d transactions", self.extractor.name, len(extracted))
        return ParseResult(transactions=list(extracted), format=self.name)
