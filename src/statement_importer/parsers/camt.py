"""
CAMT.053 XML statement parser.

Supports the ISO 20022 bank-to-customer statement (camt.053) and the
closely related camt.052/camt.054 reports. All versions share the same
entry structure, so elements are matched by local name and the
namespace (which carries the schema version) is ignored.

One transaction is produced per <Ntry>. For batch entries with several
<TxDtls>, the first transaction detail supplies counterparty and
remittance information.
"""

import logging
import re
from typing import Iterator, Optional
from xml.etree import ElementTree as ET

from ..schemas.transactions import ParseResult, RawTransaction
from .base import BaseStatementParser, StatementParseError, clean_text, parse_amount, parse_date

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Bank transaction"
NOT_PROVIDED = "NOTPROVIDED"

XML_DECLARED_ENCODING = re.compile(r"""^(\s*<\?xml[^>]*?)\s+encoding\s*=\s*["'][^"']*["']""")


def _local(tag: str) -> str:
    """Strip the namespace from an element tag."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _children(elem: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in elem:
        if _local(child.tag) == name:
            yield child


def _find(elem: Optional[ET.Element], path: str) -> Optional[ET.Element]:
    """Follow a slash-separated path of local names (first match at each step)."""
    current = elem
    for name in path.split("/"):
        if current is None:
            return None
        current = next(_children(current, name), None)
    return current


def _text(elem: Optional[ET.Element], path: str) -> Optional[str]:
    found = _find(elem, path)
    if found is None or found.text is None:
        return None
    return clean_text(found.text)


def _iter_local(elem: ET.Element, name: str) -> Iterator[ET.Element]:
    for node in elem.iter():
        if _local(node.tag) == name:
            yield node


class CAMTParser(BaseStatementParser):
    """Parse CAMT.053 XML statements into raw transactions."""

    @property
    def name(self) -> str:
        return "camt"

    def can_parse(self, content: str, filename: str = "") -> bool:
        if filename.lower().endswith(".xml"):
            return True
        head = content.lstrip("\ufeff \t\r\n")[:200]
        return head.startswith("<?xml") or head.startswith("<Document")

    def parse(self, content: str, file_bytes: Optional[bytes] = None) -> ParseResult:
        result = ParseResult(format=self.name)

        root = self._parse_xml(content, file_bytes)

        entries = list(_iter_local(root, "Ntry"))
        for index, entry in enumerate(entries, start=1):
            transaction = self._parse_entry(entry, index, result)
            if transaction is not None:
                result.transactions.append(transaction)

        if entries and not result.transactions:
            raise StatementParseError(
                f"CAMT file contains {len(entries)} entries but none could be parsed"
            )

        logger.debug(
            "CAMT: %d entries, %d transactions, %d skipped",
            len(entries),
            len(result.transactions),
            result.skipped,
        )
        return result

    def _parse_xml(self, content: str, file_bytes: Optional[bytes]) -> ET.Element:
        """
        Parse the raw bytes, so the declared encoding applies.

        Exports that declare UTF-8 but are written in a single-byte Western
        encoding fail on the bytes; those are parsed again from the text the
        detector already decoded, with the declared encoding removed.
        """
        if file_bytes is not None:
            try:
                return ET.fromstring(file_bytes)
            except ET.ParseError as e:
                first_error = e
        else:
            first_error = None

        text = XML_DECLARED_ENCODING.sub(r"\1", content.lstrip("\ufeff"), count=1)
        try:
            root = ET.fromstring(text.encode("utf-8"))
        except ET.ParseError as e:
            raise StatementParseError(f"Malformed CAMT XML: {first_error or e}") from e

        if first_error is not None:
            logger.info("CAMT file is not valid in its declared encoding, parsed decoded text")
        return root

    def _parse_entry(
        self, entry: ET.Element, index: int, result: ParseResult
    ) -> Optional[RawTransaction]:
        location = f"entry {index}"

        amount = parse_amount(_text(entry, "Amt"))
        if amount is None:
            result.skip(location, "missing or invalid amount")
            return None
        if amount == 0:
            result.skip(location, "zero amount")
            return None

        indicator = (_text(entry, "CdtDbtInd") or "").upper()
        if indicator not in ("CRDT", "DBIT"):
            result.skip(location, f"invalid credit/debit indicator {indicator!r}")
            return None
        is_credit = indicator == "CRDT"
        amount = abs(amount) if is_credit else -abs(amount)

        transaction_date = (
            parse_date(_text(entry, "BookgDt/Dt"))
            or parse_date(_text(entry, "BookgDt/DtTm"))
            or parse_date(_text(entry, "ValDt/Dt"))
            or parse_date(_text(entry, "ValDt/DtTm"))
        )
        if transaction_date is None:
            result.skip(location, "missing booking or value date")
            return None

        details = _find(entry, "NtryDtls/TxDtls")

        # The counterparty is whoever sent money in, or received money out
        party_role = "Dbtr" if is_credit else "Cdtr"
        parties = _find(details, "RltdPties")
        counterparty_name = _text(parties, f"{party_role}/Nm") or _text(
            parties, f"{party_role}/Pty/Nm"
        )
        counterparty_account = _text(parties, f"{party_role}Acct/Id/IBAN") or _text(
            parties, f"{party_role}Acct/Id/Othr/Id"
        )
        if counterparty_account:
            counterparty_account = counterparty_account.replace(" ", "").upper()

        return RawTransaction(
            transaction_date=transaction_date,
            amount=amount,
            description=self._description(entry, details),
            counterparty_name=counterparty_name,
            counterparty_account_ref=counterparty_account,
            source_reference=self._reference(entry, details),
        )

    def _description(self, entry: ET.Element, details: Optional[ET.Element]) -> str:
        remittance = _find(details, "RmtInf")
        if remittance is not None:
            lines = [clean_text(node.text) for node in _children(remittance, "Ustrd")]
            joined = " ".join(line for line in lines if line)
            if joined:
                return joined
        return (
            _text(details, "AddtlTxInf")
            or _text(entry, "AddtlNtryInf")
            or DEFAULT_DESCRIPTION
        )

    def _reference(self, entry: ET.Element, details: Optional[ET.Element]) -> Optional[str]:
        reference = (
            _text(entry, "AcctSvcrRef")
            or _text(entry, "NtryRef")
            or _text(details, "Refs/AcctSvcrRef")
        )
        if reference:
            return reference
        end_to_end = _text(details, "Refs/EndToEndId")
        if end_to_end and end_to_end.upper() != NOT_PROVIDED:
            return end_to_end
        return None
