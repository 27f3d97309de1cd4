"""
Transaction fingerprint generation (CRITICAL).

This module defines THE deterministic dedup key for bank transactions.
This is the ONLY way to generate fingerprints in the system.

Hash components (in order, pipe separated):
1. transaction date: YYYY-MM-DD
2. amount: signed, normalized to 2 decimal places
3. counterparty: normalized account reference (IBAN), else normalized name
4. reference: source reference from the bank, else normalized description

The fingerprint must be:
- Stable: Same statement line always produces the same output
- Insensitive to whitespace and casing noise in free text
- Reproducible: Can be regenerated from stored data
"""

import hashlib
import re
from decimal import Decimal

from .transactions import RawTransaction, quantize_amount

FINGERPRINT_SEPARATOR = "|"

_WHITESPACE = re.compile(r"\s+")


def _normalize_amount(amount: Decimal) -> str:
    """Signed amount with exactly 2 decimal places."""
    if not isinstance(amount, Decimal):
        raise TypeError(f"amount must be Decimal, got: {type(amount).__name__}")
    return f"{quantize_amount(amount):.2f}"


def normalize_text(value: str | None) -> str:
    """Normalize free text for hashing (lowercase, collapse whitespace)."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip().lower()


def normalize_account_ref(value: str | None) -> str:
    """Normalize an account reference (IBAN): no whitespace, upper case."""
    if not value:
        return ""
    return _WHITESPACE.sub("", value).upper()


def compute_fingerprint(
    transaction_date: str,
    amount: Decimal,
    counterparty_account_ref: str | None = None,
    counterparty_name: str | None = None,
    source_reference: str | None = None,
    description: str | None = None,
) -> str:
    """
    Compute the deterministic fingerprint of a statement line.

    Args:
        transaction_date: Transaction date (YYYY-MM-DD)
        amount: Signed transaction amount
        counterparty_account_ref: Counterparty IBAN/account number
        counterparty_name: Counterparty name (used when no account ref)
        source_reference: Bank reference (used in preference to description)
        description: Free-text description

    Returns:
        64-character lowercase hex SHA256 hash

    Examples:
        >>> compute_fingerprint("2024-01-15", Decimal("10.50"), "NL91 ABNA 0417 1643 00")
        '3f1c...'  # Deterministic hash
    """
    if not transaction_date or len(transaction_date) != 10:
        raise ValueError(f"transaction_date must be in YYYY-MM-DD format, got: {transaction_date}")

    counterparty = normalize_account_ref(counterparty_account_ref) or normalize_text(
        counterparty_name
    )
    reference = (source_reference or "").strip() or normalize_text(description)

    canonical = FINGERPRINT_SEPARATOR.join(
        [
            transaction_date,
            _normalize_amount(amount),
            counterparty,
            reference,
        ]
    )

    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def fingerprint_transaction(transaction: RawTransaction) -> str:
    """Compute the fingerprint of a parsed transaction."""
    return compute_fingerprint(
        transaction_date=transaction.transaction_date.isoformat(),
        amount=transaction.amount,
        counterparty_account_ref=transaction.counterparty_account_ref,
        counterparty_name=transaction.counterparty_name,
        source_reference=transaction.source_reference,
        description=transaction.description,
    )
