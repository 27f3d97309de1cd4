"""
Schemas for statement import.

Defines:
- RawTransaction: canonical parsed statement line
- MatchCandidate: matcher output
- JournalEntry / JournalLine: double-entry postings
- Fingerprint generation (dedup key)
"""

from .fingerprint import (
    compute_fingerprint,
    fingerprint_transaction,
    normalize_account_ref,
    normalize_text,
)
from .transactions import (
    CURRENCY_PRECISION,
    Account,
    AccountProposal,
    AccountType,
    CandidateKind,
    Contact,
    InvoiceDirection,
    JournalEntry,
    JournalLine,
    MatchCandidate,
    OpenInvoice,
    ParseResult,
    ParseWarning,
    RawTransaction,
    StoredBankTransaction,
    TransactionStatus,
    quantize_amount,
)

__all__ = [
    "CURRENCY_PRECISION",
    "Account",
    "AccountProposal",
    "AccountType",
    "CandidateKind",
    "Contact",
    "InvoiceDirection",
    "JournalEntry",
    "JournalLine",
    "MatchCandidate",
    "OpenInvoice",
    "ParseResult",
    "ParseWarning",
    "RawTransaction",
    "StoredBankTransaction",
    "TransactionStatus",
    "compute_fingerprint",
    "fingerprint_transaction",
    "normalize_account_ref",
    "normalize_text",
    "quantize_amount",
]
