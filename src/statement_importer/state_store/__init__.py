"""
State Store (SQLite-based).

Persistent DB standing in for the ledger collaborators:
- Chart of accounts, contacts, invoices
- Imported bank transactions (unique per bank account + fingerprint)
- Journal entries and lines
- Notifications and import run audit trail
"""

from .sqlite_store import (
    BankAccountRecord,
    BankRuleRecord,
    BookingHistory,
    ImportRunRecord,
    InvoiceNotOpenError,
    NotificationRecord,
    RuleMatchType,
    StaleRecordError,
    StateStore,
)

__all__ = [
    "BankAccountRecord",
    "BankRuleRecord",
    "BookingHistory",
    "ImportRunRecord",
    "InvoiceNotOpenError",
    "NotificationRecord",
    "RuleMatchType",
    "StaleRecordError",
    "StateStore",
]
