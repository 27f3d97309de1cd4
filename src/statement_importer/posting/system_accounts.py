"""
System ledger accounts and the default chart of accounts.

System accounts (bank, debtors, creditors, VAT) are identified by code
in the configuration and resolved to ids against the chart at posting
time.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from statement_importer.schemas.transactions import Account, AccountType

if TYPE_CHECKING:
    from statement_importer.config import LedgerConfig
    from statement_importer.state_store import StateStore

logger = logging.getLogger(__name__)


class SystemAccountMissingError(Exception):
    """A required system account does not exist in the chart of accounts."""

    pass


# Dutch standard chart (subset), seeded by `statement-importer init`
DEFAULT_CHART: tuple[tuple[str, str, AccountType], ...] = (
    ("1100", "Bank", AccountType.ASSET),
    ("1300", "Debtors", AccountType.ASSET),
    ("1450", "VAT receivable", AccountType.ASSET),
    ("1500", "Creditors", AccountType.LIABILITY),
    ("1530", "VAT payable", AccountType.LIABILITY),
    ("1800", "Private withdrawals", AccountType.EQUITY),
    ("4210", "Software and subscriptions", AccountType.EXPENSE),
    ("4220", "Telephone and internet", AccountType.EXPENSE),
    ("4300", "Travel and parking", AccountType.EXPENSE),
    ("4310", "Car expenses", AccountType.EXPENSE),
    ("4600", "Insurance", AccountType.EXPENSE),
    ("4700", "Office supplies", AccountType.EXPENSE),
    ("4900", "Sundry expenses", AccountType.EXPENSE),
    ("4999", "General expenses", AccountType.EXPENSE),
    ("8000", "Revenue", AccountType.REVENUE),
)


def ensure_default_chart(store: StateStore) -> int:
    """Create the default chart accounts that do not exist yet.

    Returns:
        Number of accounts created
    """
    created = 0
    for code, name, account_type in DEFAULT_CHART:
        if store.get_account_by_code(code) is None:
            store.add_account(code, name, account_type)
            created += 1
    if created:
        logger.info("Seeded %d chart of accounts entries", created)
    return created


class SystemAccounts:
    """Resolves configured system account codes to chart accounts."""

    def __init__(self, store: StateStore, ledger: LedgerConfig) -> None:
        self.store = store
        self.ledger = ledger

    def require(self, code: str, purpose: str) -> Account:
        """Look up an active account by code.

        Raises:
            SystemAccountMissingError: if the account is missing or inactive
        """
        account = self.store.get_account_by_code(code)
        if account is None or not account.is_active:
            raise SystemAccountMissingError(
                f"System account {code} ({purpose}) is missing from the chart of accounts"
            )
        return account

    def bank(self, bank_account_id: int) -> int:
        """Ledger account of a bank account (configured bank code as fallback)."""
        bank_account = self.store.get_bank_account(bank_account_id)
        if bank_account is not None and bank_account.ledger_account_id is not None:
            return bank_account.ledger_account_id
        return self.require(self.ledger.bank_code, "bank").id

    def debtors(self) -> int:
        return self.require(self.ledger.debtors_code, "debtors").id

    def creditors(self) -> int:
        return self.require(self.ledger.creditors_code, "creditors").id

    def vat_payable(self) -> int:
        return self.require(self.ledger.vat_payable_code, "VAT payable").id

    def vat_receivable(self) -> int:
        return self.require(self.ledger.vat_receivable_code, "VAT receivable").id

    def receivable_or_payable(self, is_income: bool) -> int:
        """Debtors for money in, creditors for money out."""
        return self.debtors() if is_income else self.creditors()

    def vat_account(self, is_income: bool) -> int:
        """VAT payable on income, VAT receivable on expenses."""
        return self.vat_payable() if is_income else self.vat_receivable()
