"""
Test fixtures for bank statement formats.

This module provides sample statement files for testing:
- MT940 (statement.sta): 10 valid statement lines, 2 malformed (lines 24, 26)
- CAMT.053 (statement_camt053.xml): 3 bookable entries, 1 without amount
- CSV (scenario.csv): invoice payment by "Example Customer" and a payment
  to first-time vendor "Example Supplier"
"""

from datetime import date
from decimal import Decimal
from pathlib import Path

from statement_importer.schemas.transactions import RawTransaction

FIXTURES_DIR = Path(__file__).parent


def load_fixture(name: str) -> str:
    """Load a fixture file as string."""
    filepath = FIXTURES_DIR / name
    return filepath.read_text(encoding="utf-8")


def load_fixture_bytes(name: str) -> bytes:
    """Load a fixture file as bytes."""
    return (FIXTURES_DIR / name).read_bytes()


def get_mt940_sample() -> str:
    return load_fixture("statement.sta")


def get_camt_sample() -> str:
    return load_fixture("statement_camt053.xml")


def get_csv_sample() -> str:
    return load_fixture("scenario.csv")


def make_transaction(
    amount: str = "-45.50",
    description: str = "Statement line",
    counterparty_name: str | None = None,
    counterparty_account_ref: str | None = None,
    source_reference: str | None = None,
    transaction_date: date = date(2024, 1, 15),
) -> RawTransaction:
    """Build a RawTransaction with test defaults."""
    return RawTransaction(
        transaction_date=transaction_date,
        amount=Decimal(amount),
        description=description,
        counterparty_name=counterparty_name,
        counterparty_account_ref=counterparty_account_ref,
        source_reference=source_reference,
    )


def book_history(store, bank_account_id, contact_id, account_id, entry_date, amount="10.00"):
    """Book a balanced expense entry for a contact (booking history)."""
    from statement_importer.schemas.fingerprint import fingerprint_transaction
    from statement_importer.schemas.transactions import JournalEntry, JournalLine

    transaction = make_transaction(
        amount=f"-{amount}",
        description=f"History {entry_date.isoformat()}",
        transaction_date=entry_date,
    )
    transaction_id = store.insert_bank_transaction(
        bank_account_id, fingerprint_transaction(transaction), transaction
    )
    bank_ledger_id = store.get_bank_account(bank_account_id).ledger_account_id
    entry = JournalEntry(
        entry_date=entry_date,
        description=transaction.description,
        route="direct",
        contact_id=contact_id,
        ledger_account_id=account_id,
        lines=[
            JournalLine(account_id=account_id, debit=Decimal(amount)),
            JournalLine(account_id=bank_ledger_id, credit=Decimal(amount)),
        ],
    )
    return store.book_transaction(entry, transaction_id)


def store_transaction(store, bank_account_id, transaction=None):
    """Persist a RawTransaction and return the StoredBankTransaction."""
    from statement_importer.schemas.fingerprint import fingerprint_transaction

    transaction = transaction or make_transaction()
    transaction_id = store.insert_bank_transaction(
        bank_account_id, fingerprint_transaction(transaction), transaction
    )
    return store.get_bank_transaction(transaction_id)
