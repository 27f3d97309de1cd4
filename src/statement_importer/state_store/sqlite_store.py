"""
SQLite-based state store implementation.

Tables:
- accounts: Chart of accounts
- contacts: Relations (customers and suppliers)
- invoices: Sales and purchase invoices with outstanding amounts
- bank_accounts: Bank accounts statements are imported into
- bank_transactions: Deduplicated statement lines (UNIQUE per bank account + fingerprint)
- journal_entries / journal_lines: Double-entry postings
- notifications, import_runs, bank_rules: added by migrations
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from ..schemas.transactions import (
    Account,
    AccountType,
    Contact,
    InvoiceDirection,
    JournalEntry,
    JournalLine,
    OpenInvoice,
    RawTransaction,
    StoredBankTransaction,
    TransactionStatus,
    quantize_amount,
)


class StaleRecordError(Exception):
    """A conditional update found the record no longer in the expected state."""

    pass


class InvoiceNotOpenError(StaleRecordError):
    """The invoice was settled by another entry."""

    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _money(value: Decimal) -> str:
    return str(quantize_amount(value))


def _account_from_row(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        code=row["code"],
        name=row["name"],
        type=AccountType(row["type"]),
        is_active=bool(row["is_active"]),
    )


def _contact_from_row(row: sqlite3.Row) -> Contact:
    return Contact(
        id=row["id"],
        company_name=row["company_name"],
        default_ledger_account_id=row["default_ledger_account_id"],
        settlement_account_id=row["settlement_account_id"],
        default_vat_rate=(
            Decimal(row["default_vat_rate"]) if row["default_vat_rate"] is not None else None
        ),
        email=row["email"],
        iban=row["iban"],
    )


def _invoice_from_row(row: sqlite3.Row) -> OpenInvoice:
    return OpenInvoice(
        id=row["id"],
        invoice_number=row["invoice_number"],
        contact_id=row["contact_id"],
        direction=InvoiceDirection(row["direction"]),
        total_amount=Decimal(row["total_amount"]),
        outstanding_amount=Decimal(row["outstanding_amount"]),
        due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
        status=row["status"],
    )


def _bank_transaction_from_row(row: sqlite3.Row) -> StoredBankTransaction:
    return StoredBankTransaction(
        id=row["id"],
        bank_account_id=row["bank_account_id"],
        fingerprint=row["fingerprint"],
        raw=RawTransaction(
            transaction_date=date.fromisoformat(row["transaction_date"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            counterparty_name=row["counterparty_name"],
            counterparty_account_ref=row["counterparty_account_ref"],
            source_reference=row["source_reference"],
        ),
        status=TransactionStatus(row["status"]),
        journal_entry_id=row["journal_entry_id"],
        confidence_score=row["confidence_score"],
        suggestion=json.loads(row["suggestion_json"]) if row["suggestion_json"] else None,
        review_decision=row["review_decision"],
    )


@dataclass
class BankAccountRecord:
    """Bank account a statement is imported into."""

    id: int
    name: str
    iban: str | None
    ledger_account_id: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BankAccountRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            iban=row["iban"],
            ledger_account_id=row["ledger_account_id"],
        )


@dataclass
class BookingHistory:
    """Most recent booking for a contact."""

    ledger_account_id: int
    entry_date: date


@dataclass
class NotificationRecord:
    """A message for the bookkeeper (e.g. transactions awaiting review)."""

    id: int
    kind: str
    message: str
    payload: dict[str, Any]
    created_at: str
    read_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "NotificationRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            kind=row["kind"],
            message=row["message"],
            payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
            created_at=row["created_at"],
            read_at=row["read_at"],
        )


@dataclass
class ImportRunRecord:
    """Audit record of one statement import."""

    id: int
    bank_account_id: int
    filename: str
    format: str | None
    total_processed: int
    auto_booked: int
    needs_review: int
    errors: int
    file_error: str | None
    report_json: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportRunRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            bank_account_id=row["bank_account_id"],
            filename=row["filename"],
            format=row["format"],
            total_processed=row["total_processed"],
            auto_booked=row["auto_booked"],
            needs_review=row["needs_review"],
            errors=row["errors"],
            file_error=row["file_error"],
            report_json=row["report_json"],
            created_at=row["created_at"],
        )


class RuleMatchType(str, Enum):
    """How a bank rule keyword is compared with statement text."""

    CONTAINS = "Contains"  # whole words anywhere in name or description
    EXACT = "Exact"  # the whole counterparty name or description


@dataclass
class BankRuleRecord:
    """Keyword rule mapping statement text to a ledger account (and contact)."""

    id: int
    keyword: str
    match_type: RuleMatchType
    ledger_account_id: int
    contact_id: int | None
    priority: int
    is_active: bool
    use_count: int
    last_used_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BankRuleRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            keyword=row["keyword"],
            match_type=RuleMatchType(row["match_type"]),
            ledger_account_id=row["ledger_account_id"],
            contact_id=row["contact_id"],
            priority=row["priority"],
            is_active=bool(row["is_active"]),
            use_count=row["use_count"],
            last_used_at=row["last_used_at"],
        )


class StateStore:
    """
    SQLite-based state store for the importer.

    Stands in for the ledger, contacts and invoicing collaborators and
    owns the imported bank transactions.

    Every public method opens its own connection, so one store instance
    can be shared by worker threads.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL,  -- Asset, Liability, Equity, Revenue, Expense
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contacts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    company_name TEXT NOT NULL,
                    default_ledger_account_id INTEGER,
                    settlement_account_id INTEGER,
                    default_vat_rate TEXT,
                    email TEXT,
                    iban TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (default_ledger_account_id) REFERENCES accounts(id),
                    FOREIGN KEY (settlement_account_id) REFERENCES accounts(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    invoice_number TEXT NOT NULL,
                    contact_id INTEGER NOT NULL,
                    direction TEXT NOT NULL,  -- sales, purchase
                    total_amount TEXT NOT NULL,
                    outstanding_amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'Open',  -- Open, Paid
                    due_date TEXT,
                    paid_at TEXT,
                    paid_by_entry_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (contact_id) REFERENCES contacts(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    iban TEXT,
                    ledger_account_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (ledger_account_id) REFERENCES accounts(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bank_account_id INTEGER NOT NULL,
                    fingerprint TEXT NOT NULL,
                    transaction_date TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    description TEXT NOT NULL,
                    counterparty_name TEXT,
                    counterparty_account_ref TEXT,
                    source_reference TEXT,
                    status TEXT NOT NULL DEFAULT 'Unmatched',  -- Unmatched, Booked
                    journal_entry_id INTEGER,
                    confidence_score INTEGER,
                    suggestion_json TEXT,
                    review_decision TEXT,  -- ACCEPTED, EDITED, REJECTED
                    reviewed_at TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (bank_account_id, fingerprint),
                    FOREIGN KEY (bank_account_id) REFERENCES bank_accounts(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS journal_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_date TEXT NOT NULL,
                    description TEXT NOT NULL,
                    reference TEXT,
                    route TEXT NOT NULL,  -- direct, relation, manual
                    contact_id INTEGER,
                    ledger_account_id INTEGER,
                    bank_transaction_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (contact_id) REFERENCES contacts(id),
                    FOREIGN KEY (bank_transaction_id) REFERENCES bank_transactions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS journal_lines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    account_id INTEGER NOT NULL,
                    debit TEXT NOT NULL,
                    credit TEXT NOT NULL,
                    description TEXT,
                    FOREIGN KEY (entry_id) REFERENCES journal_entries(id),
                    FOREIGN KEY (account_id) REFERENCES accounts(id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_bank_tx_status ON bank_transactions(status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices(status, direction)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_contact ON journal_entries(contact_id)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_lines_entry ON journal_lines(entry_id)")

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Chart of accounts

    def add_account(self, code: str, name: str, account_type: AccountType) -> int:
        """Insert an account. Returns the new account id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO accounts (code, name, type, is_active, created_at) VALUES (?, ?, ?, 1, ?)",
                (code, name, account_type.value, _now()),
            )
            return cursor.lastrowid

    def delete_account(self, account_id: int) -> None:
        """Remove an account no journal line or contact refers to."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))

    def get_account(self, account_id: int) -> Account | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            return _account_from_row(row) if row else None

    def get_account_by_code(self, code: str) -> Account | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE code = ?", (code,)).fetchone()
            return _account_from_row(row) if row else None

    def list_accounts(self, types: list[AccountType] | None = None) -> list[Account]:
        """List active accounts, optionally filtered by type, ordered by code."""
        query = "SELECT * FROM accounts WHERE is_active = 1"
        params: list[Any] = []
        if types:
            query += f" AND type IN ({', '.join('?' for _ in types)})"
            params.extend(t.value for t in types)
        query += " ORDER BY code"
        with self._transaction() as conn:
            return [_account_from_row(row) for row in conn.execute(query, params).fetchall()]

    # Contacts

    def add_contact(
        self,
        company_name: str,
        default_ledger_account_id: int | None = None,
        settlement_account_id: int | None = None,
        default_vat_rate: Decimal | None = None,
        email: str | None = None,
        iban: str | None = None,
    ) -> int:
        """Insert a contact. Returns the new contact id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO contacts
                (company_name, default_ledger_account_id, settlement_account_id,
                 default_vat_rate, email, iban, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    company_name,
                    default_ledger_account_id,
                    settlement_account_id,
                    str(default_vat_rate) if default_vat_rate is not None else None,
                    email,
                    iban,
                    _now(),
                ),
            )
            return cursor.lastrowid

    def delete_contact(self, contact_id: int) -> None:
        """Remove a contact nothing was booked for."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))

    def get_contact(self, contact_id: int) -> Contact | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM contacts WHERE id = ?", (contact_id,)).fetchone()
            return _contact_from_row(row) if row else None

    def list_contacts(self) -> list[Contact]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM contacts ORDER BY id").fetchall()
            return [_contact_from_row(row) for row in rows]

    def find_contact_by_name(self, company_name: str) -> Contact | None:
        """Case-insensitive exact name lookup."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM contacts WHERE lower(company_name) = lower(?) ORDER BY id LIMIT 1",
                (company_name.strip(),),
            ).fetchone()
            return _contact_from_row(row) if row else None

    def set_default_ledger_account_if_missing(self, contact_id: int, account_id: int) -> bool:
        """Set a contact's default ledger account unless one is already set.

        Returns:
            True if the contact was updated
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE contacts SET default_ledger_account_id = ?
                WHERE id = ? AND default_ledger_account_id IS NULL
            """,
                (account_id, contact_id),
            )
            return cursor.rowcount > 0

    # Invoices

    def add_invoice(
        self,
        invoice_number: str,
        contact_id: int,
        direction: InvoiceDirection,
        total_amount: Decimal,
        outstanding_amount: Decimal | None = None,
        due_date: date | None = None,
    ) -> int:
        """Insert an open invoice. Returns the new invoice id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO invoices
                (invoice_number, contact_id, direction, total_amount, outstanding_amount,
                 status, due_date, created_at)
                VALUES (?, ?, ?, ?, ?, 'Open', ?, ?)
            """,
                (
                    invoice_number,
                    contact_id,
                    direction.value,
                    _money(total_amount),
                    _money(outstanding_amount if outstanding_amount is not None else total_amount),
                    due_date.isoformat() if due_date else None,
                    _now(),
                ),
            )
            return cursor.lastrowid

    def get_invoice(self, invoice_id: int) -> OpenInvoice | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
            return _invoice_from_row(row) if row else None

    def list_open_invoices(self, direction: InvoiceDirection | None = None) -> list[OpenInvoice]:
        query = "SELECT * FROM invoices WHERE status = 'Open'"
        params: list[Any] = []
        if direction is not None:
            query += " AND direction = ?"
            params.append(direction.value)
        query += " ORDER BY id"
        with self._transaction() as conn:
            return [_invoice_from_row(row) for row in conn.execute(query, params).fetchall()]

    # Bank accounts

    def add_bank_account(
        self, name: str, iban: str | None = None, ledger_account_id: int | None = None
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO bank_accounts (name, iban, ledger_account_id, created_at) VALUES (?, ?, ?, ?)",
                (name, iban, ledger_account_id, _now()),
            )
            return cursor.lastrowid

    def get_bank_account(self, bank_account_id: int) -> BankAccountRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM bank_accounts WHERE id = ?", (bank_account_id,)
            ).fetchone()
            return BankAccountRecord.from_row(row) if row else None

    def list_bank_accounts(self) -> list[BankAccountRecord]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM bank_accounts ORDER BY id").fetchall()
            return [BankAccountRecord.from_row(row) for row in rows]

    # Bank transactions

    def insert_bank_transaction(
        self, bank_account_id: int, fingerprint: str, transaction: RawTransaction
    ) -> int | None:
        """
        Insert a statement line unless its fingerprint already exists.

        Returns:
            New transaction id, or None if it is a duplicate
        """
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO bank_transactions
                    (bank_account_id, fingerprint, transaction_date, amount, description,
                     counterparty_name, counterparty_account_ref, source_reference,
                     status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        bank_account_id,
                        fingerprint,
                        transaction.transaction_date.isoformat(),
                        _money(transaction.amount),
                        transaction.description,
                        transaction.counterparty_name,
                        transaction.counterparty_account_ref,
                        transaction.source_reference,
                        TransactionStatus.UNMATCHED.value,
                        _now(),
                    ),
                )
                return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            return None

    def get_bank_transaction(self, transaction_id: int) -> StoredBankTransaction | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM bank_transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return _bank_transaction_from_row(row) if row else None

    def list_bank_transactions(
        self,
        bank_account_id: int | None = None,
        status: TransactionStatus | None = None,
    ) -> list[StoredBankTransaction]:
        query = "SELECT * FROM bank_transactions WHERE 1 = 1"
        params: list[Any] = []
        if bank_account_id is not None:
            query += " AND bank_account_id = ?"
            params.append(bank_account_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY id"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_bank_transaction_from_row(row) for row in rows]

    def list_pending_review(self, bank_account_id: int | None = None) -> list[StoredBankTransaction]:
        """Unmatched transactions without a review decision."""
        query = (
            "SELECT * FROM bank_transactions WHERE status = 'Unmatched' "
            "AND review_decision IS NULL"
        )
        params: list[Any] = []
        if bank_account_id is not None:
            query += " AND bank_account_id = ?"
            params.append(bank_account_id)
        query += " ORDER BY transaction_date, id"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_bank_transaction_from_row(row) for row in rows]

    def save_suggestion(
        self,
        transaction_id: int,
        confidence_score: int | None,
        suggestion: dict[str, Any] | None,
    ) -> None:
        """Store the best-effort match candidate for review."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE bank_transactions SET confidence_score = ?, suggestion_json = ?
                WHERE id = ?
            """,
                (
                    confidence_score,
                    json.dumps(suggestion) if suggestion is not None else None,
                    transaction_id,
                ),
            )

    def set_review_decision(self, transaction_id: int, decision: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE bank_transactions SET review_decision = ?, reviewed_at = ? WHERE id = ?",
                (decision, _now(), transaction_id),
            )

    # Journal

    def book_transaction(
        self,
        entry: JournalEntry,
        bank_transaction_id: int,
        invoice_id: int | None = None,
        review_decision: str | None = None,
    ) -> int:
        """
        Atomically write a journal entry and mark its bank transaction Booked.

        Entry, lines, the status change and (optionally) the invoice
        settlement commit together or not at all.

        Returns:
            New journal entry id

        Raises:
            StaleRecordError: if the bank transaction is no longer Unmatched
            InvoiceNotOpenError: if the invoice is no longer Open
        """
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO journal_entries
                (entry_date, description, reference, route, contact_id, ledger_account_id,
                 bank_transaction_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    entry.entry_date.isoformat(),
                    entry.description,
                    entry.reference,
                    entry.route,
                    entry.contact_id,
                    entry.ledger_account_id,
                    bank_transaction_id,
                    now,
                ),
            )
            entry_id = cursor.lastrowid

            conn.executemany(
                """
                INSERT INTO journal_lines
                (entry_id, position, account_id, debit, credit, description)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        entry_id,
                        position,
                        line.account_id,
                        _money(line.debit),
                        _money(line.credit),
                        line.description,
                    )
                    for position, line in enumerate(entry.lines, start=1)
                ],
            )

            updated = conn.execute(
                """
                UPDATE bank_transactions
                SET status = 'Booked', journal_entry_id = ?,
                    review_decision = COALESCE(?, review_decision),
                    reviewed_at = CASE WHEN ? IS NULL THEN reviewed_at ELSE ? END
                WHERE id = ? AND status = 'Unmatched'
            """,
                (entry_id, review_decision, review_decision, now, bank_transaction_id),
            ).rowcount
            if updated != 1:
                raise StaleRecordError(
                    f"Bank transaction {bank_transaction_id} is no longer Unmatched"
                )

            if invoice_id is not None:
                updated = conn.execute(
                    """
                    UPDATE invoices
                    SET status = 'Paid', outstanding_amount = '0.00', paid_at = ?,
                        paid_by_entry_id = ?
                    WHERE id = ? AND status = 'Open'
                """,
                    (now, entry_id, invoice_id),
                ).rowcount
                if updated != 1:
                    raise InvoiceNotOpenError(f"Invoice {invoice_id} is no longer Open")

            return entry_id

    def get_journal_entry(self, entry_id: int) -> JournalEntry | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM journal_entries WHERE id = ?", (entry_id,)).fetchone()
            if not row:
                return None
            lines = conn.execute(
                "SELECT * FROM journal_lines WHERE entry_id = ? ORDER BY position", (entry_id,)
            ).fetchall()
            return JournalEntry(
                id=row["id"],
                entry_date=date.fromisoformat(row["entry_date"]),
                description=row["description"],
                reference=row["reference"],
                route=row["route"],
                contact_id=row["contact_id"],
                ledger_account_id=row["ledger_account_id"],
                lines=[
                    JournalLine(
                        account_id=line["account_id"],
                        debit=Decimal(line["debit"]),
                        credit=Decimal(line["credit"]),
                        description=line["description"],
                    )
                    for line in lines
                ],
            )

    def count_journal_entries(self) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM journal_entries").fetchone()[0]

    def get_last_booking(self, contact_id: int) -> BookingHistory | None:
        """Most recent booking with a revenue/expense account for a contact."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT ledger_account_id, entry_date FROM journal_entries
                WHERE contact_id = ? AND ledger_account_id IS NOT NULL
                ORDER BY entry_date DESC, id DESC LIMIT 1
            """,
                (contact_id,),
            ).fetchone()
            if not row:
                return None
            return BookingHistory(
                ledger_account_id=row["ledger_account_id"],
                entry_date=date.fromisoformat(row["entry_date"]),
            )

    # Notifications

    def add_notification(self, kind: str, message: str, payload: dict[str, Any] | None = None) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO notifications (kind, message, payload_json, created_at) VALUES (?, ?, ?, ?)",
                (kind, message, json.dumps(payload or {}), _now()),
            )
            return cursor.lastrowid

    def list_notifications(self, unread_only: bool = False) -> list[NotificationRecord]:
        query = "SELECT * FROM notifications"
        if unread_only:
            query += " WHERE read_at IS NULL"
        query += " ORDER BY id"
        with self._transaction() as conn:
            return [NotificationRecord.from_row(row) for row in conn.execute(query).fetchall()]

    def mark_notifications_read(self) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET read_at = ? WHERE read_at IS NULL", (_now(),)
            )
            return cursor.rowcount

    # Import runs

    def record_import_run(
        self,
        bank_account_id: int,
        filename: str,
        format_name: str | None,
        report: dict[str, Any],
    ) -> int:
        """Store the analysis report of one import."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO import_runs
                (bank_account_id, filename, format, total_processed, auto_booked,
                 needs_review, errors, file_error, report_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    bank_account_id,
                    filename,
                    format_name,
                    report.get("total_processed", 0),
                    report.get("auto_booked", 0),
                    report.get("needs_review", 0),
                    report.get("errors", 0),
                    report.get("file_error"),
                    json.dumps(report),
                    _now(),
                ),
            )
            return cursor.lastrowid

    def list_import_runs(self, limit: int = 10) -> list[ImportRunRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM import_runs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
            return [ImportRunRecord.from_row(row) for row in rows]

    # Bank rules

    def add_bank_rule(
        self,
        keyword: str,
        ledger_account_id: int,
        contact_id: int | None = None,
        match_type: RuleMatchType = RuleMatchType.CONTAINS,
        priority: int = 0,
    ) -> int:
        """Insert a rule. Returns the new rule id.

        Raises:
            ValueError: empty keyword, or a rule for the keyword already exists
        """
        keyword = " ".join(keyword.split())
        if not keyword:
            raise ValueError("Bank rule keyword must not be empty")
        now = _now()
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO bank_rules
                    (keyword, match_type, ledger_account_id, contact_id, priority,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (keyword, match_type.value, ledger_account_id, contact_id, priority, now, now),
                )
                return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ValueError(f"A bank rule for {keyword!r} already exists") from e
            raise

    def learn_bank_rule(self, keyword: str, ledger_account_id: int, contact_id: int | None) -> int:
        """Create or update the rule for a keyword from a confirmed booking.

        An existing rule takes the new account and contact and counts one more
        use; its match type, priority and active flag are kept.
        """
        keyword = " ".join(keyword.split())
        if not keyword:
            raise ValueError("Bank rule keyword must not be empty")
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO bank_rules
                (keyword, match_type, ledger_account_id, contact_id, use_count,
                 last_used_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(keyword) DO UPDATE SET
                    ledger_account_id = excluded.ledger_account_id,
                    contact_id = excluded.contact_id,
                    use_count = use_count + 1,
                    last_used_at = excluded.last_used_at,
                    updated_at = excluded.updated_at
            """,
                (keyword, RuleMatchType.CONTAINS.value, ledger_account_id, contact_id, now, now, now),
            )
            return conn.execute(
                "SELECT id FROM bank_rules WHERE keyword = ?", (keyword,)
            ).fetchone()["id"]

    def get_bank_rule(self, rule_id: int) -> BankRuleRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM bank_rules WHERE id = ?", (rule_id,)).fetchone()
            return BankRuleRecord.from_row(row) if row else None

    def list_bank_rules(self, active_only: bool = True) -> list[BankRuleRecord]:
        """Rules in evaluation order: priority, then longer keywords first."""
        query = "SELECT * FROM bank_rules"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY priority DESC, length(keyword) DESC, id"
        with self._transaction() as conn:
            return [BankRuleRecord.from_row(row) for row in conn.execute(query).fetchall()]

    def set_bank_rule_active(self, rule_id: int, active: bool) -> bool:
        """Enable or disable a rule. Returns False for an unknown rule."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE bank_rules SET is_active = ?, updated_at = ? WHERE id = ?",
                (1 if active else 0, _now(), rule_id),
            )
            return cursor.rowcount > 0

    # Statistics

    def get_stats(self) -> dict[str, int]:
        """Get summary statistics."""
        with self._transaction() as conn:
            stats: dict[str, int] = {}
            for status in TransactionStatus:
                stats[f"transactions_{status.value.lower()}"] = conn.execute(
                    "SELECT COUNT(*) FROM bank_transactions WHERE status = ?", (status.value,)
                ).fetchone()[0]
            stats["pending_review"] = conn.execute(
                "SELECT COUNT(*) FROM bank_transactions "
                "WHERE status = 'Unmatched' AND review_decision IS NULL"
            ).fetchone()[0]
            stats["journal_entries"] = conn.execute(
                "SELECT COUNT(*) FROM journal_entries"
            ).fetchone()[0]
            stats["open_invoices"] = conn.execute(
                "SELECT COUNT(*) FROM invoices WHERE status = 'Open'"
            ).fetchone()[0]
            stats["contacts"] = conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
            return stats
