"""
Migration 003: Add bank_rules table.

Keyword rules mapping statement text to a ledger account and optionally
a contact. Rules are entered by the bookkeeper or learned from accepted
reviews; a keyword is unique regardless of case.
"""

import sqlite3

VERSION = 3
NAME = "bank_rules"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create bank_rules table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS bank_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            keyword TEXT NOT NULL UNIQUE COLLATE NOCASE,
            match_type TEXT NOT NULL DEFAULT 'Contains',  -- Contains, Exact
            ledger_account_id INTEGER NOT NULL,
            contact_id INTEGER,
            priority INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            use_count INTEGER NOT NULL DEFAULT 0,
            last_used_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (ledger_account_id) REFERENCES accounts(id),
            FOREIGN KEY (contact_id) REFERENCES contacts(id) ON DELETE SET NULL
        )
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove bank_rules table."""
    conn.execute("DROP TABLE IF EXISTS bank_rules")
