"""
Migration 002: Add import_runs table.

Audit trail of statement imports: one row per imported file with the
report counters and the full report JSON.
"""

import sqlite3

VERSION = 2
NAME = "import_runs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create import_runs table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS import_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bank_account_id INTEGER NOT NULL,
            filename TEXT NOT NULL,
            format TEXT,
            total_processed INTEGER NOT NULL DEFAULT 0,
            auto_booked INTEGER NOT NULL DEFAULT 0,
            needs_review INTEGER NOT NULL DEFAULT 0,
            errors INTEGER NOT NULL DEFAULT 0,
            file_error TEXT,
            report_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_import_runs_account ON import_runs(bank_account_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove import_runs table."""
    conn.execute("DROP TABLE IF EXISTS import_runs")
