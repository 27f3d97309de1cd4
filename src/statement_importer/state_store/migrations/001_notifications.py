"""
Migration 001: Add notifications table.

Notifications tell the bookkeeper that an import left transactions
waiting for manual review.
"""

import sqlite3

VERSION = 1
NAME = "notifications"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create notifications table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL,  -- review_required
            message TEXT NOT NULL,
            payload_json TEXT,
            created_at TEXT NOT NULL,
            read_at TEXT
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_notifications_read ON notifications(read_at)")


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove notifications table."""
    conn.execute("DROP TABLE IF EXISTS notifications")
