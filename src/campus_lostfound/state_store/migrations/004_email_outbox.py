"""
Migration 004: Add email_outbox table.

Emails are enqueued in the same transaction as the claim transition and
delivered later by the dispatcher.

Features:
- Status tracking: pending, sending (leased), sent, failed
- Bounded attempts with next_attempt_at for backoff
- Payload stored as JSON
"""

import sqlite3

VERSION = 4
NAME = "email_outbox"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the email_outbox table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS email_outbox (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            -- claim_approved, claim_rejected, pickup_scheduled
            kind TEXT NOT NULL,
            recipient_email TEXT NOT NULL,
            recipient_name TEXT,
            payload_json TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 5,
            next_attempt_at TEXT NOT NULL,
            last_error TEXT,
            created_at TEXT NOT NULL,
            sent_at TEXT
        )
    """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_email_outbox_due
        ON email_outbox (status, next_attempt_at)
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the email_outbox table."""
    conn.execute("DROP TABLE IF EXISTS email_outbox")
