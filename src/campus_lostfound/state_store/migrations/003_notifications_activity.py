"""
Migration 003: Add notifications and activity_logs tables.

Both are written inside the same transaction as the state change they
describe, so a rolled-back transition leaves no trace.
"""

import sqlite3

VERSION = 3
NAME = "notifications_activity"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create notifications and activity_logs tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            -- claim_request, claim_response, match_found, item_resolved, system
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            related_item_type TEXT,  -- lost, found, claim, match
            related_item_id INTEGER,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, is_read)"
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS activity_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            action TEXT NOT NULL,
            resource_type TEXT,
            resource_id INTEGER,
            description TEXT,
            ip_address TEXT,
            user_agent TEXT,
            status TEXT NOT NULL DEFAULT 'success',
            created_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_activity_resource "
        "ON activity_logs(resource_type, resource_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove notifications and activity_logs tables."""
    conn.execute("DROP TABLE IF EXISTS activity_logs")
    conn.execute("DROP TABLE IF EXISTS notifications")
