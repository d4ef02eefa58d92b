"""
Migration 001: Add matches table.

One row per (lost item, found item) pair. Re-scoring updates the row in
place; status only moves forward from 'suggested'.
"""

import sqlite3

VERSION = 1
NAME = "matches"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create matches table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS matches (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            lost_item_id INTEGER NOT NULL,
            found_item_id INTEGER NOT NULL,
            similarity_score INTEGER NOT NULL,
            confidence TEXT NOT NULL,  -- low, medium, high
            match_reason TEXT,
            status TEXT NOT NULL DEFAULT 'suggested',  -- suggested, confirmed, dismissed
            confirmed_by INTEGER,
            dismissed_by INTEGER,
            action_date TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (lost_item_id, found_item_id),
            FOREIGN KEY (lost_item_id) REFERENCES lost_items(id),
            FOREIGN KEY (found_item_id) REFERENCES found_items(id),
            CHECK (confirmed_by IS NULL OR dismissed_by IS NULL)
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_matches_status ON matches(status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_matches_found ON matches(found_item_id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_matches_score ON matches(similarity_score DESC)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove matches table."""
    conn.execute("DROP TABLE IF EXISTS matches")
