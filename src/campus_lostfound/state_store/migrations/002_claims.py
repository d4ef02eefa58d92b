"""
Migration 002: Add claims and claim_images tables.

A claimant may hold at most one pending claim per found item; the partial
unique index makes a concurrent duplicate submission fail at insert time.
"""

import sqlite3

VERSION = 2
NAME = "claims"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create claims and claim_images tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS claims (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            found_item_id INTEGER NOT NULL,
            claimant_user_id INTEGER NOT NULL,
            description TEXT NOT NULL,
            proof_details TEXT NOT NULL,
            -- pending, approved, rejected, cancelled, completed
            status TEXT NOT NULL DEFAULT 'pending',
            verified_by INTEGER,
            verified_at TEXT,
            verification_notes TEXT,
            rejection_reason TEXT,
            pickup_scheduled TEXT,
            picked_up_at TEXT,
            picked_up_by_name TEXT,
            id_presented TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (found_item_id) REFERENCES found_items(id),
            FOREIGN KEY (claimant_user_id) REFERENCES users(id)
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_found_item ON claims(found_item_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_claimant ON claims(claimant_user_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_status ON claims(status)")
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_claims_one_pending
        ON claims (found_item_id, claimant_user_id)
        WHERE status = 'pending'
    """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS claim_images (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            claim_id INTEGER NOT NULL,
            file_name TEXT NOT NULL,
            file_path TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            mime_type TEXT NOT NULL,
            image_type TEXT NOT NULL DEFAULT 'proof',
            description TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (claim_id) REFERENCES claims(id) ON DELETE CASCADE
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_claim_images_claim ON claim_images(claim_id)")


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove claims and claim_images tables."""
    conn.execute("DROP TABLE IF EXISTS claim_images")
    conn.execute("DROP TABLE IF EXISTS claims")
