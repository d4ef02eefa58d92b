"""
State Store (SQLite-based).

Persistent storage for matches, claims, proof images, notifications,
activity logs and the email outbox, plus read access to the externally
owned users and item reports.

Enforces one row per (lost, found) pair and one pending claim per
(found item, claimant).
"""

from .sqlite_store import (
    ClaimImageRecord,
    ClaimRecord,
    ItemRecord,
    MatchRecord,
    NotificationRecord,
    OutboxRecord,
    StateStore,
    TransactionContext,
    UserRecord,
)

__all__ = [
    "StateStore",
    "TransactionContext",
    "ClaimImageRecord",
    "ClaimRecord",
    "ItemRecord",
    "MatchRecord",
    "NotificationRecord",
    "OutboxRecord",
    "UserRecord",
]
