"""
SQLite-based state store implementation.

Tables:
- users, lost_items, found_items: externally owned, read by the core
  (found_items.status and resolution columns are written by the claim workflow)
- matches: scored lost/found pairs
- claims, claim_images: ownership claims and proof artifacts
- notifications, activity_logs: in-app notifications and audit trail
- email_outbox: emails awaiting delivery

State-changing methods take a TransactionContext opened with
StateStore.transaction(); every status transition is a conditional write
that returns False when the row was not in the required source state.
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..schemas import ClaimStatus, Confidence, ItemStatus, ItemType, MatchStatus


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class UserRecord:
    """Registered user (external-owned)."""

    id: int
    email: str
    first_name: str
    last_name: str
    role: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UserRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            role=row["role"],
        )


@dataclass
class ItemRecord:
    """
    Lost or found item report (external-owned).

    `date` and `location_id` are last_seen_* for lost items and found_* for
    found items.
    """

    id: int
    item_type: ItemType
    user_id: int
    title: str
    description: str | None
    category_id: int | None
    location_id: int | None
    date: str | None  # YYYY-MM-DD
    unique_identifiers: str | None
    status: ItemStatus
    created_at: str
    resolved_at: str | None = None
    resolved_by: int | None = None
    resolution_notes: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row, item_type: ItemType) -> "ItemRecord":
        """Create from a lost_items or found_items row."""
        keys = row.keys()
        if item_type is ItemType.LOST:
            location_id, date = row["last_seen_location_id"], row["last_seen_date"]
        else:
            location_id, date = row["found_location_id"], row["found_date"]
        return cls(
            id=row["id"],
            item_type=item_type,
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            category_id=row["category_id"],
            location_id=location_id,
            date=date,
            unique_identifiers=row["unique_identifiers"],
            status=ItemStatus(row["status"]),
            created_at=row["created_at"],
            resolved_at=row["resolved_at"] if "resolved_at" in keys else None,
            resolved_by=row["resolved_by"] if "resolved_by" in keys else None,
            resolution_notes=row["resolution_notes"] if "resolution_notes" in keys else None,
        )


@dataclass
class MatchRecord:
    """Persisted match between a lost and a found item."""

    id: int
    lost_item_id: int
    found_item_id: int
    similarity_score: int
    confidence: Confidence
    match_reason: str | None
    status: MatchStatus
    confirmed_by: int | None
    dismissed_by: int | None
    action_date: str | None
    created_at: str
    updated_at: str
    # Populated by joined listings
    lost_item_title: str | None = None
    found_item_title: str | None = None
    lost_user_id: int | None = None
    found_user_id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MatchRecord":
        """Create from database row."""
        keys = row.keys()
        return cls(
            id=row["id"],
            lost_item_id=row["lost_item_id"],
            found_item_id=row["found_item_id"],
            similarity_score=row["similarity_score"],
            confidence=Confidence(row["confidence"]),
            match_reason=row["match_reason"],
            status=MatchStatus(row["status"]),
            confirmed_by=row["confirmed_by"],
            dismissed_by=row["dismissed_by"],
            action_date=row["action_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            lost_item_title=row["lost_item_title"] if "lost_item_title" in keys else None,
            found_item_title=row["found_item_title"] if "found_item_title" in keys else None,
            lost_user_id=row["lost_user_id"] if "lost_user_id" in keys else None,
            found_user_id=row["found_user_id"] if "found_user_id" in keys else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result = {
            "id": self.id,
            "lost_item_id": self.lost_item_id,
            "found_item_id": self.found_item_id,
            "similarity_score": self.similarity_score,
            "confidence": self.confidence.value,
            "match_reason": self.match_reason,
            "status": self.status.value,
            "confirmed_by": self.confirmed_by,
            "dismissed_by": self.dismissed_by,
            "action_date": self.action_date,
            "created_at": self.created_at,
        }
        if self.lost_item_title is not None:
            result["lost_item_title"] = self.lost_item_title
        if self.found_item_title is not None:
            result["found_item_title"] = self.found_item_title
        return result


@dataclass
class ClaimImageRecord:
    """Proof image attached to a claim."""

    id: int
    claim_id: int
    file_name: str
    file_path: str
    file_size: int
    mime_type: str
    image_type: str
    description: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ClaimImageRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            claim_id=row["claim_id"],
            file_name=row["file_name"],
            file_path=row["file_path"],
            file_size=row["file_size"],
            mime_type=row["mime_type"],
            image_type=row["image_type"],
            description=row["description"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "image_type": self.image_type,
            "description": self.description,
        }


@dataclass
class ClaimRecord:
    """Ownership claim against a found item."""

    id: int
    found_item_id: int
    claimant_user_id: int
    description: str
    proof_details: str
    status: ClaimStatus
    verified_by: int | None
    verified_at: str | None
    verification_notes: str | None
    rejection_reason: str | None
    pickup_scheduled: str | None
    picked_up_at: str | None
    picked_up_by_name: str | None
    id_presented: str | None
    created_at: str
    updated_at: str
    # Populated by joined listings
    found_item_title: str | None = None
    claimant_name: str | None = None
    claimant_email: str | None = None
    images: list[ClaimImageRecord] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ClaimRecord":
        """Create from database row."""
        keys = row.keys()
        return cls(
            id=row["id"],
            found_item_id=row["found_item_id"],
            claimant_user_id=row["claimant_user_id"],
            description=row["description"],
            proof_details=row["proof_details"],
            status=ClaimStatus(row["status"]),
            verified_by=row["verified_by"],
            verified_at=row["verified_at"],
            verification_notes=row["verification_notes"],
            rejection_reason=row["rejection_reason"],
            pickup_scheduled=row["pickup_scheduled"],
            picked_up_at=row["picked_up_at"],
            picked_up_by_name=row["picked_up_by_name"],
            id_presented=row["id_presented"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            found_item_title=row["found_item_title"] if "found_item_title" in keys else None,
            claimant_name=row["claimant_name"] if "claimant_name" in keys else None,
            claimant_email=row["claimant_email"] if "claimant_email" in keys else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "found_item_id": self.found_item_id,
            "claimant_user_id": self.claimant_user_id,
            "description": self.description,
            "proof_details": self.proof_details,
            "status": self.status.value,
            "verified_by": self.verified_by,
            "verified_at": self.verified_at,
            "verification_notes": self.verification_notes,
            "rejection_reason": self.rejection_reason,
            "pickup_scheduled": self.pickup_scheduled,
            "picked_up_at": self.picked_up_at,
            "picked_up_by_name": self.picked_up_by_name,
            "id_presented": self.id_presented,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "found_item_title": self.found_item_title,
            "claimant_name": self.claimant_name,
            "images": [image.to_dict() for image in self.images],
        }


@dataclass
class NotificationRecord:
    """In-app notification."""

    id: int
    user_id: int
    type: str
    title: str
    message: str
    related_item_type: str | None
    related_item_id: int | None
    is_read: bool
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "NotificationRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            title=row["title"],
            message=row["message"],
            related_item_type=row["related_item_type"],
            related_item_id=row["related_item_id"],
            is_read=bool(row["is_read"]),
            created_at=row["created_at"],
        )


@dataclass
class OutboxRecord:
    """Email waiting in (or delivered from) the outbox."""

    id: int
    kind: str
    recipient_email: str
    recipient_name: str | None
    payload: dict[str, Any]
    status: str  # pending, sending, sent, failed
    attempts: int
    max_attempts: int
    next_attempt_at: str
    last_error: str | None
    created_at: str
    sent_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OutboxRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            kind=row["kind"],
            recipient_email=row["recipient_email"],
            recipient_name=row["recipient_name"],
            payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
            status=row["status"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            next_attempt_at=row["next_attempt_at"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            sent_at=row["sent_at"],
        )


class TransactionContext:
    """
    An open write transaction.

    Obtained from StateStore.transaction(). Every state-changing store
    method takes one, so multi-row effects commit or roll back together.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)


_ITEM_TABLES = {ItemType.LOST: "lost_items", ItemType.FOUND: "found_items"}


class StateStore:
    """
    SQLite-based state store for matches and claims.

    Write transactions use BEGIN IMMEDIATE so concurrent writers serialize
    on the database lock; status changes are compare-and-set, so a lost
    race surfaces as a False return rather than a silent overwrite.
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        busy_timeout: float = 10.0,
    ):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            busy_timeout: Seconds to wait for the write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for short read/seed transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[TransactionContext]:
        """
        Open a write transaction.

        Commits when the block exits normally; rolls back and re-raises on
        any exception.
        """
        conn = self._get_connection()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield TransactionContext(conn)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _reader(self, tx: TransactionContext | None) -> Iterator[sqlite3.Connection]:
        """Read inside the caller's transaction if one is given."""
        if tx is not None:
            yield tx.conn
        else:
            with self._transaction() as conn:
                yield conn

    def _init_db(self) -> None:
        """Initialize base schema (externally owned tables)."""
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
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user',  -- user, admin, security
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS lost_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    category_id INTEGER,
                    last_seen_location_id INTEGER,
                    last_seen_date TEXT,
                    unique_identifiers TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS found_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    category_id INTEGER,
                    found_location_id INTEGER,
                    found_date TEXT,
                    storage_location_id INTEGER,
                    storage_notes TEXT,
                    unique_identifiers TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    resolved_at TEXT,
                    resolved_by INTEGER,
                    resolution_notes TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id)
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_lost_items_status ON lost_items(status)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_found_items_status ON found_items(status)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # User and item methods (external-owned; seeding used by the CLI and tests)

    def create_user(
        self, email: str, first_name: str, last_name: str, role: str = "user"
    ) -> int:
        """Insert a user. Returns the user ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (email, first_name, last_name, role, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (email, first_name, last_name, role, _now()),
            )
            return cursor.lastrowid or 0

    def get_user(self, user_id: int, tx: TransactionContext | None = None) -> UserRecord | None:
        with self._reader(tx) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return UserRecord.from_row(row) if row else None

    def create_lost_item(
        self,
        user_id: int,
        title: str,
        description: str | None = None,
        category_id: int | None = None,
        last_seen_location_id: int | None = None,
        last_seen_date: str | None = None,
        unique_identifiers: str | None = None,
        status: ItemStatus = ItemStatus.APPROVED,
    ) -> int:
        """Insert a lost item report. Returns the item ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO lost_items
                (user_id, title, description, category_id, last_seen_location_id,
                 last_seen_date, unique_identifiers, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    user_id,
                    title,
                    description,
                    category_id,
                    last_seen_location_id,
                    last_seen_date,
                    unique_identifiers,
                    ItemStatus(status).value,
                    _now(),
                ),
            )
            return cursor.lastrowid or 0

    def create_found_item(
        self,
        user_id: int,
        title: str,
        description: str | None = None,
        category_id: int | None = None,
        found_location_id: int | None = None,
        found_date: str | None = None,
        unique_identifiers: str | None = None,
        status: ItemStatus = ItemStatus.APPROVED,
        storage_location_id: int | None = None,
        storage_notes: str | None = None,
    ) -> int:
        """Insert a found item report. Returns the item ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO found_items
                (user_id, title, description, category_id, found_location_id, found_date,
                 unique_identifiers, status, storage_location_id, storage_notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    user_id,
                    title,
                    description,
                    category_id,
                    found_location_id,
                    found_date,
                    unique_identifiers,
                    ItemStatus(status).value,
                    storage_location_id,
                    storage_notes,
                    _now(),
                ),
            )
            return cursor.lastrowid or 0

    def get_item(
        self, item_type: ItemType, item_id: int, tx: TransactionContext | None = None
    ) -> ItemRecord | None:
        """Get a lost or found item by ID."""
        table = _ITEM_TABLES[item_type]
        with self._reader(tx) as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (item_id,)).fetchone()
            return ItemRecord.from_row(row, item_type) if row else None

    def get_lost_item(self, item_id: int, tx: TransactionContext | None = None) -> ItemRecord | None:
        return self.get_item(ItemType.LOST, item_id, tx)

    def get_found_item(
        self, item_id: int, tx: TransactionContext | None = None
    ) -> ItemRecord | None:
        return self.get_item(ItemType.FOUND, item_id, tx)

    def list_items(
        self,
        item_type: ItemType,
        status: ItemStatus = ItemStatus.APPROVED,
        exclude_user_id: int | None = None,
    ) -> list[ItemRecord]:
        """List items of one type in a given status, ordered by ID."""
        table = _ITEM_TABLES[item_type]
        query = f"SELECT * FROM {table} WHERE status = ?"
        params: list[Any] = [status.value]
        if exclude_user_id is not None:
            query += " AND user_id != ?"
            params.append(exclude_user_id)
        query += " ORDER BY id"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [ItemRecord.from_row(row, item_type) for row in rows]

    def set_item_status(self, item_type: ItemType, item_id: int, status: ItemStatus) -> bool:
        """Moderation hook for external reporting (approve/archive an item)."""
        table = _ITEM_TABLES[item_type]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET status = ? WHERE id = ?", (status.value, item_id)
            )
            return cursor.rowcount > 0

    def update_found_item_status(
        self,
        tx: TransactionContext,
        item_id: int,
        status: ItemStatus,
        from_status: ItemStatus | None = None,
    ) -> bool:
        """Set a found item's status, optionally only if it is in from_status."""
        query = "UPDATE found_items SET status = ? WHERE id = ?"
        params: list[Any] = [status.value, item_id]
        if from_status is not None:
            query += " AND status = ?"
            params.append(from_status.value)
        return tx.execute(query, params).rowcount > 0

    def resolve_found_item(
        self, tx: TransactionContext, item_id: int, resolved_by: int, resolution_notes: str
    ) -> bool:
        """Mark a found item resolved after pickup."""
        cursor = tx.execute(
            """
            UPDATE found_items
            SET status = ?, resolved_at = ?, resolved_by = ?, resolution_notes = ?
            WHERE id = ?
        """,
            (ItemStatus.RESOLVED.value, _now(), resolved_by, resolution_notes, item_id),
        )
        return cursor.rowcount > 0

    # Match methods

    def upsert_match(
        self,
        tx: TransactionContext,
        lost_item_id: int,
        found_item_id: int,
        similarity_score: int,
        confidence: Confidence,
        match_reason: str,
    ) -> tuple[int, bool] | None:
        """
        Insert or re-score the match for a pair.

        An existing row keeps its status; only score, confidence and reason
        change. Pairs where either item is missing or not approved are
        skipped.

        Returns:
            (match_id, created) or None if the pair was skipped
        """
        statuses = tx.execute(
            """
            SELECT (SELECT status FROM lost_items WHERE id = ?) AS lost_status,
                   (SELECT status FROM found_items WHERE id = ?) AS found_status
        """,
            (lost_item_id, found_item_id),
        ).fetchone()
        approved = ItemStatus.APPROVED.value
        if statuses["lost_status"] != approved or statuses["found_status"] != approved:
            return None

        existing = tx.execute(
            "SELECT id FROM matches WHERE lost_item_id = ? AND found_item_id = ?",
            (lost_item_id, found_item_id),
        ).fetchone()

        now = _now()
        cursor = tx.execute(
            """
            INSERT INTO matches
            (lost_item_id, found_item_id, similarity_score, confidence, match_reason,
             status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (lost_item_id, found_item_id) DO UPDATE SET
                similarity_score = excluded.similarity_score,
                confidence = excluded.confidence,
                match_reason = excluded.match_reason,
                updated_at = excluded.updated_at
        """,
            (
                lost_item_id,
                found_item_id,
                similarity_score,
                Confidence(confidence).value,
                match_reason,
                MatchStatus.SUGGESTED.value,
                now,
                now,
            ),
        )
        if existing:
            return existing["id"], False
        return cursor.lastrowid or 0, True

    def get_match(self, match_id: int, tx: TransactionContext | None = None) -> MatchRecord | None:
        """Get a match with both items' owners and titles."""
        with self._reader(tx) as conn:
            row = conn.execute(
                """
                SELECT m.*,
                       li.title AS lost_item_title, li.user_id AS lost_user_id,
                       fi.title AS found_item_title, fi.user_id AS found_user_id
                FROM matches m
                JOIN lost_items li ON m.lost_item_id = li.id
                JOIN found_items fi ON m.found_item_id = fi.id
                WHERE m.id = ?
            """,
                (match_id,),
            ).fetchone()
            return MatchRecord.from_row(row) if row else None

    def get_match_by_pair(self, lost_item_id: int, found_item_id: int) -> MatchRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM matches WHERE lost_item_id = ? AND found_item_id = ?",
                (lost_item_id, found_item_id),
            ).fetchone()
            return MatchRecord.from_row(row) if row else None

    def transition_match(
        self,
        tx: TransactionContext,
        match_id: int,
        to_status: MatchStatus,
        actor_id: int,
    ) -> bool:
        """
        Move a suggested match to confirmed or dismissed.

        Returns False if the match is no longer suggested.
        """
        if to_status is MatchStatus.CONFIRMED:
            actor_column = "confirmed_by"
        elif to_status is MatchStatus.DISMISSED:
            actor_column = "dismissed_by"
        else:
            raise ValueError(f"Cannot transition a match to {to_status.value}")

        now = _now()
        cursor = tx.execute(
            f"""
            UPDATE matches
            SET status = ?, {actor_column} = ?, action_date = ?, updated_at = ?
            WHERE id = ? AND status = ?
        """,
            (to_status.value, actor_id, now, now, match_id, MatchStatus.SUGGESTED.value),
        )
        return cursor.rowcount > 0

    def list_matches_for_lost_owner(self, user_id: int, min_score: int) -> list[MatchRecord]:
        """Suggested matches on a user's lost items scoring at least min_score."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT m.*,
                       li.title AS lost_item_title, li.user_id AS lost_user_id,
                       fi.title AS found_item_title, fi.user_id AS found_user_id
                FROM matches m
                JOIN lost_items li ON m.lost_item_id = li.id
                JOIN found_items fi ON m.found_item_id = fi.id
                WHERE li.user_id = ?
                  AND m.status = ?
                  AND m.similarity_score >= ?
                ORDER BY m.similarity_score DESC, m.created_at DESC, m.id DESC
            """,
                (user_id, MatchStatus.SUGGESTED.value, min_score),
            ).fetchall()
            return [MatchRecord.from_row(row) for row in rows]

    def list_matches_for_item(
        self,
        item_type: ItemType,
        item_id: int,
        status: MatchStatus | None = None,
    ) -> list[MatchRecord]:
        """Saved matches for one item, best first."""
        column = "lost_item_id" if item_type is ItemType.LOST else "found_item_id"
        query = f"""
            SELECT m.*,
                   li.title AS lost_item_title, li.user_id AS lost_user_id,
                   fi.title AS found_item_title, fi.user_id AS found_user_id
            FROM matches m
            JOIN lost_items li ON m.lost_item_id = li.id
            JOIN found_items fi ON m.found_item_id = fi.id
            WHERE m.{column} = ?
        """
        params: list[Any] = [item_id]
        if status is not None:
            query += " AND m.status = ?"
            params.append(status.value)
        query += " ORDER BY m.similarity_score DESC, m.created_at DESC, m.id DESC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [MatchRecord.from_row(row) for row in rows]

    # Claim methods

    def insert_claim(
        self,
        tx: TransactionContext,
        found_item_id: int,
        claimant_user_id: int,
        description: str,
        proof_details: str,
    ) -> int:
        """
        Insert a pending claim. Returns the claim ID.

        Raises:
            sqlite3.IntegrityError: If the claimant already has a pending
                claim on this item
        """
        now = _now()
        cursor = tx.execute(
            """
            INSERT INTO claims
            (found_item_id, claimant_user_id, description, proof_details, status,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                found_item_id,
                claimant_user_id,
                description,
                proof_details,
                ClaimStatus.PENDING.value,
                now,
                now,
            ),
        )
        return cursor.lastrowid or 0

    def get_claim(self, claim_id: int, tx: TransactionContext | None = None) -> ClaimRecord | None:
        """Get a claim with item title, claimant details and proof images."""
        with self._reader(tx) as conn:
            row = conn.execute(
                """
                SELECT c.*,
                       fi.title AS found_item_title,
                       u.first_name || ' ' || u.last_name AS claimant_name,
                       u.email AS claimant_email
                FROM claims c
                JOIN found_items fi ON c.found_item_id = fi.id
                LEFT JOIN users u ON c.claimant_user_id = u.id
                WHERE c.id = ?
            """,
                (claim_id,),
            ).fetchone()
            if not row:
                return None
            claim = ClaimRecord.from_row(row)
            claim.images = self._images_for(conn, [claim_id]).get(claim_id, [])
            return claim

    def find_pending_claim(
        self,
        found_item_id: int,
        claimant_user_id: int,
        tx: TransactionContext | None = None,
    ) -> ClaimRecord | None:
        with self._reader(tx) as conn:
            row = conn.execute(
                """
                SELECT * FROM claims
                WHERE found_item_id = ? AND claimant_user_id = ? AND status = ?
            """,
                (found_item_id, claimant_user_id, ClaimStatus.PENDING.value),
            ).fetchone()
            return ClaimRecord.from_row(row) if row else None

    def approve_claim(
        self,
        tx: TransactionContext,
        claim_id: int,
        verified_by: int,
        verification_notes: str | None,
        pickup_scheduled: str | None,
    ) -> bool:
        """pending -> approved. Returns False if the claim is not pending."""
        now = _now()
        cursor = tx.execute(
            """
            UPDATE claims
            SET status = ?, verified_by = ?, verified_at = ?, verification_notes = ?,
                pickup_scheduled = ?, updated_at = ?
            WHERE id = ? AND status = ?
        """,
            (
                ClaimStatus.APPROVED.value,
                verified_by,
                now,
                verification_notes,
                pickup_scheduled,
                now,
                claim_id,
                ClaimStatus.PENDING.value,
            ),
        )
        return cursor.rowcount > 0

    def reject_claim(
        self,
        tx: TransactionContext,
        claim_id: int,
        verified_by: int,
        verification_notes: str | None,
        rejection_reason: str,
    ) -> bool:
        """pending -> rejected. Returns False if the claim is not pending."""
        now = _now()
        cursor = tx.execute(
            """
            UPDATE claims
            SET status = ?, verified_by = ?, verified_at = ?, verification_notes = ?,
                rejection_reason = ?, updated_at = ?
            WHERE id = ? AND status = ?
        """,
            (
                ClaimStatus.REJECTED.value,
                verified_by,
                now,
                verification_notes,
                rejection_reason,
                now,
                claim_id,
                ClaimStatus.PENDING.value,
            ),
        )
        return cursor.rowcount > 0

    def reject_other_pending_claims(
        self,
        tx: TransactionContext,
        found_item_id: int,
        approved_claim_id: int,
        verified_by: int,
        rejection_reason: str,
    ) -> list[ClaimRecord]:
        """
        Reject every other pending claim on a found item.

        Returns the claims that were rejected.
        """
        rows = tx.execute(
            "SELECT * FROM claims WHERE found_item_id = ? AND id != ? AND status = ?",
            (found_item_id, approved_claim_id, ClaimStatus.PENDING.value),
        ).fetchall()
        if not rows:
            return []

        now = _now()
        tx.execute(
            """
            UPDATE claims
            SET status = ?, rejection_reason = ?, verified_by = ?, verified_at = ?,
                updated_at = ?
            WHERE found_item_id = ? AND id != ? AND status = ?
        """,
            (
                ClaimStatus.REJECTED.value,
                rejection_reason,
                verified_by,
                now,
                now,
                found_item_id,
                approved_claim_id,
                ClaimStatus.PENDING.value,
            ),
        )
        return [ClaimRecord.from_row(row) for row in rows]

    def schedule_claim_pickup(
        self, tx: TransactionContext, claim_id: int, pickup_scheduled: str
    ) -> bool:
        """Set pickup time on an approved, not-yet-picked-up claim."""
        cursor = tx.execute(
            """
            UPDATE claims SET pickup_scheduled = ?, updated_at = ?
            WHERE id = ? AND status = ? AND picked_up_at IS NULL
        """,
            (pickup_scheduled, _now(), claim_id, ClaimStatus.APPROVED.value),
        )
        return cursor.rowcount > 0

    def complete_claim(
        self,
        tx: TransactionContext,
        claim_id: int,
        picked_up_by_name: str,
        id_presented: str | None,
    ) -> bool:
        """approved -> completed. Returns False if not approved or already picked up."""
        now = _now()
        cursor = tx.execute(
            """
            UPDATE claims
            SET status = ?, picked_up_at = ?, picked_up_by_name = ?, id_presented = ?,
                updated_at = ?
            WHERE id = ? AND status = ? AND picked_up_at IS NULL
        """,
            (
                ClaimStatus.COMPLETED.value,
                now,
                picked_up_by_name,
                id_presented,
                now,
                claim_id,
                ClaimStatus.APPROVED.value,
            ),
        )
        return cursor.rowcount > 0

    def cancel_claim(self, tx: TransactionContext, claim_id: int) -> bool:
        """pending -> cancelled. Returns False if the claim is not pending."""
        cursor = tx.execute(
            "UPDATE claims SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (ClaimStatus.CANCELLED.value, _now(), claim_id, ClaimStatus.PENDING.value),
        )
        return cursor.rowcount > 0

    def list_claims(
        self,
        claimant_user_id: int | None = None,
        status: ClaimStatus | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[ClaimRecord], int]:
        """
        List claims newest first, with proof images.

        Args:
            claimant_user_id: Restrict to one claimant (None = all claims)
            status: Optional status filter
            limit: Page size
            offset: Rows to skip

        Returns:
            (claims, total matching count)
        """
        where = []
        params: list[Any] = []
        if claimant_user_id is not None:
            where.append("c.claimant_user_id = ?")
            params.append(claimant_user_id)
        if status is not None:
            where.append("c.status = ?")
            params.append(status.value)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        with self._transaction() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM claims c {where_sql}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT c.*,
                       fi.title AS found_item_title,
                       u.first_name || ' ' || u.last_name AS claimant_name,
                       u.email AS claimant_email
                FROM claims c
                JOIN found_items fi ON c.found_item_id = fi.id
                LEFT JOIN users u ON c.claimant_user_id = u.id
                {where_sql}
                ORDER BY c.created_at DESC, c.id DESC
                LIMIT ? OFFSET ?
            """,
                [*params, limit, offset],
            ).fetchall()
            claims = [ClaimRecord.from_row(row) for row in rows]
            images = self._images_for(conn, [c.id for c in claims])
            for claim in claims:
                claim.images = images.get(claim.id, [])
            return claims, total

    def list_claims_for_item(self, found_item_id: int) -> list[ClaimRecord]:
        """All claims on one found item, newest first, with proof images."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT c.*,
                       fi.title AS found_item_title,
                       u.first_name || ' ' || u.last_name AS claimant_name,
                       u.email AS claimant_email
                FROM claims c
                JOIN found_items fi ON c.found_item_id = fi.id
                LEFT JOIN users u ON c.claimant_user_id = u.id
                WHERE c.found_item_id = ?
                ORDER BY c.created_at DESC, c.id DESC
            """,
                (found_item_id,),
            ).fetchall()
            claims = [ClaimRecord.from_row(row) for row in rows]
            images = self._images_for(conn, [c.id for c in claims])
            for claim in claims:
                claim.images = images.get(claim.id, [])
            return claims

    def add_claim_image(
        self,
        tx: TransactionContext,
        claim_id: int,
        file_name: str,
        file_path: str,
        file_size: int,
        mime_type: str,
        image_type: str = "proof",
        description: str | None = "Proof of ownership",
    ) -> int:
        """Record a proof image. Returns the image ID."""
        cursor = tx.execute(
            """
            INSERT INTO claim_images
            (claim_id, file_name, file_path, file_size, mime_type, image_type, description,
             created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (claim_id, file_name, file_path, file_size, mime_type, image_type, description, _now()),
        )
        return cursor.lastrowid or 0

    def _images_for(
        self, conn: sqlite3.Connection, claim_ids: list[int]
    ) -> dict[int, list[ClaimImageRecord]]:
        if not claim_ids:
            return {}
        placeholders = ",".join("?" * len(claim_ids))
        rows = conn.execute(
            f"SELECT * FROM claim_images WHERE claim_id IN ({placeholders}) ORDER BY id",
            claim_ids,
        ).fetchall()
        result: dict[int, list[ClaimImageRecord]] = {}
        for row in rows:
            image = ClaimImageRecord.from_row(row)
            result.setdefault(image.claim_id, []).append(image)
        return result

    # Notification and activity methods

    def add_notification(
        self,
        tx: TransactionContext,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        related_item_type: str | None = None,
        related_item_id: int | None = None,
    ) -> int:
        cursor = tx.execute(
            """
            INSERT INTO notifications
            (user_id, type, title, message, related_item_type, related_item_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                user_id,
                notification_type,
                title,
                message,
                related_item_type,
                related_item_id,
                _now(),
            ),
        )
        return cursor.lastrowid or 0

    def notify_admins(
        self,
        tx: TransactionContext,
        notification_type: str,
        title: str,
        message: str,
        related_item_type: str | None = None,
        related_item_id: int | None = None,
    ) -> int:
        """Notify every admin user. Returns the number of notifications created."""
        cursor = tx.execute(
            """
            INSERT INTO notifications
            (user_id, type, title, message, related_item_type, related_item_id, created_at)
            SELECT id, ?, ?, ?, ?, ?, ? FROM users WHERE role = 'admin'
        """,
            (notification_type, title, message, related_item_type, related_item_id, _now()),
        )
        return cursor.rowcount

    def get_notifications(self, user_id: int, unread_only: bool = False) -> list[NotificationRecord]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY id DESC"
        with self._transaction() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
            return [NotificationRecord.from_row(row) for row in rows]

    def log_activity(
        self,
        tx: TransactionContext,
        user_id: int | None,
        action: str,
        resource_type: str | None = None,
        resource_id: int | None = None,
        description: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        status: str = "success",
    ) -> int:
        cursor = tx.execute(
            """
            INSERT INTO activity_logs
            (user_id, action, resource_type, resource_id, description, ip_address,
             user_agent, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                user_id,
                action,
                resource_type,
                resource_id,
                description,
                ip_address,
                user_agent,
                status,
                _now(),
            ),
        )
        return cursor.lastrowid or 0

    def get_activity(self, resource_type: str, resource_id: int) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM activity_logs
                WHERE resource_type = ? AND resource_id = ?
                ORDER BY id
            """,
                (resource_type, resource_id),
            ).fetchall()
            return [dict(row) for row in rows]

    # Email outbox methods

    def enqueue_email(
        self,
        tx: TransactionContext,
        kind: str,
        recipient_email: str,
        recipient_name: str | None,
        payload: dict[str, Any],
        max_attempts: int = 5,
    ) -> int:
        """Add an email to the outbox. Returns the outbox ID."""
        now = _now()
        cursor = tx.execute(
            """
            INSERT INTO email_outbox
            (kind, recipient_email, recipient_name, payload_json, status, max_attempts,
             next_attempt_at, created_at)
            VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
        """,
            (kind, recipient_email, recipient_name, json.dumps(payload), max_attempts, now, now),
        )
        return cursor.lastrowid or 0

    def get_due_emails(self, limit: int = 20, now: str | None = None) -> list[OutboxRecord]:
        """
        Emails ready for a delivery attempt, oldest first.

        Includes pending rows whose next attempt is due and sending rows
        whose lease has expired (a dispatcher died mid-send).
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM email_outbox
                WHERE status IN ('pending', 'sending') AND next_attempt_at <= ?
                ORDER BY next_attempt_at, id
                LIMIT ?
            """,
                (now or _now(), limit),
            ).fetchall()
            return [OutboxRecord.from_row(row) for row in rows]

    def get_email(self, outbox_id: int) -> OutboxRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM email_outbox WHERE id = ?", (outbox_id,)
            ).fetchone()
            return OutboxRecord.from_row(row) if row else None

    def lease_email(self, entry: OutboxRecord, lease_until: str) -> bool:
        """
        Take an email for sending.

        Compare-and-set on the (status, next_attempt_at) pair read by
        get_due_emails, so of several dispatchers holding the same row
        exactly one wins. The lease expiry is stored in next_attempt_at.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE email_outbox
                SET status = 'sending', next_attempt_at = ?
                WHERE id = ? AND status = ? AND next_attempt_at = ?
            """,
                (lease_until, entry.id, entry.status, entry.next_attempt_at),
            )
            return cursor.rowcount == 1

    def mark_email_sent(self, outbox_id: int, lease_until: str) -> bool:
        """Record delivery. Ignored if the lease was lost to another dispatcher."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE email_outbox
                SET status = 'sent', attempts = attempts + 1, sent_at = ?, last_error = NULL
                WHERE id = ? AND status = 'sending' AND next_attempt_at = ?
            """,
                (_now(), outbox_id, lease_until),
            )
            return cursor.rowcount > 0

    def mark_email_attempt_failed(
        self,
        outbox_id: int,
        lease_until: str,
        error: str,
        next_attempt_at: str | None,
    ) -> bool:
        """
        Record a failed delivery attempt and release the lease.

        With next_attempt_at the email goes back to pending for a retry;
        without it the email is marked failed for good.
        """
        with self._transaction() as conn:
            if next_attempt_at:
                cursor = conn.execute(
                    """
                    UPDATE email_outbox
                    SET status = 'pending', attempts = attempts + 1, last_error = ?,
                        next_attempt_at = ?
                    WHERE id = ? AND status = 'sending' AND next_attempt_at = ?
                """,
                    (error[:500], next_attempt_at, outbox_id, lease_until),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE email_outbox
                    SET status = 'failed', attempts = attempts + 1, last_error = ?
                    WHERE id = ? AND status = 'sending' AND next_attempt_at = ?
                """,
                    (error[:500], outbox_id, lease_until),
                )
            return cursor.rowcount > 0

    # Stats

    def get_stats(self) -> dict[str, dict[str, int]]:
        """Counts by status for claims, matches and the email outbox."""
        stats: dict[str, dict[str, int]] = {}
        with self._transaction() as conn:
            for key, table in (
                ("claims", "claims"),
                ("matches", "matches"),
                ("email_outbox", "email_outbox"),
            ):
                rows = conn.execute(
                    f"SELECT status, COUNT(*) AS count FROM {table} GROUP BY status"
                ).fetchall()
                stats[key] = {row["status"]: row["count"] for row in rows}
        return stats
