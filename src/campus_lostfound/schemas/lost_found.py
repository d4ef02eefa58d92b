"""
Canonical status vocabularies and caller identity.

Statuses are closed enums: constructing one from an unknown string raises
ValueError, so invalid states cannot enter the core.
"""

from dataclasses import dataclass
from enum import Enum


class ItemStatus(str, Enum):
    """Lifecycle of a lost or found item report."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MATCHED = "matched"
    CLAIMED = "claimed"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class ClaimStatus(str, Enum):
    """
    Claim lifecycle.

    PENDING -> APPROVED -> COMPLETED
    PENDING -> REJECTED | CANCELLED
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class MatchStatus(str, Enum):
    """Match lifecycle: SUGGESTED -> CONFIRMED | DISMISSED (terminal)."""

    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


class Confidence(str, Enum):
    """Confidence band derived from the similarity score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ItemType(str, Enum):
    """Which side of a match an item sits on."""

    LOST = "lost"
    FOUND = "found"

    @property
    def counterpart(self) -> "ItemType":
        return ItemType.FOUND if self is ItemType.LOST else ItemType.LOST


class VerifyAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class NotificationType(str, Enum):
    CLAIM_REQUEST = "claim_request"
    CLAIM_RESPONSE = "claim_response"
    MATCH_FOUND = "match_found"
    ITEM_RESOLVED = "item_resolved"
    SYSTEM = "system"


# Roles allowed to adjudicate claims and act on any match
ADMIN_ROLES = frozenset({"admin", "security"})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as resolved by the upstream gateway."""

    user_id: int
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        """Admin or security staff."""
        return self.role in ADMIN_ROLES

    @property
    def is_superuser(self) -> bool:
        """Full admin (batch operations)."""
        return self.role == "admin"
