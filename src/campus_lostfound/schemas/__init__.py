"""
SSOT schemas for the lost & found core.

Closed status enums and the caller identity shared by all modules.
"""

from .lost_found import (
    ADMIN_ROLES,
    Actor,
    ClaimStatus,
    Confidence,
    ItemStatus,
    ItemType,
    MatchStatus,
    NotificationType,
    VerifyAction,
)

__all__ = [
    "ADMIN_ROLES",
    "Actor",
    "ClaimStatus",
    "Confidence",
    "ItemStatus",
    "ItemType",
    "MatchStatus",
    "NotificationType",
    "VerifyAction",
]
