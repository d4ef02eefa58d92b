"""Match persistence and the match state machine.

suggested -> confirmed | dismissed, both terminal. Only the lost item's
owner or an admin/security user may move a match. Re-scoring a pair never
touches its status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from campus_lostfound.errors import AuthorizationError, NotFoundError, StateConflictError
from campus_lostfound.matching.scorer import match_reason
from campus_lostfound.schemas import Actor, Confidence, ItemType, MatchStatus, NotificationType

if TYPE_CHECKING:
    from campus_lostfound.config import Config
    from campus_lostfound.state_store import MatchRecord, StateStore, TransactionContext

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """Outcome of persisting one scored pair."""

    match_id: int | None
    outcome: str  # created, updated, skipped

    @property
    def skipped(self) -> bool:
        return self.outcome == "skipped"


class MatchStore:
    """Owns Match rows and their transitions."""

    def __init__(self, state_store: StateStore, config: Config) -> None:
        self.store = state_store
        self.config = config

    def save_match(
        self,
        lost_item_id: int,
        found_item_id: int,
        score: int,
        confidence: Confidence,
        tx: TransactionContext | None = None,
    ) -> SaveResult:
        """
        Upsert the match for a pair.

        Idempotent: saving the same pair again updates score, confidence and
        reason in place. Pairs with a missing or non-approved item are
        skipped.
        """
        if tx is None:
            with self.store.transaction() as own_tx:
                return self.save_match(lost_item_id, found_item_id, score, confidence, own_tx)

        saved = self.store.upsert_match(
            tx,
            lost_item_id,
            found_item_id,
            score,
            confidence,
            match_reason(score, confidence),
        )
        if saved is None:
            logger.debug(
                f"Skipped match lost={lost_item_id} found={found_item_id}: "
                "item missing or not approved"
            )
            return SaveResult(match_id=None, outcome="skipped")

        match_id, created = saved
        return SaveResult(match_id=match_id, outcome="created" if created else "updated")

    def confirm(self, match_id: int, actor: Actor) -> MatchRecord:
        """Lost item owner confirms the found item is theirs."""
        return self.set_status(match_id, MatchStatus.CONFIRMED, actor)

    def dismiss(self, match_id: int, actor: Actor) -> MatchRecord:
        """Lost item owner rules the match out."""
        return self.set_status(match_id, MatchStatus.DISMISSED, actor)

    def set_status(self, match_id: int, status: MatchStatus, actor: Actor) -> MatchRecord:
        """
        Transition a suggested match.

        Raises:
            NotFoundError: Unknown match
            AuthorizationError: Actor is neither the lost item owner nor admin
            StateConflictError: Match is not suggested, or target is suggested
        """
        with self.store.transaction() as tx:
            match = self.store.get_match(match_id, tx)
            if match is None:
                raise NotFoundError("Match not found")
            if not actor.is_admin and match.lost_user_id != actor.user_id:
                raise AuthorizationError("Access denied")

            if status is MatchStatus.SUGGESTED:
                raise StateConflictError(
                    "A match cannot be moved back to suggested",
                    current_status=match.status.value,
                    required_status="confirmed or dismissed",
                )

            if not self.store.transition_match(tx, match_id, status, actor.user_id):
                current = self.store.get_match(match_id, tx)
                current_status = current.status.value if current else None
                raise StateConflictError(
                    f"Match is already {current_status}",
                    current_status=current_status,
                    required_status=MatchStatus.SUGGESTED.value,
                )

            if status is MatchStatus.CONFIRMED and match.found_user_id is not None:
                self.store.add_notification(
                    tx,
                    user_id=match.found_user_id,
                    notification_type=NotificationType.MATCH_FOUND.value,
                    title="Match Confirmed",
                    message="Someone confirmed a match for your found item",
                    related_item_type=ItemType.FOUND.value,
                    related_item_id=match.found_item_id,
                )

            self.store.log_activity(
                tx,
                user_id=actor.user_id,
                action=f"match_{status.value}",
                resource_type="match",
                resource_id=match_id,
                description=(
                    f"Match {match_id} (lost #{match.lost_item_id}, "
                    f"found #{match.found_item_id}) {status.value}"
                ),
            )

            updated = self.store.get_match(match_id, tx)
            if updated is None:
                raise NotFoundError("Match not found")

        logger.info(f"Match {match_id} {status.value} by user {actor.user_id}")
        return updated

    def my_lost_item_matches(self, actor: Actor) -> list[MatchRecord]:
        """Suggested matches on the actor's lost items at or above the display floor."""
        return self.store.list_matches_for_lost_owner(
            actor.user_id, self.config.matching.min_display_score
        )

    def saved_matches(
        self,
        item_type: ItemType,
        item_id: int,
        actor: Actor,
        status: MatchStatus | None = None,
    ) -> list[MatchRecord]:
        """
        Saved matches for one item, best first.

        The item id is looked up in the table for item_type, so a lost item
        id passed as 'found' is a 404 rather than an empty list.
        """
        item = self.store.get_item(item_type, item_id)
        if item is None:
            raise NotFoundError(f"{item_type.value.capitalize()} item not found")
        if not actor.is_admin and item.user_id != actor.user_id:
            raise AuthorizationError("Access denied")
        return self.store.list_matches_for_item(item_type, item_id, status)
