"""Matching engine for correlating lost item reports with found item reports.

Scores every approved counterpart of a subject item, ranks the results,
and persists the top candidates through the MatchStore. Lookups can run
on demand for a single item or as a full sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from campus_lostfound.errors import AuthorizationError, NotFoundError
from campus_lostfound.matching.match_store import MatchStore
from campus_lostfound.matching.scorer import MatchScore, SimilarityScorer
from campus_lostfound.schemas import Actor, Confidence, ItemStatus, ItemType

if TYPE_CHECKING:
    from campus_lostfound.config import Config
    from campus_lostfound.state_store import ItemRecord, StateStore

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A ranked counterpart for a subject item."""

    counterpart_id: int
    counterpart_type: ItemType
    score: int
    confidence: Confidence
    reason: str
    title: str
    date: str | None = None
    signals: list[MatchScore] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "counterpart_id": self.counterpart_id,
            f"{self.counterpart_type.value}_item_id": self.counterpart_id,
            "title": self.title,
            "date": self.date,
            "score": self.score,
            "similarity_score": self.score,
            "confidence": self.confidence.value,
            "reason": self.reason,
            "signals": [
                {"signal": s.signal, "score": round(s.score, 4), "detail": s.detail}
                for s in self.signals
            ],
        }


@dataclass
class AutoMatchSummary:
    """Outcome of a full matching sweep."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class MatchingEngine:
    """Engine for matching lost items to found items.

    Candidates are only drawn from approved counterparts and never from
    items reported by the requester or by the subject's own reporter.
    Results are ordered by score descending, ties broken by counterpart id
    ascending, so repeated lookups are stable.
    """

    def __init__(self, state_store: StateStore, config: Config) -> None:
        """Initialize the matching engine.

        Args:
            state_store: State store for item and match access.
            config: Application configuration.
        """
        self.store = state_store
        self.config = config
        self.scorer = SimilarityScorer(config.matching)
        self.matches = MatchStore(state_store, config)

    def find_candidates(
        self,
        item_id: int,
        direction: ItemType,
        requester_id: int | None = None,
    ) -> list[Candidate]:
        """Rank counterparts for one item.

        Args:
            item_id: Subject item ID.
            direction: ItemType.LOST to find found items for a lost item,
                ItemType.FOUND for the reverse.
            requester_id: Caller; their own reports are excluded.

        Returns:
            Candidates sorted by score descending. Empty if the subject is
            not approved.

        Raises:
            NotFoundError: If the subject item does not exist.
        """
        subject = self.store.get_item(direction, item_id)
        if subject is None:
            raise NotFoundError(f"{direction.value.capitalize()} item not found")

        if subject.status is not ItemStatus.APPROVED:
            logger.debug(
                f"Skipping {direction.value} item {item_id}: status is {subject.status.value}"
            )
            return []

        excluded = {subject.user_id}
        if requester_id is not None:
            excluded.add(requester_id)

        candidates: list[Candidate] = []
        for other in self.store.list_items(direction.counterpart, ItemStatus.APPROVED):
            if other.user_id in excluded:
                continue
            candidates.append(self._score_pair(subject, other))

        candidates.sort(key=lambda c: (-c.score, c.counterpart_id))
        return candidates

    def match_item(self, item_id: int, direction: ItemType, actor: Actor) -> list[Candidate]:
        """On-demand lookup: rank candidates and persist the top N.

        Raises:
            NotFoundError: Unknown item.
            AuthorizationError: Actor is neither the item's reporter nor admin.
        """
        subject = self.store.get_item(direction, item_id)
        if subject is None:
            raise NotFoundError(f"{direction.value.capitalize()} item not found")
        if not actor.is_admin and subject.user_id != actor.user_id:
            raise AuthorizationError("Access denied")

        candidates = self.find_candidates(item_id, direction, requester_id=actor.user_id)
        self._persist_top(item_id, direction, candidates)
        return candidates

    def run_auto_match(self) -> AutoMatchSummary:
        """Sweep every approved lost item, then every approved found item.

        A failure on one item is logged and counted; the sweep continues.
        """
        summary = AutoMatchSummary()

        for direction in (ItemType.LOST, ItemType.FOUND):
            for item in self.store.list_items(direction, ItemStatus.APPROVED):
                try:
                    candidates = self.find_candidates(item.id, direction)
                    outcomes = self._persist_top(item.id, direction, candidates)
                except Exception as e:
                    logger.error(f"Auto-match failed for {direction.value} item {item.id}: {e}")
                    summary.errors += 1
                    continue

                summary.processed += 1
                summary.created += outcomes["created"]
                summary.updated += outcomes["updated"]
                summary.skipped += outcomes["skipped"]

        logger.info(f"Auto-match sweep complete: {summary.to_dict()}")
        return summary

    def _persist_top(
        self, item_id: int, direction: ItemType, candidates: list[Candidate]
    ) -> dict[str, int]:
        outcomes = {"created": 0, "updated": 0, "skipped": 0}
        top = candidates[: self.config.matching.top_n]
        if not top:
            return outcomes

        with self.store.transaction() as tx:
            for candidate in top:
                if direction is ItemType.LOST:
                    lost_id, found_id = item_id, candidate.counterpart_id
                else:
                    lost_id, found_id = candidate.counterpart_id, item_id
                result = self.matches.save_match(
                    lost_id, found_id, candidate.score, candidate.confidence, tx=tx
                )
                outcomes[result.outcome] += 1

        return outcomes

    def _score_pair(self, subject: ItemRecord, other: ItemRecord) -> Candidate:
        if subject.item_type is ItemType.LOST:
            result = self.scorer.score(subject, other)
        else:
            result = self.scorer.score(other, subject)

        return Candidate(
            counterpart_id=other.id,
            counterpart_type=other.item_type,
            score=result.score,
            confidence=result.confidence,
            reason=result.reason,
            title=other.title,
            date=other.date,
            signals=result.signals,
        )
