"""Similarity scoring for lost/found item pairs.

Scores one (lost, found) pair on four signals and combines them into an
integer 0-100 score with a confidence band. Pure and deterministic: the
same pair always yields the same score, which keeps re-scoring idempotent.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from campus_lostfound.config import MatchingConfig
from campus_lostfound.schemas import Confidence

if TYPE_CHECKING:
    from campus_lostfound.state_store import ItemRecord

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

# Tokens shorter than this carry no signal ("a", "of", "my")
MIN_TOKEN_LENGTH = 3


@dataclass
class MatchScore:
    """Individual signal contribution to a match score."""

    signal: str
    score: float
    weight: float
    detail: str

    @property
    def weighted_score(self) -> float:
        """Get the weighted score for this signal."""
        return self.score * self.weight


@dataclass
class ScoreResult:
    """Scored lost/found pair."""

    lost_item_id: int
    found_item_id: int
    score: int
    confidence: Confidence
    signals: list[MatchScore] = field(default_factory=list)

    @property
    def reason(self) -> str:
        """Human-readable match reason stored with the match."""
        return match_reason(self.score, self.confidence)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "lost_item_id": self.lost_item_id,
            "found_item_id": self.found_item_id,
            "score": self.score,
            "confidence": self.confidence.value,
            "reason": self.reason,
            "signals": [
                {
                    "signal": s.signal,
                    "score": round(s.score, 4),
                    "weight": s.weight,
                    "weighted_score": round(s.weighted_score, 4),
                    "detail": s.detail,
                }
                for s in self.signals
            ],
        }


def match_reason(score: int, confidence: Confidence) -> str:
    return f"Match confidence: {Confidence(confidence).value} ({score}% similarity)"


def confidence_band(score: int, high: int = 75, medium: int = 50) -> Confidence:
    """Map a 0-100 score to its confidence band."""
    if score >= high:
        return Confidence.HIGH
    if score >= medium:
        return Confidence.MEDIUM
    return Confidence.LOW


def tokenize(text: str | None) -> set[str]:
    """Lowercased alphanumeric tokens of at least MIN_TOKEN_LENGTH chars."""
    if not text:
        return set()
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) >= MIN_TOKEN_LENGTH}


def token_overlap(a: set[str], b: set[str]) -> float:
    """Dice coefficient of two token sets (0 when either is empty)."""
    if not a or not b:
        return 0.0
    return 2 * len(a & b) / (len(a) + len(b))


def normalize_identifier(value: str | None) -> str:
    """Identifier with case, spacing and punctuation removed."""
    if not value:
        return ""
    return _NON_ALNUM_RE.sub("", value.lower())


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class SimilarityScorer:
    """Scores lost/found pairs.

    Signals:
    - category: 1 if category ids are equal, else 0
    - text: best of identifier similarity and title+description overlap
    - date: linear decay from 1 (same day) to 0 at the edge of the window;
      0 if found before last seen or outside the window
    - location: 1 if last-seen and found location ids are equal, else 0

    Weighted signals sum to a 0-100 score, rounded half up.
    """

    def __init__(self, config: MatchingConfig | None = None) -> None:
        self.config = config or MatchingConfig()
        weights = self.config.weights()
        self.weight_category = weights["category"]
        self.weight_text = weights["text"]
        self.weight_date = weights["date"]
        self.weight_location = weights["location"]

    def score(self, lost: ItemRecord, found: ItemRecord) -> ScoreResult:
        """Score one pair."""
        signals = [
            self._score_category(lost.category_id, found.category_id),
            self._score_text(lost, found),
            self._score_date(_parse_date(lost.date), _parse_date(found.date)),
            self._score_location(lost.location_id, found.location_id),
        ]
        total = sum(s.weighted_score for s in signals)
        score = max(0, min(100, math.floor(total + 0.5)))

        return ScoreResult(
            lost_item_id=lost.id,
            found_item_id=found.id,
            score=score,
            confidence=confidence_band(
                score, self.config.high_threshold, self.config.medium_threshold
            ),
            signals=signals,
        )

    def _score_category(self, lost: int | None, found: int | None) -> MatchScore:
        if lost is not None and lost == found:
            return MatchScore("category", 1.0, self.weight_category, "same category")
        return MatchScore("category", 0.0, self.weight_category, "different category")

    def _score_text(self, lost: ItemRecord, found: ItemRecord) -> MatchScore:
        """Identifier match wins outright; otherwise best token overlap."""
        lost_id = normalize_identifier(lost.unique_identifiers)
        found_id = normalize_identifier(found.unique_identifiers)
        if lost_id and lost_id == found_id:
            return MatchScore("text", 1.0, self.weight_text, "identical identifiers")

        identifier_sim = token_overlap(
            tokenize(lost.unique_identifiers), tokenize(found.unique_identifiers)
        )
        content_sim = token_overlap(
            tokenize(f"{lost.title} {lost.description or ''}"),
            tokenize(f"{found.title} {found.description or ''}"),
        )

        if identifier_sim >= content_sim and identifier_sim > 0:
            return MatchScore(
                "text", identifier_sim, self.weight_text, f"identifier overlap {identifier_sim:.2f}"
            )
        if content_sim > 0:
            return MatchScore(
                "text", content_sim, self.weight_text, f"title/description overlap {content_sim:.2f}"
            )
        return MatchScore("text", 0.0, self.weight_text, "no text overlap")

    def _score_date(self, lost: date | None, found: date | None) -> MatchScore:
        if lost is None or found is None:
            return MatchScore("date", 0.0, self.weight_date, "missing date")

        days = (found - lost).days
        if days < 0:
            return MatchScore("date", 0.0, self.weight_date, "found before last seen")

        window = self.config.date_window_days
        if days > window:
            return MatchScore("date", 0.0, self.weight_date, f"{days} days apart (outside window)")

        score = 1.0 - days / (window + 1)
        return MatchScore("date", score, self.weight_date, f"{days} days apart")

    def _score_location(self, lost: int | None, found: int | None) -> MatchScore:
        if lost is not None and lost == found:
            return MatchScore("location", 1.0, self.weight_location, "same location")
        return MatchScore("location", 0.0, self.weight_location, "different location")
