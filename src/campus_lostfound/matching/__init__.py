"""
Matching module for pairing lost item reports with found item reports.

Scores candidate pairs, ranks them, and persists the best as suggested
matches that owners can confirm or dismiss.
"""

from .engine import AutoMatchSummary, Candidate, MatchingEngine
from .match_store import MatchStore, SaveResult
from .scorer import MatchScore, ScoreResult, SimilarityScorer, confidence_band

__all__ = [
    "AutoMatchSummary",
    "Candidate",
    "MatchingEngine",
    "MatchScore",
    "MatchStore",
    "SaveResult",
    "ScoreResult",
    "SimilarityScorer",
    "confidence_band",
]
