"""Tests for similarity scoring."""

import pytest

from campus_lostfound.config import MatchingConfig
from campus_lostfound.matching.scorer import (
    SimilarityScorer,
    confidence_band,
    match_reason,
    normalize_identifier,
    token_overlap,
    tokenize,
)
from campus_lostfound.schemas import Confidence, ItemStatus, ItemType
from campus_lostfound.state_store import ItemRecord


def make_item(item_type: ItemType, item_id: int = 1, **overrides) -> ItemRecord:
    values = {
        "id": item_id,
        "item_type": item_type,
        "user_id": 10,
        "title": "Blue umbrella",
        "description": None,
        "category_id": None,
        "location_id": None,
        "date": None,
        "unique_identifiers": None,
        "status": ItemStatus.APPROVED,
        "created_at": "2025-11-01T00:00:00Z",
    }
    values.update(overrides)
    return ItemRecord(**values)


class TestConfidenceBand:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (100, Confidence.HIGH),
            (75, Confidence.HIGH),
            (74, Confidence.MEDIUM),
            (50, Confidence.MEDIUM),
            (49, Confidence.LOW),
            (0, Confidence.LOW),
        ],
    )
    def test_band_edges(self, score, expected):
        assert confidence_band(score) is expected

    def test_custom_thresholds(self):
        assert confidence_band(60, high=60, medium=40) is Confidence.HIGH
        assert confidence_band(39, high=60, medium=40) is Confidence.LOW


class TestTextHelpers:
    def test_tokenize_drops_short_tokens(self):
        assert tokenize("A red bag of MY books") == {"red", "bag", "books"}

    def test_tokenize_empty(self):
        assert tokenize(None) == set()
        assert tokenize("") == set()

    def test_token_overlap_is_dice(self):
        assert token_overlap({"red", "bag"}, {"red", "bag"}) == 1.0
        assert token_overlap({"red", "bag"}, {"red", "hat"}) == 0.5
        assert token_overlap(set(), {"red"}) == 0.0

    def test_normalize_identifier(self):
        assert normalize_identifier("SN: AB-12 34") == "snab1234"
        assert normalize_identifier(None) == ""

    def test_match_reason_format(self):
        assert match_reason(82, Confidence.HIGH) == "Match confidence: high (82% similarity)"


class TestSimilarityScorer:
    @pytest.fixture
    def scorer(self):
        return SimilarityScorer(MatchingConfig())

    def test_identical_pair_scores_full(self, scorer):
        lost = make_item(
            ItemType.LOST,
            category_id=2,
            location_id=4,
            date="2025-11-10",
            unique_identifiers="Serial X-100",
        )
        found = make_item(
            ItemType.FOUND,
            item_id=2,
            category_id=2,
            location_id=4,
            date="2025-11-10",
            unique_identifiers="serial x100",
        )

        result = scorer.score(lost, found)

        assert result.score == 100
        assert result.confidence is Confidence.HIGH
        assert result.lost_item_id == 1
        assert result.found_item_id == 2

    def test_category_and_identifier_is_high(self, scorer):
        lost = make_item(ItemType.LOST, category_id=1, unique_identifiers="IMEI 3519 0000")
        found = make_item(
            ItemType.FOUND, item_id=2, category_id=1, unique_identifiers="imei 35190000"
        )

        result = scorer.score(lost, found)

        # category 30 + identifiers 45
        assert result.score == 75
        assert result.confidence is Confidence.HIGH

    def test_unrelated_pair_is_low(self, scorer):
        lost = make_item(ItemType.LOST, title="Calculator", category_id=1)
        found = make_item(ItemType.FOUND, item_id=2, title="Jacket", category_id=2)

        result = scorer.score(lost, found)

        assert result.score < 50
        assert result.confidence is Confidence.LOW

    def test_found_before_last_seen_scores_no_date(self, scorer):
        lost = make_item(ItemType.LOST, date="2025-11-10")
        found = make_item(ItemType.FOUND, item_id=2, date="2025-11-09")

        signals = {s.signal: s for s in scorer.score(lost, found).signals}

        assert signals["date"].score == 0.0
        assert signals["date"].detail == "found before last seen"

    def test_date_outside_window(self, scorer):
        lost = make_item(ItemType.LOST, date="2025-10-01")
        found = make_item(ItemType.FOUND, item_id=2, date="2025-11-15")

        signals = {s.signal: s for s in scorer.score(lost, found).signals}

        assert signals["date"].score == 0.0

    def test_date_decays_within_window(self, scorer):
        lost = make_item(ItemType.LOST, date="2025-11-01")
        same_day = make_item(ItemType.FOUND, item_id=2, date="2025-11-01")
        later = make_item(ItemType.FOUND, item_id=3, date="2025-11-16")

        same = {s.signal: s for s in scorer.score(lost, same_day).signals}["date"]
        late = {s.signal: s for s in scorer.score(lost, later).signals}["date"]

        assert same.score == 1.0
        assert 0.0 < late.score < same.score

    def test_title_overlap_contributes(self, scorer):
        lost = make_item(ItemType.LOST, title="Blue Nike backpack")
        found = make_item(ItemType.FOUND, item_id=2, title="Nike backpack, blue")

        signals = {s.signal: s for s in scorer.score(lost, found).signals}

        assert signals["text"].score == 1.0
        assert "title/description" in signals["text"].detail

    def test_score_is_deterministic(self, scorer):
        lost = make_item(ItemType.LOST, title="Grey hoodie", category_id=5, date="2025-11-01")
        found = make_item(
            ItemType.FOUND, item_id=2, title="Hoodie grey", category_id=5, date="2025-11-03"
        )

        assert scorer.score(lost, found).score == scorer.score(lost, found).score

    def test_weights_follow_config(self):
        config = MatchingConfig(
            weight_category=100, weight_text=0, weight_date=0, weight_location=0
        )
        scorer = SimilarityScorer(config)
        lost = make_item(ItemType.LOST, category_id=7)
        found = make_item(ItemType.FOUND, item_id=2, category_id=7)

        assert scorer.score(lost, found).score == 100

    def test_to_dict(self, scorer):
        lost = make_item(ItemType.LOST, category_id=1)
        found = make_item(ItemType.FOUND, item_id=2, category_id=1)

        data = scorer.score(lost, found).to_dict()

        assert data["score"] == 30
        assert data["confidence"] == "low"
        assert data["reason"] == "Match confidence: low (30% similarity)"
        assert [s["signal"] for s in data["signals"]] == ["category", "text", "date", "location"]
