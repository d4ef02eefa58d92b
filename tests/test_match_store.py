"""Tests for match persistence and transitions."""

import pytest

from campus_lostfound.errors import AuthorizationError, NotFoundError, StateConflictError
from campus_lostfound.matching import MatchStore
from campus_lostfound.schemas import Confidence, ItemStatus, ItemType, MatchStatus


@pytest.fixture
def matches(store, config):
    return MatchStore(store, config)


@pytest.fixture
def match_id(matches, seed):
    result = matches.save_match(seed.lost_item_id, seed.found_item_id, 82, Confidence.HIGH)
    return result.match_id


class TestSaveMatch:
    def test_creates_suggested_match(self, matches, store, seed):
        result = matches.save_match(seed.lost_item_id, seed.found_item_id, 82, Confidence.HIGH)

        assert result.outcome == "created"
        match = store.get_match(result.match_id)
        assert match.status is MatchStatus.SUGGESTED
        assert match.match_reason == "Match confidence: high (82% similarity)"

    def test_second_save_updates_in_place(self, matches, store, seed):
        first = matches.save_match(seed.lost_item_id, seed.found_item_id, 82, Confidence.HIGH)
        second = matches.save_match(seed.lost_item_id, seed.found_item_id, 55, Confidence.MEDIUM)

        assert second.outcome == "updated"
        assert second.match_id == first.match_id
        rows = store.list_matches_for_item(ItemType.LOST, seed.lost_item_id)
        assert len(rows) == 1
        assert rows[0].similarity_score == 55
        assert rows[0].confidence is Confidence.MEDIUM

    def test_rescoring_keeps_status(self, matches, store, seed, match_id):
        matches.confirm(match_id, seed.claimant)

        matches.save_match(seed.lost_item_id, seed.found_item_id, 60, Confidence.MEDIUM)

        match = store.get_match(match_id)
        assert match.status is MatchStatus.CONFIRMED
        assert match.similarity_score == 60

    def test_skips_unapproved_item(self, matches, store, seed):
        store.set_item_status(ItemType.FOUND, seed.found_item_id, ItemStatus.CLAIMED)

        result = matches.save_match(seed.lost_item_id, seed.found_item_id, 90, Confidence.HIGH)

        assert result.skipped
        assert result.match_id is None

    def test_skips_missing_item(self, matches, seed):
        result = matches.save_match(seed.lost_item_id, 9999, 90, Confidence.HIGH)

        assert result.skipped


class TestTransitions:
    def test_owner_confirms(self, matches, store, seed, match_id):
        match = matches.confirm(match_id, seed.claimant)

        assert match.status is MatchStatus.CONFIRMED
        assert match.confirmed_by == seed.claimant_id
        assert match.dismissed_by is None
        assert match.action_date is not None

    def test_confirm_notifies_finder(self, matches, store, seed, match_id):
        matches.confirm(match_id, seed.claimant)

        notifications = store.get_notifications(seed.finder_id)
        assert [n.title for n in notifications] == ["Match Confirmed"]
        assert notifications[0].related_item_id == seed.found_item_id

    def test_owner_dismisses(self, matches, seed, match_id):
        match = matches.dismiss(match_id, seed.claimant)

        assert match.status is MatchStatus.DISMISSED
        assert match.dismissed_by == seed.claimant_id
        assert match.confirmed_by is None

    def test_admin_may_transition(self, matches, seed, match_id):
        assert matches.dismiss(match_id, seed.admin).dismissed_by == seed.admin_id

    def test_finder_is_denied(self, matches, seed, match_id):
        with pytest.raises(AuthorizationError):
            matches.confirm(match_id, seed.finder)

    def test_terminal_status_conflicts(self, matches, seed, match_id):
        matches.confirm(match_id, seed.claimant)

        with pytest.raises(StateConflictError) as exc_info:
            matches.dismiss(match_id, seed.claimant)

        assert exc_info.value.current_status == "confirmed"
        assert exc_info.value.http_status == 409

    def test_cannot_return_to_suggested(self, matches, seed, match_id):
        with pytest.raises(StateConflictError):
            matches.set_status(match_id, MatchStatus.SUGGESTED, seed.claimant)

    def test_unknown_match(self, matches, seed):
        with pytest.raises(NotFoundError):
            matches.confirm(9999, seed.claimant)

    def test_transition_is_logged(self, matches, store, seed, match_id):
        matches.confirm(match_id, seed.claimant)

        actions = [row["action"] for row in store.get_activity("match", match_id)]
        assert actions == ["match_confirmed"]


class TestQueries:
    def test_my_lost_item_matches_applies_floor(self, matches, store, seed):
        weak_found = store.create_found_item(seed.other_id, "Scarf", category_id=1)
        matches.save_match(seed.lost_item_id, seed.found_item_id, 80, Confidence.HIGH)
        matches.save_match(seed.lost_item_id, weak_found, 30, Confidence.LOW)

        result = matches.my_lost_item_matches(seed.claimant)

        assert [m.found_item_id for m in result] == [seed.found_item_id]

    def test_my_lost_item_matches_excludes_decided(self, matches, seed, match_id):
        matches.dismiss(match_id, seed.claimant)

        assert matches.my_lost_item_matches(seed.claimant) == []

    def test_saved_matches_for_found_item(self, matches, seed, match_id):
        result = matches.saved_matches(ItemType.FOUND, seed.found_item_id, seed.finder)

        assert [m.id for m in result] == [match_id]
        assert result[0].found_item_title == "Black leather wallet"

    def test_saved_matches_status_filter(self, matches, seed, match_id):
        matches.confirm(match_id, seed.claimant)

        suggested = matches.saved_matches(
            ItemType.LOST, seed.lost_item_id, seed.claimant, MatchStatus.SUGGESTED
        )
        confirmed = matches.saved_matches(
            ItemType.LOST, seed.lost_item_id, seed.claimant, MatchStatus.CONFIRMED
        )

        assert suggested == []
        assert [m.id for m in confirmed] == [match_id]

    def test_saved_matches_wrong_table_is_404(self, matches, store, seed):
        # No found item carries this lost item's id
        missing = seed.lost_item_id + 100
        with pytest.raises(NotFoundError):
            matches.saved_matches(ItemType.FOUND, missing, seed.admin)

    def test_saved_matches_denies_other_user(self, matches, seed, match_id):
        with pytest.raises(AuthorizationError):
            matches.saved_matches(ItemType.LOST, seed.lost_item_id, seed.other)
