"""Tests for state store."""

import sqlite3

import pytest

from campus_lostfound.schemas import ClaimStatus, Confidence, ItemStatus, ItemType, MatchStatus
from campus_lostfound.state_store import StateStore
from campus_lostfound.state_store.migrations import MigrationRunner, get_all_migrations


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """Base tables and migrated tables exist."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = {t[0] for t in tables}
        finally:
            conn.close()

        for name in (
            "users",
            "lost_items",
            "found_items",
            "matches",
            "claims",
            "claim_images",
            "notifications",
            "activity_logs",
            "email_outbox",
        ):
            assert name in table_names

    def test_migrations_are_recorded(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            applied = runner.get_applied_versions()
        finally:
            conn.close()

        assert applied == {m.version for m in get_all_migrations()}
        assert max(applied) == 4

    def test_reopen_is_idempotent(self, temp_db):
        StateStore(temp_db)
        store = StateStore(temp_db)

        assert store.get_stats()["claims"] == {}


class TestTransactions:
    def test_commit_on_success(self, store, seed):
        with store.transaction() as tx:
            store.add_notification(tx, seed.claimant_id, "system", "Hello", "World")

        assert len(store.get_notifications(seed.claimant_id)) == 1

    def test_rollback_on_error(self, store, seed):
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                store.add_notification(tx, seed.claimant_id, "system", "Hello", "World")
                raise RuntimeError("boom")

        assert store.get_notifications(seed.claimant_id) == []


class TestClaims:
    def _insert(self, store, seed, claimant_id=None):
        with store.transaction() as tx:
            return store.insert_claim(
                tx,
                found_item_id=seed.found_item_id,
                claimant_user_id=claimant_id or seed.claimant_id,
                description="A description long enough",
                proof_details="Proof details long enough",
            )

    def test_one_pending_claim_per_claimant(self, store, seed):
        self._insert(store, seed)

        with pytest.raises(sqlite3.IntegrityError):
            self._insert(store, seed)

    def test_index_allows_new_claim_after_cancel(self, store, seed):
        claim_id = self._insert(store, seed)
        with store.transaction() as tx:
            assert store.cancel_claim(tx, claim_id)

        assert self._insert(store, seed) != claim_id

    def test_conditional_write_fails_on_wrong_status(self, store, seed):
        claim_id = self._insert(store, seed)
        with store.transaction() as tx:
            assert store.approve_claim(tx, claim_id, seed.admin_id, None, None)
        with store.transaction() as tx:
            assert not store.approve_claim(tx, claim_id, seed.admin_id, None, None)
            assert not store.cancel_claim(tx, claim_id)

        assert store.get_claim(claim_id).status is ClaimStatus.APPROVED

    def test_find_pending_claim(self, store, seed):
        claim_id = self._insert(store, seed)

        assert store.find_pending_claim(seed.found_item_id, seed.claimant_id).id == claim_id
        assert store.find_pending_claim(seed.found_item_id, seed.other_id) is None

    def test_claim_joins_names(self, store, seed):
        claim_id = self._insert(store, seed)

        claim = store.get_claim(claim_id)

        assert claim.claimant_name == "Juan Dela Cruz"
        assert claim.claimant_email == "juan@campus.edu"
        assert claim.to_dict()["found_item_title"] == "Black leather wallet"

    def test_claim_images(self, store, seed):
        claim_id = self._insert(store, seed)
        with store.transaction() as tx:
            store.add_claim_image(
                tx,
                claim_id=claim_id,
                file_name="a.png",
                file_path=f"claims/{claim_id}/a.png",
                file_size=123,
                mime_type="image/png",
            )

        images = store.get_claim(claim_id).images
        assert [i.to_dict()["file_name"] for i in images] == ["a.png"]
        assert images[0].image_type == "proof"


class TestMatches:
    def test_upsert_and_transition(self, store, seed):
        with store.transaction() as tx:
            match_id, created = store.upsert_match(
                tx, seed.lost_item_id, seed.found_item_id, 70, Confidence.MEDIUM, "reason"
            )
        assert created

        with store.transaction() as tx:
            assert store.transition_match(tx, match_id, MatchStatus.DISMISSED, seed.claimant_id)
        with store.transaction() as tx:
            assert not store.transition_match(
                tx, match_id, MatchStatus.CONFIRMED, seed.claimant_id
            )

        match = store.get_match(match_id)
        assert match.status is MatchStatus.DISMISSED
        assert match.lost_user_id == seed.claimant_id
        assert match.found_user_id == seed.finder_id

    def test_confirmed_and_dismissed_exclusive(self, store, seed):
        with store.transaction() as tx:
            match_id, _ = store.upsert_match(
                tx, seed.lost_item_id, seed.found_item_id, 70, Confidence.MEDIUM, "reason"
            )

        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as tx:
                tx.execute(
                    "UPDATE matches SET confirmed_by = ?, dismissed_by = ? WHERE id = ?",
                    (seed.claimant_id, seed.claimant_id, match_id),
                )

    def test_transition_to_suggested_is_invalid(self, store, seed):
        with store.transaction() as tx:
            match_id, _ = store.upsert_match(
                tx, seed.lost_item_id, seed.found_item_id, 70, Confidence.MEDIUM, "reason"
            )
            with pytest.raises(ValueError):
                store.transition_match(tx, match_id, MatchStatus.SUGGESTED, seed.claimant_id)


class TestItemsAndStats:
    def test_list_items_filters_status(self, store, seed):
        store.create_lost_item(seed.other_id, "Keys", status=ItemStatus.PENDING)

        approved = store.list_items(ItemType.LOST)
        excluded = store.list_items(ItemType.LOST, exclude_user_id=seed.claimant_id)

        assert [i.id for i in approved] == [seed.lost_item_id]
        assert excluded == []

    def test_item_record_maps_type_columns(self, store, seed):
        found = store.get_found_item(seed.found_item_id)
        lost = store.get_lost_item(seed.lost_item_id)

        assert found.item_type is ItemType.FOUND
        assert found.date == "2025-11-20"
        assert found.location_id == 3
        assert lost.date == "2025-11-18"

    def test_stats(self, store, seed):
        with store.transaction() as tx:
            store.insert_claim(tx, seed.found_item_id, seed.claimant_id, "d" * 20, "p" * 20)
            store.enqueue_email(tx, "claim_approved", "a@b.c", "A", {"item_title": "x"})

        stats = store.get_stats()

        assert stats["claims"] == {"pending": 1}
        assert stats["matches"] == {}
        assert stats["email_outbox"] == {"pending": 1}


class TestEmailLease:
    def test_only_one_lease_per_read(self, store):
        with store.transaction() as tx:
            outbox_id = store.enqueue_email(tx, "claim_approved", "a@b.c", "A", {"item_title": "x"})
        entry = store.get_email(outbox_id)

        first = store.lease_email(entry, "9999-01-01T00:00:00.000000Z")
        second = store.lease_email(entry, "9999-01-01T00:05:00.000000Z")

        assert first is True
        assert second is False
        assert store.get_email(outbox_id).status == "sending"

    def test_finish_requires_current_lease(self, store):
        with store.transaction() as tx:
            outbox_id = store.enqueue_email(tx, "claim_approved", "a@b.c", "A", {"item_title": "x"})
        store.lease_email(store.get_email(outbox_id), "9999-01-01T00:00:00.000000Z")

        assert store.mark_email_sent(outbox_id, "1999-01-01T00:00:00.000000Z") is False
        assert store.mark_email_sent(outbox_id, "9999-01-01T00:00:00.000000Z") is True
        assert store.get_email(outbox_id).status == "sent"
