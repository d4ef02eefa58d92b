"""Tests for the claim workflow."""

import sqlite3
import threading

import pytest
from conftest import make_image_bytes, stage

from campus_lostfound.claims import AuditContext, ClaimWorkflow
from campus_lostfound.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from campus_lostfound.schemas import ClaimStatus, ItemStatus, ItemType, VerifyAction
from campus_lostfound.state_store import StateStore
from campus_lostfound.storage import ImageProcessingError
from campus_lostfound.validation import (
    ClaimListQuery,
    ClaimSubmission,
    PickupRequest,
    VerifyRequest,
)

DESCRIPTION = "Black leather wallet with my student ID inside"
PROOF = "The ID card reads Juan Dela Cruz, number 2021-00123"


def submission(found_item_id: int) -> ClaimSubmission:
    return ClaimSubmission(
        found_item_id=found_item_id, description=DESCRIPTION, proof_details=PROOF
    )


def approve(pickup: str | None = None, notes: str | None = None) -> VerifyRequest:
    return VerifyRequest(
        action=VerifyAction.APPROVE,
        verification_notes=notes,
        rejection_reason=None,
        pickup_scheduled=pickup,
    )


def reject(reason: str = "Proof does not match the item") -> VerifyRequest:
    return VerifyRequest(
        action=VerifyAction.REJECT,
        verification_notes=None,
        rejection_reason=reason,
        pickup_scheduled=None,
    )


@pytest.fixture
def workflow(store, config, files):
    return ClaimWorkflow(store, config, files=files)


@pytest.fixture
def claim(workflow, seed):
    return workflow.submit_claim(seed.claimant, submission(seed.found_item_id))


class TestSubmitClaim:
    def test_creates_pending_claim(self, workflow, seed):
        claim = workflow.submit_claim(
            seed.claimant,
            submission(seed.found_item_id),
            audit=AuditContext(ip_address="10.0.0.5", user_agent="pytest"),
        )

        assert claim.status is ClaimStatus.PENDING
        assert claim.claimant_user_id == seed.claimant_id
        assert claim.found_item_title == "Black leather wallet"
        assert claim.images == []

    def test_notifies_admins_and_logs(self, workflow, store, seed):
        claim = workflow.submit_claim(seed.claimant, submission(seed.found_item_id))

        admin_notes = store.get_notifications(seed.admin_id)
        assert [n.title for n in admin_notes] == ["New Claim Submitted"]
        assert admin_notes[0].message == 'A new claim has been submitted for "Black leather wallet"'
        activity = store.get_activity("claim", claim.id)
        assert activity[0]["action"] == "create"
        assert activity[0]["description"] == f"Submitted claim for found item #{seed.found_item_id}"

    def test_records_audit_details(self, workflow, store, seed):
        claim = workflow.submit_claim(
            seed.claimant,
            submission(seed.found_item_id),
            audit=AuditContext(ip_address="10.0.0.5", user_agent="pytest"),
        )

        row = store.get_activity("claim", claim.id)[0]
        assert row["ip_address"] == "10.0.0.5"
        assert row["user_agent"] == "pytest"

    def test_duplicate_pending_claim_rejected(self, workflow, seed, claim):
        with pytest.raises(StateConflictError) as exc_info:
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id))

        err = exc_info.value
        assert err.http_status == 400
        assert err.message == "You already have a pending claim for this item"
        assert err.to_dict()["existing_claim_id"] == claim.id

    def test_resubmit_after_rejection_allowed(self, workflow, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, reject())

        again = workflow.submit_claim(seed.claimant, submission(seed.found_item_id))

        assert again.id != claim.id
        assert again.status is ClaimStatus.PENDING

    def test_cannot_claim_own_found_item(self, workflow, seed):
        with pytest.raises(StateConflictError) as exc_info:
            workflow.submit_claim(seed.finder, submission(seed.found_item_id))

        assert exc_info.value.http_status == 400
        assert "reported as found" in exc_info.value.message

    def test_item_must_be_approved(self, workflow, store, seed):
        store.set_item_status(ItemType.FOUND, seed.found_item_id, ItemStatus.PENDING)

        with pytest.raises(StateConflictError) as exc_info:
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id))

        err = exc_info.value
        assert err.current_status == "pending"
        assert err.required_status == "approved"
        assert err.message == "Cannot claim this item. Current status: pending"

    def test_missing_item(self, workflow, seed):
        with pytest.raises(NotFoundError):
            workflow.submit_claim(seed.claimant, submission(9999))

    def test_stores_images_in_claim_directory(self, workflow, files, seed):
        upload = stage(files, "wallet.png", make_image_bytes())

        claim = workflow.submit_claim(seed.claimant, submission(seed.found_item_id), [upload])

        assert len(claim.images) == 1
        image = claim.images[0]
        assert image.file_path == f"claims/{claim.id}/{upload.file_name}"
        assert image.mime_type == "image/png"
        assert (files.upload_dir / image.file_path).exists()
        assert not upload.path.exists()

    def test_large_image_is_downsized(self, workflow, files, seed):
        from PIL import Image

        upload = stage(files, "big.png", make_image_bytes(size=(2400, 1200)))

        claim = workflow.submit_claim(seed.claimant, submission(seed.found_item_id), [upload])

        with Image.open(files.upload_dir / claim.images[0].file_path) as img:
            assert img.size == (1920, 960)

    def test_corrupt_image_rolls_back_everything(self, workflow, store, files, seed):
        good = stage(files, "good.png", make_image_bytes())
        bad = stage(files, "bad.jpg", b"definitely not a jpeg", mime_type="image/jpeg")

        with pytest.raises(ImageProcessingError) as exc_info:
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id), [good, bad])

        assert exc_info.value.http_status == 400
        claims, total = store.list_claims()
        assert total == 0
        leftover = list(files.claims_dir.rglob("*")) if files.claims_dir.exists() else []
        assert leftover == []
        assert not good.path.exists()
        assert not bad.path.exists()
        assert store.get_notifications(seed.admin_id) == []

    def test_failed_submission_cleans_up_before_releasing_lock(
        self, workflow, files, config, seed, monkeypatch
    ):
        """A rolled-back claim id is reused; cleanup must not touch the next claim's files."""
        other_writer = StateStore(config.state_db_path, busy_timeout=0)
        next_upload = stage(files, "other.png", make_image_bytes())
        results: dict[str, object] = {}
        real_delete = files.delete_claim_directory

        def submit_next() -> None:
            results["next"] = workflow.submit_claim(
                seed.other, submission(seed.found_item_id), [next_upload]
            )

        racer = threading.Thread(target=submit_next)

        def delete_while_locked(claim_id: int) -> bool:
            results["failed_id"] = claim_id
            try:
                with other_writer.transaction():
                    pass
                results["locked"] = False
            except sqlite3.OperationalError:
                results["locked"] = True
            deleted = real_delete(claim_id)
            # The next submission queues on the write lock and commits after rollback
            racer.start()
            return deleted

        monkeypatch.setattr(files, "delete_claim_directory", delete_while_locked)
        good = stage(files, "good.png", make_image_bytes())
        bad = stage(files, "bad.jpg", b"definitely not a jpeg", mime_type="image/jpeg")

        with pytest.raises(ImageProcessingError):
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id), [good, bad])
        racer.join(timeout=30)

        assert results["locked"] is True
        next_claim = results["next"]
        assert next_claim.id == results["failed_id"]
        assert (files.upload_dir / next_claim.images[0].file_path).exists()

    def test_too_many_images(self, workflow, files, config, seed):
        uploads = [
            stage(files, f"p{i}.png", make_image_bytes())
            for i in range(config.storage.max_images + 1)
        ]

        with pytest.raises(ValidationError):
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id), uploads)

        assert not any(files.staging_dir.iterdir())

    def test_wrong_extension_rejected_before_write(self, workflow, files, store, seed):
        upload = stage(files, "notes.txt", b"text", mime_type="text/plain")

        with pytest.raises(ValidationError) as exc_info:
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id), [upload])

        assert exc_info.value.errors[0]["field"] == "images"
        assert store.list_claims()[1] == 0


class TestVerifyClaim:
    def test_approve_claims_item(self, workflow, store, seed, claim):
        approved = workflow.verify_claim(
            seed.admin, claim.id, approve("2025-12-05T10:00:00Z", notes="ID checked")
        )

        assert approved.status is ClaimStatus.APPROVED
        assert approved.verified_by == seed.admin_id
        assert approved.verified_at is not None
        assert approved.verification_notes == "ID checked"
        assert approved.pickup_scheduled == "2025-12-05T10:00:00Z"
        assert store.get_found_item(seed.found_item_id).status is ItemStatus.CLAIMED

    def test_security_may_verify(self, workflow, seed, claim):
        assert workflow.verify_claim(seed.security, claim.id, approve()).status is ClaimStatus.APPROVED

    def test_approve_rejects_sibling_claims(self, workflow, store, seed, claim):
        sibling = workflow.submit_claim(seed.other, submission(seed.found_item_id))

        workflow.verify_claim(seed.admin, claim.id, approve())

        rejected = store.get_claim(sibling.id)
        assert rejected.status is ClaimStatus.REJECTED
        assert rejected.rejection_reason == "Another claim was approved for this item"

    def test_approve_notifies_and_enqueues_email(self, workflow, store, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve("2025-12-05T10:00:00Z"))

        notes = store.get_notifications(seed.claimant_id)
        assert notes[0].title == "Claim Approved!"
        assert "Pickup scheduled for Friday, December 05, 2025" in notes[0].message
        emails = store.get_due_emails(now="9999-12-31T00:00:00Z")
        assert [(e.kind, e.recipient_email) for e in emails] == [
            ("claim_approved", "juan@campus.edu")
        ]
        assert emails[0].payload["pickup_scheduled"] == "2025-12-05T10:00:00Z"

    def test_approve_without_pickup_asks_to_contact(self, workflow, store, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())

        message = store.get_notifications(seed.claimant_id)[0].message
        assert message.endswith("Please contact us to schedule pickup.")

    def test_reject_keeps_item_approved(self, workflow, store, seed, claim):
        rejected = workflow.verify_claim(seed.admin, claim.id, reject("Serial number differs"))

        assert rejected.status is ClaimStatus.REJECTED
        assert rejected.rejection_reason == "Serial number differs"
        assert store.get_found_item(seed.found_item_id).status is ItemStatus.APPROVED
        note = store.get_notifications(seed.claimant_id)[0]
        assert note.title == "Claim Rejected"
        assert note.message.endswith("Reason: Serial number differs")
        emails = store.get_due_emails(now="9999-12-31T00:00:00Z")
        assert emails[0].kind == "claim_rejected"
        assert emails[0].payload["reason"] == "Serial number differs"

    def test_regular_user_cannot_verify(self, workflow, seed, claim):
        with pytest.raises(AuthorizationError):
            workflow.verify_claim(seed.finder, claim.id, approve())

    def test_verify_twice_conflicts(self, workflow, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())

        with pytest.raises(StateConflictError) as exc_info:
            workflow.verify_claim(seed.admin, claim.id, reject())

        err = exc_info.value
        assert err.http_status == 409
        assert err.current_status == "approved"
        assert err.required_status == "pending"

    def test_unknown_claim(self, workflow, seed):
        with pytest.raises(NotFoundError):
            workflow.verify_claim(seed.admin, 9999, approve())

    def test_concurrent_approvals_have_one_winner(self, workflow, seed, claim):
        sibling = workflow.submit_claim(seed.other, submission(seed.found_item_id))
        barrier = threading.Barrier(2)
        outcomes: dict[int, object] = {}

        def run(claim_id: int) -> None:
            barrier.wait()
            try:
                outcomes[claim_id] = workflow.verify_claim(seed.admin, claim_id, approve())
            except StateConflictError as e:
                outcomes[claim_id] = e

        threads = [threading.Thread(target=run, args=(cid,)) for cid in (claim.id, sibling.id)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        winners = [o for o in outcomes.values() if not isinstance(o, StateConflictError)]
        losers = [o for o in outcomes.values() if isinstance(o, StateConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].current_status == "rejected"

    @pytest.mark.parametrize(
        "decisions",
        [(approve(), approve()), (approve(), reject())],
        ids=["approve-approve", "approve-reject"],
    )
    def test_concurrent_decisions_on_one_claim(self, workflow, store, seed, claim, decisions):
        barrier = threading.Barrier(len(decisions))
        outcomes: list[object] = []
        lock = threading.Lock()

        def run(decision: VerifyRequest) -> None:
            barrier.wait()
            try:
                result = workflow.verify_claim(seed.admin, claim.id, decision)
            except StateConflictError as e:
                result = e
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=run, args=(d,)) for d in decisions]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        winners = [o for o in outcomes if not isinstance(o, StateConflictError)]
        losers = [o for o in outcomes if isinstance(o, StateConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1
        final = store.get_claim(claim.id)
        assert final.status is winners[0].status
        assert losers[0].current_status == final.status.value
        assert losers[0].required_status == "pending"
        assert len(store.get_notifications(seed.claimant_id)) == 1
        item_status = store.get_found_item(seed.found_item_id).status
        if final.status is ClaimStatus.APPROVED:
            assert item_status is ItemStatus.CLAIMED
        else:
            assert item_status is ItemStatus.APPROVED


class TestPickup:
    def test_schedule_pickup(self, workflow, store, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())

        updated = workflow.schedule_pickup(seed.admin, claim.id, "2025-12-06T09:30:00Z")

        assert updated.pickup_scheduled == "2025-12-06T09:30:00Z"
        assert store.get_notifications(seed.claimant_id)[0].title == "Pickup Scheduled"
        kinds = [e.kind for e in store.get_due_emails(now="9999-12-31T00:00:00Z")]
        assert kinds == ["claim_approved", "pickup_scheduled"]

    def test_schedule_requires_approved(self, workflow, seed, claim):
        with pytest.raises(StateConflictError) as exc_info:
            workflow.schedule_pickup(seed.admin, claim.id, "2025-12-06T09:30:00Z")

        assert exc_info.value.message == (
            "Can only schedule pickup for approved claims. Current status: pending"
        )

    def test_record_pickup_resolves_item(self, workflow, store, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())

        completed = workflow.record_pickup(
            seed.security, claim.id, PickupRequest("Juan Dela Cruz", "Student ID")
        )

        assert completed.status is ClaimStatus.COMPLETED
        assert completed.picked_up_by_name == "Juan Dela Cruz"
        assert completed.id_presented == "Student ID"
        assert completed.picked_up_at is not None
        item = store.get_found_item(seed.found_item_id)
        assert item.status is ItemStatus.RESOLVED
        assert item.resolved_by == seed.security_id
        assert item.resolution_notes == "Claimed and picked up by Juan Dela Cruz"
        assert store.get_notifications(seed.claimant_id)[0].title == "Item Picked Up"

    def test_record_pickup_twice(self, workflow, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())
        workflow.record_pickup(seed.admin, claim.id, PickupRequest("Juan Dela Cruz", None))

        with pytest.raises(StateConflictError) as exc_info:
            workflow.record_pickup(seed.admin, claim.id, PickupRequest("Juan Dela Cruz", None))

        assert exc_info.value.message == "Item has already been picked up"

    def test_record_pickup_requires_approved(self, workflow, seed, claim):
        with pytest.raises(StateConflictError) as exc_info:
            workflow.record_pickup(seed.admin, claim.id, PickupRequest("Juan Dela Cruz", None))

        assert exc_info.value.current_status == "pending"

    def test_schedule_after_pickup_conflicts(self, workflow, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())
        workflow.record_pickup(seed.admin, claim.id, PickupRequest("Juan Dela Cruz", None))

        with pytest.raises(StateConflictError):
            workflow.schedule_pickup(seed.admin, claim.id, "2025-12-07T09:00:00Z")


class TestCancelClaim:
    def test_claimant_cancels(self, workflow, store, seed, claim):
        cancelled = workflow.cancel_claim(seed.claimant, claim.id)

        assert cancelled.status is ClaimStatus.CANCELLED
        assert store.get_activity("claim", claim.id)[-1]["action"] == "cancel"

    def test_other_user_cannot_cancel(self, workflow, seed, claim):
        with pytest.raises(AuthorizationError):
            workflow.cancel_claim(seed.admin, claim.id)

    def test_cannot_cancel_approved(self, workflow, seed, claim):
        workflow.verify_claim(seed.admin, claim.id, approve())

        with pytest.raises(StateConflictError) as exc_info:
            workflow.cancel_claim(seed.claimant, claim.id)

        assert exc_info.value.message == "Cannot cancel claim. Current status: approved"


class TestClaimQueries:
    def test_user_sees_only_own_claims(self, workflow, seed, claim):
        workflow.submit_claim(seed.other, submission(seed.found_item_id))

        page = workflow.list_claims(seed.claimant, ClaimListQuery(status=None, page=1, limit=10))

        assert [c.id for c in page.claims] == [claim.id]
        assert page.total == 1

    def test_admin_sees_all_claims(self, workflow, seed, claim):
        workflow.submit_claim(seed.other, submission(seed.found_item_id))

        page = workflow.list_claims(seed.admin, ClaimListQuery(status=None, page=1, limit=10))

        assert page.total == 2

    def test_pagination(self, workflow, store, seed):
        for i in range(3):
            item = store.create_found_item(seed.finder_id, f"Item {i}")
            workflow.submit_claim(seed.claimant, submission(item))

        page = workflow.list_claims(seed.claimant, ClaimListQuery(status=None, page=2, limit=2))

        assert len(page.claims) == 1
        assert page.pagination() == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    def test_status_filter(self, workflow, seed, claim):
        query = ClaimListQuery(status=ClaimStatus.APPROVED, page=1, limit=10)

        assert workflow.list_claims(seed.admin, query).total == 0

    def test_get_claim_access(self, workflow, seed, claim):
        assert workflow.get_claim(seed.claimant, claim.id).id == claim.id
        assert workflow.get_claim(seed.security, claim.id).id == claim.id
        with pytest.raises(AuthorizationError):
            workflow.get_claim(seed.other, claim.id)

    def test_claims_for_item(self, workflow, seed, claim):
        assert [c.id for c in workflow.claims_for_item(seed.finder, seed.found_item_id)] == [
            claim.id
        ]
        with pytest.raises(AuthorizationError):
            workflow.claims_for_item(seed.other, seed.found_item_id)
        with pytest.raises(NotFoundError):
            workflow.claims_for_item(seed.admin, 9999)


class TestClaimLifecycle:
    def test_submit_approve_pickup(self, workflow, store, seed):
        claim = workflow.submit_claim(seed.claimant, submission(seed.found_item_id))
        assert claim.status is ClaimStatus.PENDING

        with pytest.raises(StateConflictError) as exc_info:
            workflow.submit_claim(seed.claimant, submission(seed.found_item_id))
        assert "already have a pending claim" in exc_info.value.message

        approved = workflow.verify_claim(seed.admin, claim.id, approve("2025-12-05T10:00:00Z"))
        assert approved.status is ClaimStatus.APPROVED
        assert store.get_found_item(seed.found_item_id).status is ItemStatus.CLAIMED

        done = workflow.record_pickup(seed.admin, claim.id, PickupRequest("Juan Dela Cruz", None))
        assert done.status is ClaimStatus.COMPLETED
        assert store.get_found_item(seed.found_item_id).status is ItemStatus.RESOLVED
