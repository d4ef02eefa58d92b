"""
Claim adjudication workflow.

State machine:
- submit:    (none)   -> pending
- verify:    pending  -> approved | rejected
- schedule:  approved -> approved (pickup time set)
- pickup:    approved -> completed (found item resolved)
- cancel:    pending  -> cancelled (claimant only)

Each transition runs in one transaction together with its side effects
(found item status, sibling rejection, notifications, activity log, email
outbox). Transitions are compare-and-set on the claim status; losing a race
raises StateConflictError.
"""

import logging
import math
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import Config
from ..errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from ..notifications.email import format_pickup_time
from ..notifications.outbox import EmailKind, EmailOutbox
from ..schemas import Actor, ClaimStatus, ItemStatus, NotificationType, VerifyAction
from ..state_store import ClaimRecord, ItemRecord, StateStore, TransactionContext
from ..storage import FileStorage, StagedUpload
from ..validation import ClaimListQuery, ClaimSubmission, PickupRequest, VerifyRequest

logger = logging.getLogger(__name__)

SIBLING_REJECTION_REASON = "Another claim was approved for this item"


@dataclass
class AuditContext:
    """Request details recorded in the activity log."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class ClaimPage:
    """One page of a claim listing."""

    claims: list[ClaimRecord]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


class ClaimWorkflow:
    """
    Manages the claim lifecycle.

    Responsibilities:
    - Guard and persist claim submissions with their proof images
    - Adjudicate claims (approve/reject) and resolve the found item
    - Notify users and enqueue emails as part of each transition
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        files: FileStorage | None = None,
        outbox: EmailOutbox | None = None,
    ):
        """
        Initialize the workflow.

        Args:
            state_store: State store
            config: Application configuration
            files: Proof image storage (built from config if omitted)
            outbox: Email outbox (built from config if omitted)
        """
        self.store = state_store
        self.config = config
        self.files = files or FileStorage(config.storage)
        self.outbox = outbox or EmailOutbox(state_store, config)

    # Submission

    def submit_claim(
        self,
        actor: Actor,
        submission: ClaimSubmission,
        uploads: list[StagedUpload] | None = None,
        audit: AuditContext | None = None,
    ) -> ClaimRecord:
        """
        Submit a claim against a found item.

        Staged uploads are processed and moved into the claim's directory
        inside the transaction. On any failure the claim directory is removed
        while the write lock is still held, then every staged or moved file
        is deleted before the error propagates.

        Raises:
            ValidationError: Too many or invalid images
            NotFoundError: Found item does not exist
            StateConflictError: Item not approved, duplicate pending claim,
                or claimant reported the item
        """
        uploads = uploads or []
        audit = audit or AuditContext()
        moved: list[Path] = []

        try:
            self.check_images([(u.original_name, u.mime_type, u.size) for u in uploads])

            with self.store.transaction() as tx:
                found_item = self.store.get_found_item(submission.found_item_id, tx)
                if found_item is None:
                    raise NotFoundError("Found item not found")

                if found_item.status is not ItemStatus.APPROVED:
                    raise StateConflictError(
                        f"Cannot claim this item. Current status: {found_item.status.value}",
                        current_status=found_item.status.value,
                        required_status=ItemStatus.APPROVED.value,
                        http_status=400,
                    )

                existing = self.store.find_pending_claim(found_item.id, actor.user_id, tx)
                if existing is not None:
                    raise self._duplicate_claim(existing.id)

                if found_item.user_id == actor.user_id:
                    raise StateConflictError(
                        "You cannot claim an item you reported as found", http_status=400
                    )

                try:
                    claim_id = self.store.insert_claim(
                        tx,
                        found_item_id=found_item.id,
                        claimant_user_id=actor.user_id,
                        description=submission.description,
                        proof_details=submission.proof_details,
                    )
                except sqlite3.IntegrityError as e:
                    raise self._duplicate_claim(None) from e

                try:
                    claim = self._attach_and_announce(
                        tx, actor, claim_id, found_item, uploads, moved, audit
                    )
                except Exception:
                    # Must run before rollback releases the lock: the id is
                    # handed out again to the next insert.
                    self.files.delete_claim_directory(claim_id)
                    raise
        except Exception:
            self._discard_files(uploads, moved)
            raise

        logger.info(
            f"Claim #{claim.id} submitted by user {actor.user_id} "
            f"for found item #{submission.found_item_id}"
        )
        return claim

    def _attach_and_announce(
        self,
        tx: TransactionContext,
        actor: Actor,
        claim_id: int,
        found_item: ItemRecord,
        uploads: list[StagedUpload],
        moved: list[Path],
        audit: AuditContext,
    ) -> ClaimRecord:
        """Move proof images under the new claim and write its side-effect rows."""
        for upload in uploads:
            processed = self.files.process_image(upload.path)
            new_path = self.files.move_to_claim_directory(upload.path, claim_id)
            moved.append(new_path)
            self.store.add_claim_image(
                tx,
                claim_id=claim_id,
                file_name=upload.file_name,
                file_path=self.files.relative_path(new_path),
                file_size=processed.size,
                mime_type=upload.mime_type,
            )

        self.store.log_activity(
            tx,
            user_id=actor.user_id,
            action="create",
            resource_type="claim",
            resource_id=claim_id,
            description=f"Submitted claim for found item #{found_item.id}",
            ip_address=audit.ip_address,
            user_agent=audit.user_agent,
        )
        self.store.notify_admins(
            tx,
            notification_type=NotificationType.CLAIM_REQUEST.value,
            title="New Claim Submitted",
            message=f'A new claim has been submitted for "{found_item.title}"',
            related_item_type="claim",
            related_item_id=claim_id,
        )

        return self._get_claim_or_404(claim_id, tx)

    # Adjudication

    def verify_claim(
        self,
        actor: Actor,
        claim_id: int,
        request: VerifyRequest,
        audit: AuditContext | None = None,
    ) -> ClaimRecord:
        """
        Approve or reject a pending claim.

        Approval flips the found item to claimed and rejects every other
        pending claim on it, all in the same transaction.
        """
        self._require_admin(actor)
        audit = audit or AuditContext()

        with self.store.transaction() as tx:
            claim = self._get_claim_or_404(claim_id, tx)
            approve = request.action is VerifyAction.APPROVE

            if approve:
                changed = self.store.approve_claim(
                    tx, claim_id, actor.user_id, request.verification_notes, request.pickup_scheduled
                )
            else:
                changed = self.store.reject_claim(
                    tx,
                    claim_id,
                    actor.user_id,
                    request.verification_notes,
                    request.rejection_reason or "",
                )
            if not changed:
                raise self._conflict(tx, claim_id, "Cannot verify claim", ClaimStatus.PENDING)

            title = claim.found_item_title or f"item #{claim.found_item_id}"

            if approve:
                self.store.update_found_item_status(tx, claim.found_item_id, ItemStatus.CLAIMED)
                siblings = self.store.reject_other_pending_claims(
                    tx, claim.found_item_id, claim_id, actor.user_id, SIBLING_REJECTION_REASON
                )
                if siblings:
                    logger.info(
                        f"Rejected {len(siblings)} other pending claim(s) on found item "
                        f"#{claim.found_item_id}"
                    )
                if request.pickup_scheduled:
                    pickup_text = (
                        f"Pickup scheduled for {format_pickup_time(request.pickup_scheduled)}"
                    )
                else:
                    pickup_text = "Please contact us to schedule pickup."
                message = f'Your claim for "{title}" has been approved! {pickup_text}'
                notification_title = "Claim Approved!"
            else:
                message = (
                    f'Your claim for "{title}" was rejected. Reason: {request.rejection_reason}'
                )
                notification_title = "Claim Rejected"

            self.store.add_notification(
                tx,
                user_id=claim.claimant_user_id,
                notification_type=NotificationType.CLAIM_RESPONSE.value,
                title=notification_title,
                message=message,
                related_item_type="claim",
                related_item_id=claim_id,
            )
            self.store.log_activity(
                tx,
                user_id=actor.user_id,
                action=request.action.value,
                resource_type="claim",
                resource_id=claim_id,
                description=f'{"Approved" if approve else "Rejected"} claim #{claim_id} for "{title}"',
                ip_address=audit.ip_address,
                user_agent=audit.user_agent,
            )

            if approve:
                self._enqueue_email(
                    tx,
                    claim,
                    EmailKind.CLAIM_APPROVED,
                    {"item_title": title, "pickup_scheduled": request.pickup_scheduled},
                )
            else:
                self._enqueue_email(
                    tx,
                    claim,
                    EmailKind.CLAIM_REJECTED,
                    {"item_title": title, "reason": request.rejection_reason},
                )

            updated = self.store.get_claim(claim_id, tx)

        logger.info(f"Claim #{claim_id} {updated.status.value} by admin {actor.user_id}")
        return updated

    def schedule_pickup(
        self,
        actor: Actor,
        claim_id: int,
        pickup_scheduled: str,
        audit: AuditContext | None = None,
    ) -> ClaimRecord:
        """Set or move the pickup time of an approved claim."""
        self._require_admin(actor)
        audit = audit or AuditContext()

        with self.store.transaction() as tx:
            claim = self._get_claim_or_404(claim_id, tx)
            if not self.store.schedule_claim_pickup(tx, claim_id, pickup_scheduled):
                raise self._conflict(
                    tx,
                    claim_id,
                    "Can only schedule pickup for approved claims",
                    ClaimStatus.APPROVED,
                )

            title = claim.found_item_title or f"item #{claim.found_item_id}"
            self.store.add_notification(
                tx,
                user_id=claim.claimant_user_id,
                notification_type=NotificationType.SYSTEM.value,
                title="Pickup Scheduled",
                message=(
                    f'Pickup for "{title}" is scheduled for '
                    f"{format_pickup_time(pickup_scheduled)}"
                ),
                related_item_type="claim",
                related_item_id=claim_id,
            )
            self.store.log_activity(
                tx,
                user_id=actor.user_id,
                action="schedule_pickup",
                resource_type="claim",
                resource_id=claim_id,
                description=f"Scheduled pickup for claim #{claim_id} at {pickup_scheduled}",
                ip_address=audit.ip_address,
                user_agent=audit.user_agent,
            )
            self._enqueue_email(
                tx,
                claim,
                EmailKind.PICKUP_SCHEDULED,
                {"item_title": title, "pickup_scheduled": pickup_scheduled},
            )

            updated = self.store.get_claim(claim_id, tx)

        logger.info(f"Pickup for claim #{claim_id} scheduled at {pickup_scheduled}")
        return updated

    def record_pickup(
        self,
        actor: Actor,
        claim_id: int,
        request: PickupRequest,
        audit: AuditContext | None = None,
    ) -> ClaimRecord:
        """Record the handover: claim completed, found item resolved."""
        self._require_admin(actor)
        audit = audit or AuditContext()

        with self.store.transaction() as tx:
            claim = self._get_claim_or_404(claim_id, tx)
            if claim.picked_up_at:
                raise StateConflictError(
                    "Item has already been picked up",
                    current_status=claim.status.value,
                    required_status=ClaimStatus.APPROVED.value,
                    extra={
                        "picked_up_at": claim.picked_up_at,
                        "picked_up_by_name": claim.picked_up_by_name,
                    },
                )

            if not self.store.complete_claim(
                tx, claim_id, request.picked_up_by_name, request.id_presented
            ):
                raise self._conflict(
                    tx,
                    claim_id,
                    "Cannot record pickup. Claim status must be 'approved'",
                    ClaimStatus.APPROVED,
                )

            self.store.resolve_found_item(
                tx,
                claim.found_item_id,
                resolved_by=actor.user_id,
                resolution_notes=f"Claimed and picked up by {request.picked_up_by_name}",
            )

            title = claim.found_item_title or f"item #{claim.found_item_id}"
            self.store.add_notification(
                tx,
                user_id=claim.claimant_user_id,
                notification_type=NotificationType.ITEM_RESOLVED.value,
                title="Item Picked Up",
                message=f'Your item "{title}" has been picked up successfully!',
                related_item_type="claim",
                related_item_id=claim_id,
            )
            self.store.log_activity(
                tx,
                user_id=actor.user_id,
                action="pickup",
                resource_type="claim",
                resource_id=claim_id,
                description=(
                    f"Recorded pickup for claim #{claim_id}. "
                    f"Picked up by: {request.picked_up_by_name}"
                ),
                ip_address=audit.ip_address,
                user_agent=audit.user_agent,
            )

            updated = self.store.get_claim(claim_id, tx)

        logger.info(f"Pickup recorded for claim #{claim_id} by {request.picked_up_by_name}")
        return updated

    def cancel_claim(
        self, actor: Actor, claim_id: int, audit: AuditContext | None = None
    ) -> ClaimRecord:
        """Claimant withdraws a pending claim."""
        audit = audit or AuditContext()

        with self.store.transaction() as tx:
            claim = self._get_claim_or_404(claim_id, tx)
            if claim.claimant_user_id != actor.user_id:
                raise AuthorizationError("You can only cancel your own claims")

            if not self.store.cancel_claim(tx, claim_id):
                raise self._conflict(tx, claim_id, "Cannot cancel claim", ClaimStatus.PENDING)

            self.store.log_activity(
                tx,
                user_id=actor.user_id,
                action="cancel",
                resource_type="claim",
                resource_id=claim_id,
                description="Cancelled claim",
                ip_address=audit.ip_address,
                user_agent=audit.user_agent,
            )
            updated = self.store.get_claim(claim_id, tx)

        logger.info(f"Claim #{claim_id} cancelled by user {actor.user_id}")
        return updated

    # Reads

    def list_claims(self, actor: Actor, query: ClaimListQuery) -> ClaimPage:
        """Own claims, or every claim for admin/security."""
        claims, total = self.store.list_claims(
            claimant_user_id=None if actor.is_admin else actor.user_id,
            status=query.status,
            limit=query.limit,
            offset=(query.page - 1) * query.limit,
        )
        return ClaimPage(claims=claims, page=query.page, limit=query.limit, total=total)

    def get_claim(self, actor: Actor, claim_id: int) -> ClaimRecord:
        claim = self._get_claim_or_404(claim_id)
        if not actor.is_admin and claim.claimant_user_id != actor.user_id:
            raise AuthorizationError("Access denied")
        return claim

    def claims_for_item(self, actor: Actor, found_item_id: int) -> list[ClaimRecord]:
        """Claims on one found item, for its reporter or admin."""
        item = self.store.get_found_item(found_item_id)
        if item is None:
            raise NotFoundError("Found item not found")
        if not actor.is_admin and item.user_id != actor.user_id:
            raise AuthorizationError("Access denied")
        return self.store.list_claims_for_item(found_item_id)

    # Helpers

    def _require_admin(self, actor: Actor) -> None:
        if not actor.is_admin:
            raise AuthorizationError("Admin or security role required")

    def _get_claim_or_404(
        self, claim_id: int, tx: TransactionContext | None = None
    ) -> ClaimRecord:
        claim = self.store.get_claim(claim_id, tx)
        if claim is None:
            raise NotFoundError("Claim not found")
        return claim

    def check_images(self, images: list[tuple[str, str, int]]) -> None:
        """
        Check (name, mime type, size) of each upload against storage limits.

        Raises:
            ValidationError: Too many images or an invalid file
        """
        max_images = self.config.storage.max_images
        errors: list[dict[str, str]] = []
        if len(images) > max_images:
            errors.append(
                {"field": "images", "message": f"At most {max_images} images may be uploaded"}
            )
        for name, mime_type, size in images:
            for message in self.files.validate_upload(name, mime_type, size):
                errors.append({"field": "images", "message": message})
        if errors:
            raise ValidationError("Validation failed", errors=errors)

    def _discard_files(self, uploads: list[StagedUpload], moved: list[Path]) -> None:
        """Remove this submission's staged and moved files by their unique names."""
        for path in [u.path for u in uploads] + moved:
            self.files.delete_file(path)

    def _duplicate_claim(self, existing_claim_id: int | None) -> StateConflictError:
        extra: dict[str, Any] = {}
        if existing_claim_id is not None:
            extra["existing_claim_id"] = existing_claim_id
        return StateConflictError(
            "You already have a pending claim for this item",
            current_status=ClaimStatus.PENDING.value,
            http_status=400,
            extra=extra,
        )

    def _conflict(
        self,
        tx: TransactionContext,
        claim_id: int,
        prefix: str,
        required: ClaimStatus,
    ) -> StateConflictError:
        current = self.store.get_claim(claim_id, tx)
        status = current.status.value if current else None
        return StateConflictError(
            f"{prefix}. Current status: {status}",
            current_status=status,
            required_status=required.value,
        )

    def _enqueue_email(
        self,
        tx: TransactionContext,
        claim: ClaimRecord,
        kind: EmailKind,
        payload: dict[str, Any],
    ) -> None:
        claimant = self.store.get_user(claim.claimant_user_id, tx)
        if claimant is None:
            logger.warning(f"No user record for claimant {claim.claimant_user_id}; email skipped")
            return
        self.outbox.enqueue(tx, kind, claimant, {"claim_id": claim.id, **payload})
