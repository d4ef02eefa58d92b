"""
Email outbox.

Claim transitions enqueue emails inside their transaction; nothing is sent
until the transaction commits. The dispatcher drains due entries, retrying
failures with exponential backoff up to max_attempts. Delivery failures
are recorded on the outbox row and never reach the request that caused
the email.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ..config import Config
from ..state_store import OutboxRecord, StateStore, TransactionContext, UserRecord
from .email import EmailError, EmailMessage, EmailService

logger = logging.getLogger(__name__)


class EmailKind(str, Enum):
    """Emails the claim workflow can enqueue."""

    CLAIM_APPROVED = "claim_approved"
    CLAIM_REJECTED = "claim_rejected"
    PICKUP_SCHEDULED = "pickup_scheduled"


@dataclass
class DispatchSummary:
    """Outcome of one dispatcher pass."""

    sent: int = 0
    retried: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"sent": self.sent, "retried": self.retried, "failed": self.failed}


def _iso(moment: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as text
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


class EmailOutbox:
    """Durable queue of claim emails."""

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        email_service: EmailService | None = None,
    ):
        """
        Initialize the outbox.

        Args:
            state_store: State store holding the email_outbox table
            config: Application configuration
            email_service: Client used for delivery (built from config if omitted)
        """
        self.store = state_store
        self.config = config
        self.email_service = email_service or EmailService(config.email)

    def enqueue(
        self,
        tx: TransactionContext,
        kind: EmailKind,
        recipient: UserRecord,
        payload: dict[str, Any],
    ) -> int:
        """Record an email to send once the surrounding transaction commits."""
        outbox_id = self.store.enqueue_email(
            tx,
            kind=kind.value,
            recipient_email=recipient.email,
            recipient_name=recipient.first_name,
            payload=payload,
            max_attempts=self.config.outbox.max_attempts,
        )
        logger.debug(f"Enqueued {kind.value} email #{outbox_id} for {recipient.email}")
        return outbox_id

    def render(self, entry: OutboxRecord) -> EmailMessage:
        """Build the message for an outbox entry."""
        service = self.email_service
        name = entry.recipient_name or ""
        payload = entry.payload
        kind = EmailKind(entry.kind)

        if kind is EmailKind.CLAIM_APPROVED:
            return service.claim_approved_email(
                entry.recipient_email, name, payload["item_title"], payload.get("pickup_scheduled")
            )
        if kind is EmailKind.CLAIM_REJECTED:
            return service.claim_rejected_email(
                entry.recipient_email, name, payload["item_title"], payload["reason"]
            )
        return service.pickup_scheduled_email(
            entry.recipient_email, name, payload["item_title"], payload["pickup_scheduled"]
        )

    def dispatch_pending(self, now: datetime | None = None) -> DispatchSummary:
        """
        Send every due email once.

        Returns:
            Counts of sent, rescheduled and permanently failed emails
        """
        summary = DispatchSummary()
        if not self.email_service.enabled:
            logger.debug("Email delivery disabled; leaving outbox untouched")
            return summary

        now = now or datetime.now(timezone.utc)
        lease_until = _iso(now + timedelta(seconds=self.config.outbox.lease_seconds))
        for entry in self.store.get_due_emails(limit=self.config.outbox.batch_size, now=_iso(now)):
            if not self.store.lease_email(entry, lease_until):
                logger.debug(f"Email #{entry.id} taken by another dispatcher")
                continue
            if entry.status == "sending":
                logger.warning(f"Email #{entry.id} lease expired; retaking it")

            try:
                self.email_service.send(self.render(entry))
            except (EmailError, KeyError, ValueError) as e:
                self._record_failure(entry, lease_until, str(e), now, summary)
                continue

            if not self.store.mark_email_sent(entry.id, lease_until):
                logger.warning(f"Email #{entry.id} was sent after its lease expired")
            summary.sent += 1

        if summary.sent or summary.retried or summary.failed:
            logger.info(f"Email dispatch: {summary.to_dict()}")
        return summary

    def _record_failure(
        self,
        entry: OutboxRecord,
        lease_until: str,
        error: str,
        now: datetime,
        summary: DispatchSummary,
    ) -> None:
        attempt = entry.attempts + 1
        if attempt >= entry.max_attempts:
            self.store.mark_email_attempt_failed(
                entry.id, lease_until, error, next_attempt_at=None
            )
            summary.failed += 1
            logger.error(
                f"Email #{entry.id} ({entry.kind}) to {entry.recipient_email} failed "
                f"permanently after {attempt} attempts: {error}"
            )
            return

        delay = self.config.outbox.backoff_seconds * 2 ** (attempt - 1)
        next_attempt = _iso(now + timedelta(seconds=delay))
        self.store.mark_email_attempt_failed(
            entry.id, lease_until, error, next_attempt_at=next_attempt
        )
        summary.retried += 1
        logger.warning(
            f"Email #{entry.id} attempt {attempt} failed, retrying at {next_attempt}: {error}"
        )


class OutboxWorker:
    """Background thread that dispatches the outbox at a fixed interval."""

    def __init__(self, outbox: EmailOutbox, interval_seconds: int):
        self.outbox = outbox
        self.interval_seconds = interval_seconds
        self._shutdown = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._loop, name="email-outbox-worker", daemon=True)
        self._thread.start()
        logger.info("Started email outbox worker thread")

    def stop(self, timeout: float = 5) -> None:
        self._shutdown.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                self.outbox.dispatch_pending()
            except Exception as e:
                logger.error(f"Error in email outbox worker: {e}", exc_info=True)
            self._shutdown.wait(self.interval_seconds)
        logger.info("Email outbox worker stopped")
