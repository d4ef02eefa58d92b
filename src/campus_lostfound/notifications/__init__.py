"""
Outbound notifications.

Emails are enqueued in the claim transaction and delivered by the outbox
dispatcher through the email API client.
"""

from .email import EmailAPIError, EmailConnectionError, EmailError, EmailMessage, EmailService
from .outbox import DispatchSummary, EmailKind, EmailOutbox, OutboxWorker

__all__ = [
    "DispatchSummary",
    "EmailAPIError",
    "EmailConnectionError",
    "EmailError",
    "EmailKind",
    "EmailMessage",
    "EmailOutbox",
    "EmailService",
    "OutboxWorker",
]
