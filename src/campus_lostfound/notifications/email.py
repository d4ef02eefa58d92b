"""
Email API client.

Sends transactional email through a MailerSend-compatible HTTP API:
POST {api_url} with a bearer token and a JSON body of from/to/subject/html/text.
Also renders the claim emails (approved, rejected, pickup scheduled).
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from html import escape

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import EmailConfig

logger = logging.getLogger(__name__)


class EmailError(Exception):
    """Base exception for email delivery errors."""

    pass


class EmailAPIError(EmailError):
    """Email API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Email API error {status_code}: {message}")


class EmailConnectionError(EmailError):
    """Failed to reach the email API."""

    pass


@dataclass
class EmailMessage:
    """A rendered email."""

    to_email: str
    to_name: str | None
    subject: str
    html: str
    text: str


_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def strip_html(html: str) -> str:
    """Plain-text fallback for an HTML body."""
    return _WS_RE.sub(" ", _TAG_RE.sub("", html)).strip()


def format_pickup_time(value: str | None) -> str:
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%A, %B %d, %Y %I:%M %p UTC")


class EmailService:
    """
    Client for the transactional email API.

    Features:
    - Bearer token auth
    - Automatic retry with backoff on 429/5xx
    - Claim email templates
    """

    def __init__(
        self,
        config: EmailConfig,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize email client.

        Args:
            config: Email configuration (API URL, token, sender, frontend URL)
            max_retries: Maximum retry attempts per send
            backoff_factor: Backoff factor for retries
        """
        self.config = config
        self.timeout = config.timeout_seconds

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.api_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def send(self, message: EmailMessage) -> None:
        """
        Deliver one email.

        Raises:
            EmailConnectionError: Network failure or timeout
            EmailAPIError: API rejected the request
        """
        payload = {
            "from": {"email": self.config.from_email, "name": self.config.from_name},
            "to": [{"email": message.to_email, "name": message.to_name or message.to_email}],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }

        try:
            response = self.session.post(self.config.api_url, json=payload, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to email API: {e}")
            raise EmailConnectionError(f"Failed to connect to email API: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Email API timeout: {e}")
            raise EmailConnectionError(f"Email API request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise EmailError(f"Email request failed: {e}") from e

        if not response.ok:
            message_text = response.reason
            try:
                message_text = response.json().get("message", message_text)
            except ValueError:
                pass
            logger.error(f"Email API error {response.status_code}: {message_text}")
            raise EmailAPIError(response.status_code, message_text, response.text)

        logger.info(f"Email sent to {message.to_email}: {message.subject}")

    # Templates

    def _wrap(self, body: str) -> str:
        return (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f"{body}"
            "<p>Best regards,<br>Lost and Found Team</p>"
            "</div>"
        )

    def _button(self, path: str, label: str) -> str:
        url = f"{self.config.frontend_url.rstrip('/')}{path}"
        return f'<p><a href="{escape(url)}">{escape(label)}</a></p>'

    def _message(
        self, to_email: str, to_name: str | None, subject: str, body: str
    ) -> EmailMessage:
        html = self._wrap(body)
        return EmailMessage(
            to_email=to_email, to_name=to_name, subject=subject, html=html, text=strip_html(html)
        )

    def claim_approved_email(
        self,
        to_email: str,
        first_name: str,
        item_title: str,
        pickup_scheduled: str | None,
    ) -> EmailMessage:
        if pickup_scheduled:
            pickup_info = (
                f"<p><strong>Pickup Scheduled:</strong> {escape(format_pickup_time(pickup_scheduled))}</p>"
            )
        else:
            pickup_info = "<p>Please contact us to schedule your pickup.</p>"

        body = (
            "<h2>Claim Approved!</h2>"
            f"<p>Hi {escape(first_name)},</p>"
            f'<p>Great news! Your claim for <strong>"{escape(item_title)}"</strong> '
            "has been approved!</p>"
            f"<h3>Next Steps</h3>{pickup_info}"
            "<p>Please bring a valid ID when picking up your item.</p>"
            f"{self._button('/claims', 'View Claim Details')}"
        )
        return self._message(to_email, first_name, "Your Claim Has Been Approved!", body)

    def claim_rejected_email(
        self, to_email: str, first_name: str, item_title: str, reason: str
    ) -> EmailMessage:
        body = (
            "<h2>Claim Update</h2>"
            f"<p>Hi {escape(first_name)},</p>"
            f'<p>We\'ve reviewed your claim for <strong>"{escape(item_title)}"</strong>.</p>'
            "<h3>Claim Not Approved</h3>"
            f"<p><strong>Reason:</strong> {escape(reason)}</p>"
            "<p>If you believe this is an error, you can submit a new claim with "
            "additional proof of ownership.</p>"
            f"{self._button('/found-items', 'Browse Found Items')}"
        )
        return self._message(to_email, first_name, "Update on Your Claim", body)

    def pickup_scheduled_email(
        self, to_email: str, first_name: str, item_title: str, pickup_scheduled: str
    ) -> EmailMessage:
        body = (
            "<h2>Pickup Scheduled</h2>"
            f"<p>Hi {escape(first_name)},</p>"
            "<p>Your pickup has been scheduled for your claimed item.</p>"
            "<h3>Pickup Details</h3>"
            f"<p><strong>Item:</strong> {escape(item_title)}</p>"
            f"<p><strong>Date &amp; Time:</strong> {escape(format_pickup_time(pickup_scheduled))}</p>"
            "<p><strong>Location:</strong> Lost and Found Office</p>"
            "<p><strong>Important:</strong> Please bring a valid ID when picking up your item.</p>"
            f"{self._button('/claims', 'View Claim Details')}"
        )
        return self._message(to_email, first_name, f"Pickup Scheduled - {item_title}", body)

    def send_claim_approved_email(
        self, to_email: str, first_name: str, item_title: str, pickup_scheduled: str | None
    ) -> None:
        self.send(self.claim_approved_email(to_email, first_name, item_title, pickup_scheduled))

    def send_claim_rejected_email(
        self, to_email: str, first_name: str, item_title: str, reason: str
    ) -> None:
        self.send(self.claim_rejected_email(to_email, first_name, item_title, reason))

    def send_pickup_scheduled_email(
        self, to_email: str, first_name: str, item_title: str, pickup_scheduled: str
    ) -> None:
        self.send(self.pickup_scheduled_email(to_email, first_name, item_title, pickup_scheduled))
