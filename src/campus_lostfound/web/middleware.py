"""
Caller identity.

Authentication happens upstream; the gateway forwards the resolved user as
X-User-Id and X-User-Role headers. Requests without a usable identity get
request.actor = None and are refused by the API views.
"""

import logging

from ..schemas import Actor

logger = logging.getLogger(__name__)


def actor_from_headers(user_id: str | None, role: str | None) -> Actor | None:
    """Build the Actor from forwarded headers, or None if absent or malformed."""
    if not user_id:
        return None
    try:
        parsed = int(user_id)
    except ValueError:
        logger.warning(f"Ignoring malformed X-User-Id header: {user_id!r}")
        return None
    if parsed < 1:
        return None
    return Actor(user_id=parsed, role=(role or "user").strip().lower())


class ActorMiddleware:
    """Attach request.actor from the gateway headers."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.actor = actor_from_headers(
            request.headers.get("X-User-Id"), request.headers.get("X-User-Role")
        )
        return self.get_response(request)
