"""
Error taxonomy for the lost & found core.

Every failure that reaches the HTTP surface is a LostFoundError subclass
carrying an HTTP status, a machine code, and a human message. Views
translate these into JSON; anything else becomes a generic 500.
"""

from typing import Any


class LostFoundError(Exception):
    """Base exception for lost & found errors."""

    http_status = 500
    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a JSON error response."""
        return {"success": False, "message": self.message, "code": self.code}


class ValidationError(LostFoundError):
    """Request input failed validation. Raised before any side effect."""

    http_status = 400
    code = "validation_error"

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None):
        self.errors = errors or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.errors:
            result["errors"] = self.errors
        return result


class NotFoundError(LostFoundError):
    """Referenced entity does not exist."""

    http_status = 404
    code = "not_found"


class AuthenticationError(LostFoundError):
    """No caller identity was supplied."""

    http_status = 401
    code = "authentication_required"


class AuthorizationError(LostFoundError):
    """Caller lacks rights for the operation."""

    http_status = 403
    code = "forbidden"


class StateConflictError(LostFoundError):
    """Operation is illegal in the entity's current state.

    Carries the status the entity was in and the status the operation
    required, so callers can tell a lost race from a bad request.
    """

    http_status = 409
    code = "state_conflict"

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        required_status: str | None = None,
        http_status: int | None = None,
        extra: dict[str, Any] | None = None,
    ):
        self.current_status = current_status
        self.required_status = required_status
        self.extra = extra or {}
        if http_status is not None:
            self.http_status = http_status
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.current_status is not None:
            result["current_status"] = self.current_status
        if self.required_status is not None:
            result["required_status"] = self.required_status
        result.update(self.extra)
        return result


class InternalError(LostFoundError):
    """Unexpected failure (storage, I/O)."""

    http_status = 500
    code = "internal_error"
