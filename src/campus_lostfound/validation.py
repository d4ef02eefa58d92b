"""
Request input validation.

All checks run before any side effect (file move, row write). Each
validator collects every field error and raises a single ValidationError,
returning normalized values on success.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .config import ClaimsConfig
from .errors import ValidationError
from .schemas import ClaimStatus, ItemType, MatchStatus, VerifyAction


@dataclass
class ClaimSubmission:
    found_item_id: int
    description: str
    proof_details: str


@dataclass
class VerifyRequest:
    action: VerifyAction
    verification_notes: str | None
    rejection_reason: str | None
    pickup_scheduled: str | None


@dataclass
class PickupRequest:
    picked_up_by_name: str
    id_presented: str | None


@dataclass
class ClaimListQuery:
    status: ClaimStatus | None
    page: int
    limit: int


class _Collector:
    """Accumulates field errors."""

    def __init__(self) -> None:
        self.errors: list[dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append({"field": field, "message": message})

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError("Validation failed", errors=self.errors)

    def text(
        self,
        data: dict[str, Any],
        field: str,
        min_len: int | None = None,
        max_len: int | None = None,
        required: bool = True,
    ) -> str | None:
        raw = data.get(field)
        value = raw.strip() if isinstance(raw, str) else None
        if not value:
            if required:
                self.add(field, f"{field} is required")
            return None
        if min_len is not None and len(value) < min_len:
            self.add(field, f"{field} must be at least {min_len} characters")
        elif max_len is not None and len(value) > max_len:
            self.add(field, f"{field} must be at most {max_len} characters")
        return value


def parse_iso8601(value: str) -> str:
    """
    Parse an ISO-8601 timestamp and normalize it to UTC with a Z suffix.

    Naive timestamps are taken as UTC.

    Raises:
        ValueError: If value is not a valid ISO-8601 timestamp
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_positive_int(value: Any, field: str) -> int:
    """Parse a path/query id. Raises ValidationError when not a positive integer."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = 0
    if number < 1:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": field, "message": f"{field} must be a positive integer"}],
        )
    return number


def validate_claim_submission(data: dict[str, Any], limits: ClaimsConfig) -> ClaimSubmission:
    """Validate a claim submission form."""
    c = _Collector()

    found_item_id = 0
    try:
        found_item_id = int(data.get("found_item_id"))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        pass
    if found_item_id < 1:
        c.add("found_item_id", "Valid found item ID is required")

    description = c.text(data, "description", limits.description_min, limits.description_max)
    proof_details = c.text(
        data, "proof_details", limits.proof_details_min, limits.proof_details_max
    )
    c.raise_if_any()

    return ClaimSubmission(
        found_item_id=found_item_id,
        description=description or "",
        proof_details=proof_details or "",
    )


def validate_verify(data: dict[str, Any], limits: ClaimsConfig) -> VerifyRequest:
    """Validate an approve/reject decision."""
    c = _Collector()

    action: VerifyAction | None = None
    try:
        action = VerifyAction(data.get("action"))
    except ValueError:
        c.add("action", "Action must be approve or reject")

    notes = c.text(
        data, "verification_notes", max_len=limits.verification_notes_max, required=False
    )

    reason = c.text(
        data,
        "rejection_reason",
        limits.rejection_reason_min,
        limits.rejection_reason_max,
        required=action is VerifyAction.REJECT,
    )

    pickup = _optional_timestamp(c, data, "pickup_scheduled")
    if action is None or c.errors:
        raise ValidationError("Validation failed", errors=c.errors)

    return VerifyRequest(
        action=action,
        verification_notes=notes,
        rejection_reason=reason if action is VerifyAction.REJECT else None,
        pickup_scheduled=pickup if action is VerifyAction.APPROVE else None,
    )


def validate_schedule(data: dict[str, Any]) -> str:
    """Validate a pickup schedule request. Returns the normalized timestamp."""
    c = _Collector()
    pickup = _optional_timestamp(c, data, "pickup_scheduled")
    if pickup is None:
        if not c.errors:
            c.add("pickup_scheduled", "pickup_scheduled is required")
        raise ValidationError("Validation failed", errors=c.errors)
    return pickup


def validate_pickup(data: dict[str, Any], limits: ClaimsConfig) -> PickupRequest:
    """Validate a pickup record."""
    c = _Collector()
    name = c.text(
        data, "picked_up_by_name", limits.picked_up_by_name_min, limits.picked_up_by_name_max
    )
    id_presented = c.text(data, "id_presented", max_len=limits.id_presented_max, required=False)
    c.raise_if_any()
    return PickupRequest(picked_up_by_name=name or "", id_presented=id_presented)


def validate_claim_listing(params: dict[str, Any], limits: ClaimsConfig) -> ClaimListQuery:
    """Validate claim listing query parameters."""
    c = _Collector()

    status: ClaimStatus | None = None
    raw_status = params.get("status") or "all"
    if raw_status != "all":
        try:
            status = ClaimStatus(raw_status)
        except ValueError:
            c.add("status", "Invalid status filter")

    page = _int_param(c, params, "page", default=1, minimum=1)
    limit = _int_param(
        c,
        params,
        "limit",
        default=limits.default_page_size,
        minimum=1,
        maximum=limits.max_page_size,
    )
    c.raise_if_any()
    return ClaimListQuery(status=status, page=page, limit=limit)


def validate_match_status(value: Any) -> MatchStatus:
    """Validate a direct match status update."""
    try:
        return MatchStatus(value)
    except ValueError:
        raise ValidationError(
            "Validation failed",
            errors=[
                {
                    "field": "status",
                    "message": "Status must be suggested, confirmed, or dismissed",
                }
            ],
        ) from None


def validate_match_status_filter(value: Any) -> MatchStatus | None:
    """Optional status filter for saved-match lookups."""
    if value in (None, ""):
        return None
    return validate_match_status(value)


def validate_item_type(value: Any) -> ItemType:
    try:
        return ItemType(value)
    except ValueError:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "item_type", "message": "Item type must be lost or found"}],
        ) from None


def _optional_timestamp(c: _Collector, data: dict[str, Any], field: str) -> str | None:
    raw = data.get(field)
    if raw in (None, ""):
        return None
    if not isinstance(raw, str):
        c.add(field, f"{field} must be a valid ISO 8601 date")
        return None
    try:
        return parse_iso8601(raw)
    except ValueError:
        c.add(field, f"{field} must be a valid ISO 8601 date")
        return None


def _int_param(
    c: _Collector,
    params: dict[str, Any],
    field: str,
    default: int,
    minimum: int,
    maximum: int | None = None,
) -> int:
    raw = params.get(field)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        c.add(field, f"{field} must be an integer")
        return default
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
        c.add(field, f"{field} must be {bound}")
        return default
    return value
