"""
JSON API views for claims and matches.

Every view returns {"success": bool, "message"?, "data"?, "pagination"?, "meta"?}.
LostFoundError subclasses map to their HTTP status. SQLite failures and
anything else are logged and returned as an InternalError (500) without
the underlying detail.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from typing import Any

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ..claims import AuditContext, ClaimWorkflow
from ..config import Config, load_config
from ..errors import (
    AuthenticationError,
    AuthorizationError,
    InternalError,
    LostFoundError,
    ValidationError,
)
from ..matching import MatchingEngine, MatchStore
from ..notifications import EmailOutbox
from ..schemas import ItemType, MatchStatus
from ..state_store import StateStore
from ..storage import FileStorage, StagedUpload
from ..validation import (
    parse_positive_int,
    validate_claim_listing,
    validate_claim_submission,
    validate_item_type,
    validate_match_status,
    validate_match_status_filter,
    validate_pickup,
    validate_schedule,
    validate_verify,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Per-request service graph."""

    config: Config
    store: StateStore
    files: FileStorage
    workflow: ClaimWorkflow
    engine: MatchingEngine

    @property
    def matches(self) -> MatchStore:
        return self.engine.matches


def _get_config() -> Config:
    """Load config, with the Django settings taking precedence for paths."""
    config = load_config(Path(settings.CONFIG_PATH))
    config.state_db_path = Path(settings.STATE_DB_PATH)
    upload_dir = getattr(settings, "UPLOAD_DIR", "")
    if upload_dir:
        config.storage.upload_dir = Path(upload_dir)
    return config


# One StateStore per database file; building one runs schema setup and migrations
_stores: dict[str, StateStore] = {}
_stores_lock = threading.Lock()


def get_state_store(config: Config) -> StateStore:
    """Shared store for config.state_db_path, created on first use."""
    key = str(Path(config.state_db_path).resolve())
    with _stores_lock:
        store = _stores.get(key)
        if store is None:
            store = StateStore(config.state_db_path, busy_timeout=config.db_busy_timeout_seconds)
            _stores[key] = store
    return store


def _get_services() -> Services:
    config = _get_config()
    store = get_state_store(config)
    files = FileStorage(config.storage)
    outbox = EmailOutbox(store, config)
    return Services(
        config=config,
        store=store,
        files=files,
        workflow=ClaimWorkflow(store, config, files=files, outbox=outbox),
        engine=MatchingEngine(store, config),
    )


def _audit(request: HttpRequest) -> AuditContext:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    ip_address = forwarded.split(",")[0].strip() if forwarded else request.META.get("REMOTE_ADDR")
    return AuditContext(ip_address=ip_address, user_agent=request.headers.get("User-Agent"))


def _json_body(request: HttpRequest) -> dict[str, Any]:
    """Parse a JSON object body. Empty bodies parse as {}."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _ok(
    data: Any = None,
    message: str | None = None,
    status: int = 200,
    **extra: Any,
) -> JsonResponse:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return JsonResponse(body, status=status)


def api_view(methods: list[str]):
    """
    Wrap a view with method checks, identity enforcement and error mapping.
    """

    def decorator(view):
        @wraps(view)
        def wrapper(request: HttpRequest, *args, **kwargs) -> JsonResponse:
            try:
                if getattr(request, "actor", None) is None:
                    raise AuthenticationError("Authentication required")
                return view(request, *args, **kwargs)
            except LostFoundError as e:
                if e.http_status >= 500:
                    logger.error(f"{request.method} {request.path} failed: {e.message}")
                return JsonResponse(e.to_dict(), status=e.http_status)
            except sqlite3.Error as e:
                logger.error(f"Storage error in {request.method} {request.path}: {e}", exc_info=True)
                err = InternalError("Storage unavailable, please retry")
                return JsonResponse(err.to_dict(), status=err.http_status)
            except Exception as e:
                logger.error(f"Unhandled error in {request.method} {request.path}: {e}", exc_info=True)
                err = InternalError("Internal server error")
                return JsonResponse(err.to_dict(), status=err.http_status)

        return csrf_exempt(require_http_methods(methods)(wrapper))

    return decorator


# ============================================================================
# Claims
# ============================================================================


@api_view(["GET", "POST"])
def claims_collection(request: HttpRequest) -> JsonResponse:
    """GET lists claims, POST submits one (multipart with optional images)."""
    if request.method == "POST":
        return _submit_claim(request)

    services = _get_services()
    query = validate_claim_listing(request.GET.dict(), services.config.claims)
    page = services.workflow.list_claims(request.actor, query)
    return _ok(
        data=[claim.to_dict() for claim in page.claims],
        pagination=page.pagination(),
    )


def _submit_claim(request: HttpRequest) -> JsonResponse:
    services = _get_services()
    submission = validate_claim_submission(request.POST.dict(), services.config.claims)

    uploaded = request.FILES.getlist("images")
    services.workflow.check_images([(f.name, f.content_type, f.size) for f in uploaded])

    staged: list[StagedUpload] = []
    try:
        for f in uploaded:
            staged.append(services.files.stage_upload(f.name, f.chunks(), f.content_type))
    except Exception:
        for upload in staged:
            services.files.delete_file(upload.path)
        raise

    claim = services.workflow.submit_claim(request.actor, submission, staged, _audit(request))
    return _ok(data=claim.to_dict(), message="Claim submitted successfully", status=201)


@api_view(["GET"])
def claim_detail(request: HttpRequest, claim_id: int) -> JsonResponse:
    services = _get_services()
    claim = services.workflow.get_claim(request.actor, parse_positive_int(claim_id, "id"))
    return _ok(data=claim.to_dict())


@api_view(["GET"])
def claims_for_item(request: HttpRequest, item_id: int) -> JsonResponse:
    """Claims on one found item (its reporter or admin)."""
    services = _get_services()
    claims = services.workflow.claims_for_item(request.actor, parse_positive_int(item_id, "itemId"))
    return _ok(data=[claim.to_dict() for claim in claims])


@api_view(["PATCH"])
def verify_claim(request: HttpRequest, claim_id: int) -> JsonResponse:
    services = _get_services()
    verify = validate_verify(_json_body(request), services.config.claims)
    claim = services.workflow.verify_claim(
        request.actor, parse_positive_int(claim_id, "id"), verify, _audit(request)
    )
    return _ok(data=claim.to_dict(), message=f"Claim {claim.status.value} successfully")


@api_view(["PATCH"])
def schedule_pickup(request: HttpRequest, claim_id: int) -> JsonResponse:
    services = _get_services()
    pickup_scheduled = validate_schedule(_json_body(request))
    claim = services.workflow.schedule_pickup(
        request.actor, parse_positive_int(claim_id, "id"), pickup_scheduled, _audit(request)
    )
    return _ok(data=claim.to_dict(), message="Pickup scheduled successfully")


@api_view(["PATCH"])
def record_pickup(request: HttpRequest, claim_id: int) -> JsonResponse:
    services = _get_services()
    pickup = validate_pickup(_json_body(request), services.config.claims)
    claim = services.workflow.record_pickup(
        request.actor, parse_positive_int(claim_id, "id"), pickup, _audit(request)
    )
    return _ok(data=claim.to_dict(), message="Pickup recorded successfully")


@api_view(["PATCH"])
def cancel_claim(request: HttpRequest, claim_id: int) -> JsonResponse:
    services = _get_services()
    claim = services.workflow.cancel_claim(
        request.actor, parse_positive_int(claim_id, "id"), _audit(request)
    )
    return _ok(data=claim.to_dict(), message="Claim cancelled successfully")


# ============================================================================
# Matches
# ============================================================================


def _match_item(request: HttpRequest, item_id: int, direction: ItemType) -> JsonResponse:
    services = _get_services()
    item_id = parse_positive_int(item_id, "id")
    candidates = services.engine.match_item(item_id, direction, request.actor)
    return _ok(
        data=[candidate.to_dict() for candidate in candidates],
        meta={"item_id": item_id, "item_type": direction.value, "total": len(candidates)},
    )


@api_view(["GET"])
def matches_for_lost_item(request: HttpRequest, item_id: int) -> JsonResponse:
    """Rank found items for a lost item and persist the top candidates."""
    return _match_item(request, item_id, ItemType.LOST)


@api_view(["GET"])
def matches_for_found_item(request: HttpRequest, item_id: int) -> JsonResponse:
    """Rank lost items for a found item and persist the top candidates."""
    return _match_item(request, item_id, ItemType.FOUND)


@api_view(["GET"])
def my_lost_item_matches(request: HttpRequest) -> JsonResponse:
    services = _get_services()
    matches = services.matches.my_lost_item_matches(request.actor)
    return _ok(
        data=[match.to_dict() for match in matches],
        meta={"min_score": services.config.matching.min_display_score, "total": len(matches)},
    )


@api_view(["GET"])
def saved_matches(request: HttpRequest, item_type: str, item_id: int) -> JsonResponse:
    services = _get_services()
    matches = services.matches.saved_matches(
        validate_item_type(item_type),
        parse_positive_int(item_id, "itemId"),
        request.actor,
        status=validate_match_status_filter(request.GET.get("status")),
    )
    return _ok(data=[match.to_dict() for match in matches])


@api_view(["POST"])
def accept_match(request: HttpRequest, match_id: int) -> JsonResponse:
    services = _get_services()
    match = services.matches.confirm(parse_positive_int(match_id, "id"), request.actor)
    return _ok(data=match.to_dict(), message="Match confirmed")


@api_view(["POST"])
def reject_match(request: HttpRequest, match_id: int) -> JsonResponse:
    services = _get_services()
    match = services.matches.dismiss(parse_positive_int(match_id, "id"), request.actor)
    return _ok(data=match.to_dict(), message="Match dismissed")


@api_view(["PATCH"])
def update_match_status(request: HttpRequest, match_id: int) -> JsonResponse:
    services = _get_services()
    status = validate_match_status(_json_body(request).get("status"))
    match = services.matches.set_status(parse_positive_int(match_id, "id"), status, request.actor)
    message = "Match confirmed" if match.status is MatchStatus.CONFIRMED else "Match dismissed"
    return _ok(data=match.to_dict(), message=message)


@api_view(["POST"])
def run_auto_match(request: HttpRequest) -> JsonResponse:
    """Full matching sweep (admin only)."""
    if not request.actor.is_superuser:
        raise AuthorizationError("Admin role required")
    services = _get_services()
    summary = services.engine.run_auto_match()
    return _ok(data=summary.to_dict(), message="Auto-match completed")
