"""
Configuration management (SSOT).

This module defines ALL configuration for the lost & found service.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Matching weights must sum to 100
- The high band threshold must be above the medium band threshold
- frontend_url is only used for human-facing links in emails
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class MatchingConfig:
    """Similarity scoring and match persistence settings."""

    # Signal weights (must sum to 100)
    weight_category: int = 30
    weight_text: int = 45
    weight_date: int = 15
    weight_location: int = 10
    # Found date must fall within this many days after last-seen date
    date_window_days: int = 30
    # Candidates persisted per item on lookup and sweep
    top_n: int = 5
    # Minimum score for default result sets (my-lost-items)
    min_display_score: int = 50
    # Confidence bands
    high_threshold: int = 75
    medium_threshold: int = 50

    def weights(self) -> dict[str, int]:
        """Get signal weights keyed by signal name."""
        return {
            "category": self.weight_category,
            "text": self.weight_text,
            "date": self.weight_date,
            "location": self.weight_location,
        }


@dataclass
class ClaimsConfig:
    """Claim input limits and listing defaults."""

    description_min: int = 20
    description_max: int = 1000
    proof_details_min: int = 20
    proof_details_max: int = 2000
    rejection_reason_min: int = 10
    rejection_reason_max: int = 500
    verification_notes_max: int = 1000
    picked_up_by_name_min: int = 2
    picked_up_by_name_max: int = 200
    id_presented_max: int = 100
    default_page_size: int = 10
    max_page_size: int = 50


@dataclass
class StorageConfig:
    """Proof image storage settings."""

    upload_dir: Path = field(default_factory=lambda: Path("data/uploads"))
    max_images: int = 5
    # Bytes per file (5 MB)
    max_file_size: int = 5 * 1024 * 1024
    # Images are resized to fit within max_dimension x max_dimension
    max_dimension: int = 1920
    allowed_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp")


@dataclass
class EmailConfig:
    """Outbound email API configuration.

    The API is MailerSend-compatible: POST {api_url} with a bearer token.
    When disabled, emails are still recorded in the outbox and stay
    pending until delivery is enabled.
    """

    enabled: bool = False
    api_url: str = "https://api.mailersend.com/v1/email"
    api_token: str = ""
    from_email: str = "noreply@campus.local"
    from_name: str = "Campus Lost & Found"
    # Browser-accessible frontend URL for links in emails
    frontend_url: str = "http://localhost:3000"
    timeout_seconds: int = 15


@dataclass
class OutboxConfig:
    """Email outbox dispatcher settings."""

    max_attempts: int = 5
    # Base delay; attempt n waits backoff_seconds * 2**(n-1)
    backoff_seconds: int = 60
    dispatch_interval_seconds: int = 30
    batch_size: int = 20
    # A row being sent is leased this long before another dispatcher may retake it
    lease_seconds: int = 300
    # Start the dispatcher thread inside the web process
    run_in_web: bool = False


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    claims: ClaimsConfig = field(default_factory=ClaimsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    outbox: OutboxConfig = field(default_factory=OutboxConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    db_busy_timeout_seconds: float = 10.0

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        total = sum(self.matching.weights().values())
        if total != 100:
            errors.append(f"matching weights must sum to 100 (got {total})")
        if self.matching.high_threshold <= self.matching.medium_threshold:
            errors.append("matching.high_threshold must be > matching.medium_threshold")
        if self.matching.date_window_days < 0:
            errors.append("matching.date_window_days must be >= 0")
        if self.matching.top_n < 1:
            errors.append("matching.top_n must be >= 1")

        if self.claims.max_page_size < 1:
            errors.append("claims.max_page_size must be >= 1")

        if self.storage.max_images < 1:
            errors.append("storage.max_images must be >= 1")

        if self.email.enabled:
            if not self.email.api_url:
                errors.append("email.api_url is required when email is enabled")
            if not self.email.api_token:
                errors.append("email.api_token is required when email is enabled")

        if self.outbox.max_attempts < 1:
            errors.append("outbox.max_attempts must be >= 1")
        if self.outbox.lease_seconds < 1:
            errors.append("outbox.lease_seconds must be >= 1")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LOSTFOUND_DB_PATH
    - LOSTFOUND_UPLOAD_DIR
    - EMAIL_ENABLED (true/false)
    - EMAIL_API_URL
    - EMAIL_API_TOKEN
    - FRONTEND_URL
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    matching_data = data.get("matching", {})
    weights_data = matching_data.get("weights", {})
    matching = MatchingConfig(
        weight_category=weights_data.get("category", 30),
        weight_text=weights_data.get("text", 45),
        weight_date=weights_data.get("date", 15),
        weight_location=weights_data.get("location", 10),
        date_window_days=matching_data.get("date_window_days", 30),
        top_n=matching_data.get("top_n", 5),
        min_display_score=matching_data.get("min_display_score", 50),
        high_threshold=matching_data.get("high_threshold", 75),
        medium_threshold=matching_data.get("medium_threshold", 50),
    )

    claims_data = data.get("claims", {})
    defaults = ClaimsConfig()
    claims = ClaimsConfig(
        **{
            key: claims_data.get(key, getattr(defaults, key))
            for key in defaults.__dataclass_fields__
        }
    )

    storage_data = data.get("storage", {})
    storage = StorageConfig(
        upload_dir=Path(
            os.environ.get("LOSTFOUND_UPLOAD_DIR", storage_data.get("upload_dir", "data/uploads"))
        ),
        max_images=storage_data.get("max_images", 5),
        max_file_size=storage_data.get("max_file_size", 5 * 1024 * 1024),
        max_dimension=storage_data.get("max_dimension", 1920),
    )

    email_data = data.get("email", {})
    email = EmailConfig(
        enabled=_env_bool("EMAIL_ENABLED", email_data.get("enabled", False)),
        api_url=os.environ.get(
            "EMAIL_API_URL", email_data.get("api_url", "https://api.mailersend.com/v1/email")
        ),
        api_token=os.environ.get("EMAIL_API_TOKEN", email_data.get("api_token", "")),
        from_email=email_data.get("from_email", "noreply@campus.local"),
        from_name=email_data.get("from_name", "Campus Lost & Found"),
        frontend_url=os.environ.get(
            "FRONTEND_URL", email_data.get("frontend_url", "http://localhost:3000")
        ),
        timeout_seconds=int(email_data.get("timeout_seconds", 15)),
    )

    outbox_data = data.get("outbox", {})
    outbox = OutboxConfig(
        max_attempts=outbox_data.get("max_attempts", 5),
        backoff_seconds=outbox_data.get("backoff_seconds", 60),
        dispatch_interval_seconds=outbox_data.get("dispatch_interval_seconds", 30),
        batch_size=outbox_data.get("batch_size", 20),
        lease_seconds=outbox_data.get("lease_seconds", 300),
        run_in_web=outbox_data.get("run_in_web", False),
    )

    state_db = os.environ.get("LOSTFOUND_DB_PATH", data.get("state_db_path", "data/state.db"))

    return Config(
        matching=matching,
        claims=claims,
        storage=storage,
        email=email,
        outbox=outbox,
        state_db_path=Path(state_db),
        db_busy_timeout_seconds=float(data.get("db_busy_timeout_seconds", 10.0)),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Campus Lost & Found configuration
#
# Environment variables override: LOSTFOUND_DB_PATH, LOSTFOUND_UPLOAD_DIR,
# EMAIL_ENABLED, EMAIL_API_URL, EMAIL_API_TOKEN, FRONTEND_URL

# Similarity scoring
matching:
  weights:                    # Must sum to 100
    category: 30
    text: 45                  # Identifiers or title/description overlap
    date: 15
    location: 10
  date_window_days: 30        # Found date must be within N days after last seen
  top_n: 5                    # Matches persisted per item
  min_display_score: 50       # Floor for "my lost items" suggestions
  high_threshold: 75
  medium_threshold: 50

# Claim input limits
claims:
  description_min: 20
  description_max: 1000
  proof_details_min: 20
  proof_details_max: 2000
  default_page_size: 10
  max_page_size: 50

# Proof images
storage:
  upload_dir: "data/uploads"
  max_images: 5
  max_file_size: 5242880      # 5 MB
  max_dimension: 1920

# Outbound email (MailerSend-compatible API)
email:
  enabled: false
  api_url: "https://api.mailersend.com/v1/email"
  api_token: "YOUR_EMAIL_API_TOKEN"
  from_email: "noreply@campus.local"
  from_name: "Campus Lost & Found"
  frontend_url: "http://localhost:3000"

# Email outbox dispatcher
outbox:
  max_attempts: 5
  backoff_seconds: 60         # Doubles with each failed attempt
  dispatch_interval_seconds: 30
  batch_size: 20
  lease_seconds: 300          # Sending lease; expired leases are retaken
  run_in_web: false           # Start dispatcher thread inside the web server

# State database path
state_db_path: "data/state.db"
db_busy_timeout_seconds: 10
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
