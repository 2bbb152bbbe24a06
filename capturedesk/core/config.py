"""Configuration Manager for capturedesk.

Centralized configuration loading from environment variables with sensible defaults.
The Config object is built once at process start and handed to every component;
nothing else reads the environment. Credentials are optional at load time and
checked eagerly by the ``require_*`` helpers right before an operation needs them.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from capturedesk.core.exceptions import ConfigurationError

DEFAULT_BRANCH = "main"
DEFAULT_FROM_EMAIL = "onboarding@resend.dev"


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Credentials (all optional, validated on use):
        capture_api_key: Bearer token capture clients send to the ingest endpoint.
        admin_password: Admin credential for review and publish endpoints.
        cron_secret: Alternative credential accepted by the publish-all endpoint.
        upstash_url / upstash_token: Upstash Redis REST store. When unset the
            capture store falls back to the local ``state_file``.
        github_token / github_repo: Hosting API access for publishing.
        anthropic_api_key: Enables AI refinement.
        resend_api_key / resend_audience_id: Newsletter audience and sending.

    Optional (with defaults):
        github_branch: Branch the publisher advances.
        content_dir: Repository-relative directory holding the collections.
        image_dir: Repository-relative directory for captured images.
        content_root: Local content directory indexed by the newsletter.
        site_url: Public site URL used to absolutize newsletter links.
        newsletter_title: Name used in newsletter subjects.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        host / port: Bind address for the HTTP server.
    """

    capture_api_key: str | None = None
    admin_password: str | None = None
    cron_secret: str | None = None

    upstash_url: str | None = None
    upstash_token: str | None = None
    state_file: Path = field(default_factory=lambda: Path("data/captures.json"))

    github_token: str | None = None
    github_repo: str | None = None
    github_branch: str = DEFAULT_BRANCH
    content_dir: str = "src/content"
    image_dir: str = "public/images/captures"

    anthropic_api_key: str | None = None
    refine_model: str | None = None

    resend_api_key: str | None = None
    resend_audience_id: str | None = None
    resend_from_email: str = DEFAULT_FROM_EMAIL

    site_url: str = ""
    content_root: Path = field(default_factory=lambda: Path("src/content"))
    newsletter_title: str = "Notes"

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8766

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if isinstance(self.state_file, str):
            self.state_file = Path(self.state_file)
        if isinstance(self.content_root, str):
            self.content_root = Path(self.content_root)

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigurationError(
                f"Invalid LOG_LEVEL '{self.log_level}'. "
                f"Must be one of: {', '.join(sorted(valid_log_levels))}"
            )
        self.log_level = self.log_level.upper()

        if not 0 < self.port < 65536:
            raise ConfigurationError("CAPTURE_PORT must be between 1 and 65535")

        if not self.github_branch:
            raise ConfigurationError("GITHUB_BRANCH must not be empty")

        self.content_dir = self.content_dir.strip("/")
        self.image_dir = self.image_dir.strip("/")
        self.site_url = self.site_url.rstrip("/")

    @property
    def ai_configured(self) -> bool:
        """True when AI refinement can be attempted."""
        return bool(self.anthropic_api_key)

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token and self.github_repo)

    @property
    def upstash_configured(self) -> bool:
        return bool(self.upstash_url and self.upstash_token)

    def require_github(self) -> None:
        if not self.github_configured:
            raise ConfigurationError(
                "Missing GITHUB_TOKEN or GITHUB_REPO environment variables"
            )

    def require_resend(self) -> None:
        if not (self.resend_api_key and self.resend_audience_id):
            raise ConfigurationError(
                "Missing required env vars: RESEND_API_KEY and RESEND_AUDIENCE_ID"
            )

    def require_admin(self) -> None:
        if not self.admin_password:
            raise ConfigurationError("ADMIN_PASSWORD not configured")

    def require_ingest_key(self) -> None:
        if not self.capture_api_key:
            raise ConfigurationError("CAPTURE_API_KEY not configured")


def load_config() -> Config:
    """Load configuration from environment variables.

    Returns:
        Config object with all settings loaded.

    Raises:
        ConfigurationError: If values are invalid.
    """

    def get_int(key: str, default: int) -> int:
        """Parse int from env var with default."""
        value = os.environ.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"{key} must be a valid integer, got '{value}'")

    return Config(
        capture_api_key=os.environ.get("CAPTURE_API_KEY") or None,
        admin_password=os.environ.get("ADMIN_PASSWORD") or None,
        cron_secret=os.environ.get("CRON_SECRET") or None,
        upstash_url=os.environ.get("UPSTASH_REDIS_REST_URL") or None,
        upstash_token=os.environ.get("UPSTASH_REDIS_REST_TOKEN") or None,
        state_file=Path(os.environ.get("CAPTURE_STATE_FILE", "data/captures.json")),
        github_token=os.environ.get("GITHUB_TOKEN") or None,
        github_repo=os.environ.get("GITHUB_REPO") or None,
        github_branch=os.environ.get("GITHUB_BRANCH", DEFAULT_BRANCH),
        content_dir=os.environ.get("CONTENT_DIR", "src/content"),
        image_dir=os.environ.get("CAPTURE_IMAGE_DIR", "public/images/captures"),
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
        refine_model=os.environ.get("REFINE_MODEL") or None,
        resend_api_key=os.environ.get("RESEND_API_KEY") or None,
        resend_audience_id=os.environ.get("RESEND_AUDIENCE_ID") or None,
        resend_from_email=os.environ.get("RESEND_FROM_EMAIL", DEFAULT_FROM_EMAIL),
        site_url=os.environ.get("SITE_URL", ""),
        content_root=Path(os.environ.get("CONTENT_ROOT", "src/content")),
        newsletter_title=os.environ.get("NEWSLETTER_TITLE", "Notes"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        host=os.environ.get("CAPTURE_HOST", "0.0.0.0"),
        port=get_int("CAPTURE_PORT", 8766),
    )


# Singleton instance for convenience
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call and caches it for subsequent calls.
    Use reset_config() to force a reload.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the global configuration instance.

    Forces the next get_config() call to reload from environment variables.
    Useful for testing.
    """
    global _config
    _config = None
