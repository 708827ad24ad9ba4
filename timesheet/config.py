"""Connection settings and the authenticated API context."""

import base64
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


class AuthenticationMissing(ConfigError):
    """Raised when email, API token or site URL is not configured."""

    pass


# --- Config file support ---


def _get_config_path() -> Path:
    """Get the path to the YAML config file."""
    override = os.getenv("JIRA_TIMESHEET_CONFIG", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "jira-timesheet" / "config.yml"


def _load_config_file() -> dict:
    """Load settings from the YAML config file.

    Returns:
        Parsed mapping, or an empty dict if the file is missing or invalid.
    """
    path = _get_config_path()

    if not path.exists():
        return {}

    try:
        with path.open(encoding="utf-8") as f:
            result = yaml.safe_load(f)
            return result if isinstance(result, dict) else {}
    except (yaml.YAMLError, PermissionError, OSError) as e:
        logger.debug(f"Could not load config file {path}: {e}")
        return {}


def normalize_site_url(url: str | None) -> str:
    """Strip whitespace and trailing slashes from a site URL."""
    return str(url or "").strip().rstrip("/")


def get_ssl_verify() -> bool | str:
    """Get SSL verification setting.

    Environment variables (checked in order):
    - JIRA_CA_BUNDLE: Path to custom CA certificate bundle
    - JIRA_INSECURE=1: Disable SSL verification (not recommended)
    """
    ca_bundle = os.environ.get("JIRA_CA_BUNDLE", "").strip()
    if ca_bundle:
        return ca_bundle
    if os.environ.get("JIRA_INSECURE", "").lower() in ("1", "true", "yes"):
        logger.warning(
            "SSL verification disabled (JIRA_INSECURE=1). "
            "This is insecure and should not be used in production."
        )
        return False
    return True


@dataclass(frozen=True)
class Settings:
    """Stored connection settings.

    Values are resolved from (in order of precedence):
    1. Explicit arguments to ``Settings.load``
    2. Environment variables (JIRA_SITE_URL, JIRA_EMAIL, JIRA_API_TOKEN, JIRA_BOARD_ID)
    3. The YAML config file (~/.config/jira-timesheet/config.yml)
    """

    site_url: str = ""
    email: str = ""
    api_token: str = field(default="", repr=False)
    board_id: str = ""

    @classmethod
    def load(
        cls,
        site_url: str | None = None,
        email: str | None = None,
        api_token: str | None = None,
        board_id: str | int | None = None,
    ) -> "Settings":
        file_cfg = _load_config_file()

        def pick(explicit: object, env_name: str, file_key: str) -> str:
            if explicit not in (None, ""):
                return str(explicit).strip()
            env_value = os.getenv(env_name, "").strip()
            if env_value:
                return env_value
            return str(file_cfg.get(file_key) or "").strip()

        return cls(
            site_url=normalize_site_url(pick(site_url, "JIRA_SITE_URL", "site_url")),
            email=pick(email, "JIRA_EMAIL", "email"),
            api_token=pick(api_token, "JIRA_API_TOKEN", "api_token"),
            board_id=pick(board_id, "JIRA_BOARD_ID", "board_id"),
        )

    @property
    def is_authenticated(self) -> bool:
        return bool(self.email and self.api_token and self.site_url)

    def require_board_id(self) -> str:
        if not self.board_id:
            raise ConfigError(
                "No board configured. Set JIRA_BOARD_ID or board_id in the config file."
            )
        return self.board_id


@dataclass(frozen=True)
class ApiContext:
    """Base URL and auth headers for one authenticated session."""

    base_url: str
    headers: dict[str, str] = field(repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiContext":
        """Build the context from stored credentials.

        Raises:
            AuthenticationMissing: If email, token or site URL is missing.
            ConfigError: If the site URL has no http(s) scheme.
        """
        if not settings.is_authenticated:
            raise AuthenticationMissing("Not authenticated")
        if not _SCHEME_RE.match(settings.site_url):
            raise ConfigError("Site URL must start with https://")

        raw = f"{settings.email}:{settings.api_token}".encode()
        token = base64.b64encode(raw).decode("ascii")
        return cls(
            base_url=settings.site_url,
            headers={
                "Authorization": f"Basic {token}",
                "Accept": "application/json",
            },
        )
