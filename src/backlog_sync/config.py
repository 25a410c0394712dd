"""Configuration management for Backlog sync."""

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

from backlog_sync.exceptions import InvalidConfigError

SUPPORTED_HOSTS = ("backlog.com", "backlog.jp")
MIN_ISSUE_FETCH_LIMIT = 50
MAX_ISSUE_FETCH_LIMIT = 1000

_SPACE_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$", re.IGNORECASE)


@dataclass(frozen=True)
class AuthConfig:
    """Connection settings for a Backlog space."""

    space_domain: str
    api_key: str
    host: str = "backlog.com"
    issue_fetch_limit: int = MAX_ISSUE_FETCH_LIMIT
    excluded_projects: frozenset[str] = field(default_factory=frozenset)

    @property
    def base_url(self) -> str:
        return f"https://{self.space_domain}.{self.host}"

    @property
    def origin(self) -> str:
        return f"{self.base_url}/"

    def validate(self) -> list[str]:
        """Validate configuration values. Returns list of error messages."""
        errors: list[str] = []

        if not self.space_domain:
            errors.append("Backlog space domain is required")
        elif not _SPACE_DOMAIN_RE.match(self.space_domain):
            errors.append("Backlog space domain may only contain letters, digits and hyphens")

        if self.host not in SUPPORTED_HOSTS:
            errors.append(f"Backlog host must be one of: {', '.join(SUPPORTED_HOSTS)}")

        if not self.api_key:
            errors.append("Backlog API key is required")

        if isinstance(self.issue_fetch_limit, bool) or not isinstance(self.issue_fetch_limit, int):
            errors.append("Issue fetch limit must be an integer")
        elif not MIN_ISSUE_FETCH_LIMIT <= self.issue_fetch_limit <= MAX_ISSUE_FETCH_LIMIT:
            errors.append(
                f"Issue fetch limit must be between {MIN_ISSUE_FETCH_LIMIT} "
                f"and {MAX_ISSUE_FETCH_LIMIT}"
            )

        return errors

    def is_excluded(self, project_id: int, project_key: str | None = None) -> bool:
        """Whether a project is listed in ``excluded_projects`` by key or id."""
        if not self.excluded_projects:
            return False
        if project_key and project_key in self.excluded_projects:
            return True
        return str(project_id) in self.excluded_projects


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    return Path.home() / ".backlog-sync"


def get_config_path() -> Path:
    """Get the configuration file path."""
    return get_config_dir() / "config.toml"


def config_exists() -> bool:
    """Check if configuration file exists."""
    return get_config_path().exists()


def _read_config_file() -> dict:
    config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration not found at {config_path}. "
            "Create ~/.backlog-sync/config.toml to set up."
        )

    with open(config_path, "rb") as f:
        return tomllib.load(f)


def load_config() -> AuthConfig:
    """Load configuration from TOML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
    """
    data = _read_config_file()

    backlog_section = data.get("backlog", {})
    sync_section = data.get("sync", {})

    config = AuthConfig(
        space_domain=str(backlog_section.get("space_domain", "")).strip(),
        api_key=str(backlog_section.get("api_key", "")).strip(),
        host=backlog_section.get("host", "backlog.com"),
        issue_fetch_limit=sync_section.get("issue_fetch_limit", MAX_ISSUE_FETCH_LIMIT),
        excluded_projects=frozenset(str(p) for p in sync_section.get("excluded_projects", [])),
    )

    errors = config.validate()
    if errors:
        raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

    return config


def load_granted_origins() -> list[str] | None:
    """Origins listed under ``[permissions]``, or None when every origin is allowed."""
    if not config_exists():
        return None
    origins = _read_config_file().get("permissions", {}).get("origins")
    if origins is None:
        return None
    return [str(origin) for origin in origins]


def save_config(config: AuthConfig, granted_origins: list[str] | None = None) -> None:
    """Save configuration to TOML file."""
    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    config_path = get_config_path()

    data: dict = {
        "backlog": {
            "space_domain": config.space_domain,
            "host": config.host,
            "api_key": config.api_key,
        },
        "sync": {
            "issue_fetch_limit": config.issue_fetch_limit,
            "excluded_projects": sorted(config.excluded_projects),
        },
    }

    if granted_origins is not None:
        data["permissions"] = {"origins": list(granted_origins)}

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)


class FileConfigProvider:
    """Supplies the current ``AuthConfig`` from the TOML config file.

    Returns None when no file exists so callers can report a missing
    configuration instead of failing outright.
    """

    async def __call__(self) -> AuthConfig | None:
        if not config_exists():
            return None
        try:
            return load_config()
        except (FileNotFoundError, ValueError) as e:
            raise InvalidConfigError(str(e)) from e
