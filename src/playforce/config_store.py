"""Named connection profiles stored as one JSON file per profile."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

_logger = logging.getLogger(__name__)

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_API_VERSION = "v57.0"
CONFIG_DIR_ENV = "PLAYFORCE_CONFIG_DIR"

GRANT_PASSWORD = "password"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_TYPES = (GRANT_PASSWORD, GRANT_CLIENT_CREDENTIALS, GRANT_AUTHORIZATION_CODE)


# ----------------------------------------------------------------------
# Profile dataclass
# ----------------------------------------------------------------------
@dataclass
class Profile:
    """A parsed connection profile with defaults applied."""

    name: str
    login_url: str = DEFAULT_LOGIN_URL
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    grant_type: str = GRANT_CLIENT_CREDENTIALS
    username: Optional[str] = None
    password: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION

    # Unknown keys from the record, kept for display
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_password_credentials(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_record(cls, name: str, record: Dict[str, Any]) -> Profile:
        """Build a profile from a raw config record.

        ``grant_type`` is inferred when absent: ``password`` if both username
        and password are present, otherwise ``client_credentials``. An explicit
        value is never overwritten.
        """
        known = {
            "login_url",
            "client_id",
            "client_secret",
            "grant_type",
            "username",
            "password",
            "apiVersion",
        }
        username = record.get("username") or None
        password = record.get("password") or None

        grant_type = record.get("grant_type")
        if not grant_type:
            grant_type = GRANT_PASSWORD if username and password else GRANT_CLIENT_CREDENTIALS

        login_url = (record.get("login_url") or DEFAULT_LOGIN_URL).rstrip("/")

        return cls(
            name=name,
            login_url=login_url,
            client_id=record.get("client_id"),
            client_secret=record.get("client_secret"),
            grant_type=grant_type,
            username=username,
            password=password,
            api_version=record.get("apiVersion") or DEFAULT_API_VERSION,
            extra={k: v for k, v in record.items() if k not in known},
        )

    def public_view(self) -> Dict[str, Any]:
        """Profile fields safe to hand to a UI (no secrets)."""
        return {
            "name": self.name,
            "login_url": self.login_url,
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "username": self.username,
            "apiVersion": self.api_version,
        }


def default_config_dir() -> Path:
    env = os.getenv(CONFIG_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return Path.cwd() / "configs"


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------
class ConfigStore:
    """Resolves profile names to parsed :class:`Profile` records.

    At most one profile is current. The parsed record is cached until the
    profile is re-selected or its file changes on disk.
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.config_dir = Path(config_dir) if config_dir is not None else default_config_dir()
        self._current_name: Optional[str] = None
        self._cached: Optional[Profile] = None
        self._cached_mtime: Optional[float] = None

    def _path_for(self, name: str) -> Path:
        return self.config_dir / f"{name}.json"

    @property
    def current_name(self) -> Optional[str]:
        return self._current_name

    def list(self) -> List[str]:
        """Return profile names in the config directory, sorted; never raises."""
        try:
            if not self.config_dir.is_dir():
                return []
            return sorted(p.stem for p in self.config_dir.glob("*.json") if p.is_file())
        except OSError as e:
            _logger.warning("Could not list configs in %s: %s", self.config_dir, e)
            return []

    def select(self, name: str) -> bool:
        """Make ``name`` the current profile.

        Returns False (and leaves no profile selected) if no record exists.
        """
        self._cached = None
        self._cached_mtime = None

        # Profile names map to files directly inside config_dir, nowhere else
        if not name or Path(name).name != name or name in (".", ".."):
            _logger.error("Invalid config name: %r", name)
            self._current_name = None
            return False

        path = self._path_for(name)
        if not name or not path.is_file():
            _logger.error("Config file does not exist: %s", path)
            self._current_name = None
            return False

        self._current_name = name
        _logger.info("Selected config %r (%s)", name, path)
        return True

    def current(self) -> Optional[Profile]:
        """Return the parsed current profile, or None if unselected or unreadable."""
        if self._current_name is None:
            _logger.warning("No config file selected")
            return None

        path = self._path_for(self._current_name)
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            _logger.error("Config file for %r is gone: %s", self._current_name, e)
            self._cached = None
            return None

        if self._cached is not None and self._cached_mtime == mtime:
            return self._cached

        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _logger.error("Error loading config %s: %s", path, e)
            self._cached = None
            return None

        if not isinstance(record, dict):
            _logger.error("Config %s is not a JSON object", path)
            self._cached = None
            return None

        _logger.debug("Loaded config from %s", path)
        self._cached = Profile.from_record(self._current_name, record)
        self._cached_mtime = mtime
        return self._cached
