from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Type, TypeVar
from urllib.parse import quote

import requests

from .auth import Authenticator
from .config_store import ConfigStore, Profile
from .exceptions import ApiError, ConfigError, NetworkError, RESTError, SessionExpiredError, SOQLError
from .token_cache import Token, TokenCache

_logger = logging.getLogger(__name__)

T = TypeVar("T")

INVALID_SESSION_CODES = {"INVALID_SESSION_ID"}
READ_METHODS = {"GET", "HEAD"}


def is_session_expired(status_code: int, payload: Any) -> bool:
    """Decide from the status code and decoded body whether the token was rejected."""
    if status_code == 401:
        return True
    items = payload if isinstance(payload, list) else [payload]
    for item in items:
        if isinstance(item, dict) and item.get("errorCode") in INVALID_SESSION_CODES:
            return True
    return False


# ----------------------------------------------------------------------
# Authenticated request executor
# ----------------------------------------------------------------------
class RequestExecutor:
    """Issues authenticated Salesforce REST calls for the current profile.

    Every call goes through :meth:`call`, which authenticates on first use and,
    if the session turns out to be expired, re-authenticates exactly once and
    retries. A second expiry propagates.
    """

    def __init__(
        self,
        configs: ConfigStore,
        tokens: TokenCache,
        authenticator: Authenticator,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 60.0,
    ) -> None:
        self.configs = configs
        self.tokens = tokens
        self.authenticator = authenticator
        self.session = session or authenticator.session
        self.timeout = timeout

    # --------------------------- Token handling -----------------------

    def profile(self) -> Profile:
        profile = self.configs.current()
        if profile is None:
            raise ConfigError("No config selected or config file not found")
        return profile

    def ensure_token(self, *, force: bool = False) -> Token:
        profile = self.profile()
        token = None if force else self.tokens.get(profile.name)
        if token is None:
            _logger.debug("No usable token for %r; authenticating", profile.name)
            token = self.authenticator.authenticate()
        return token

    def call(self, fn: Callable[[Token], T]) -> T:
        token = self.ensure_token()
        try:
            return fn(token)
        except SessionExpiredError as e:
            _logger.warning("Session expired (HTTP %s); re-authenticating once", e.status_code)
            token = self.ensure_token(force=True)
            return fn(token)

    # --------------------------- Public methods -----------------------

    def data_url(self, token: Token, suffix: str = "") -> str:
        return f"{token.instance_url}/services/data/{self.profile().api_version}/{suffix}"

    def query(self, soql: str) -> Dict[str, Any]:
        """Run a SOQL query and return the first page."""

        def run(token: Token) -> Dict[str, Any]:
            url = self.data_url(token, f"query/?q={quote(soql, safe='')}")
            return self._send("GET", url, token, error_cls=SOQLError)

        return self.call(run)

    def query_more(self, next_records_url: str) -> Dict[str, Any]:
        """Fetch a continuation page given the relative ``nextRecordsUrl``."""

        def run(token: Token) -> Dict[str, Any]:
            return self._send("GET", f"{token.instance_url}{next_records_url}", token, error_cls=SOQLError)

        return self.call(run)

    def rest(self, path: str, method: str = "GET", body: Any = None) -> Any:
        """Call ``/sobjects/{path}`` with an arbitrary method."""
        method = method.upper()

        def run(token: Token) -> Any:
            url = self.data_url(token, f"sobjects/{path.lstrip('/')}")
            return self._send(method, url, token, json=body, error_cls=RESTError)

        return self.call(run)

    def describe_global(self) -> Dict[str, Any]:
        """Return /sobjects (global describe)."""
        return self.rest("")

    def describe_object(self, name: str) -> Dict[str, Any]:
        """Return /sobjects/{name}/describe."""
        return self.rest(f"{name}/describe")

    # --------------------------- HTTP wrapper -------------------------

    def _send(
        self,
        method: str,
        url: str,
        token: Token,
        *,
        json: Any = None,
        error_cls: Type[ApiError] = RESTError,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Content-Type": "application/json",
        }
        _logger.debug("%s %s", method, url)
        try:
            r = self.session.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        if r.status_code < 400:
            if r.status_code == 204 or not r.content:
                return None
            try:
                return r.json()
            except ValueError:
                # Maintenance pages and proxy interstitials come back as 200 HTML
                _logger.error("Non-JSON %s response from %s", r.status_code, url)
                raise error_cls(
                    f"Unexpected non-JSON response ({r.status_code}): {r.text[:500]}\nURL: {url}",
                    status_code=r.status_code,
                    body=r.text,
                    url=url,
                ) from None

        try:
            detail = r.json()
        except ValueError:
            detail = r.text

        if is_session_expired(r.status_code, detail):
            raise SessionExpiredError(
                f"Salesforce session expired: {r.text}", status_code=r.status_code, body=detail
            )

        _logger.error("HTTP %s error for %s: %s", r.status_code, url, detail)
        if error_cls is SOQLError:
            message = f"Salesforce SOQL error: {r.text}"
        else:
            message = f"REST API error: {r.text}\nURL: {url}"
        raise error_cls(message, status_code=r.status_code, body=detail, url=url)
