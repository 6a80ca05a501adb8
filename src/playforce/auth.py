"""OAuth grant flows against the Salesforce token endpoint.

Three grants are supported:

* ``password`` - username + password (+ security token appended by the user)
* ``client_credentials`` - connected app acting as its run-as user
* ``authorization_code`` - interactive browser login; the code arrives through
  :mod:`playforce.callback_server` and is exchanged with
  :meth:`Authenticator.authenticate_with_auth_code`.

Tokens only ever live in the :class:`~playforce.token_cache.TokenCache`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from .config_store import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_PASSWORD,
    ConfigStore,
    Profile,
)
from .exceptions import AuthError, ConfigError, NetworkError, UsageError, ValidationError
from .token_cache import Token, TokenCache

_logger = logging.getLogger(__name__)

TOKEN_PATH = "/services/oauth2/token"
AUTHORIZE_PATH = "/services/oauth2/authorize"


@dataclass
class AuthAttempt:
    """Outcome of :meth:`Authenticator.try_authenticate`."""

    success: bool
    needs_oauth: bool = False
    grant_type: Optional[str] = None
    error: Optional[str] = None


class Authenticator:
    def __init__(
        self,
        configs: ConfigStore,
        tokens: TokenCache,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 30.0,
    ) -> None:
        self.configs = configs
        self.tokens = tokens
        self.session = session or requests.Session()
        self.timeout = timeout

    # --------------------------- Public methods -----------------------

    def authenticate(self) -> Token:
        """Run the grant configured on the current profile and cache the token."""
        profile = self.require_profile()
        return self._authenticate_as(profile, profile.grant_type)

    def try_authenticate(self) -> AuthAttempt:
        """Authenticate without raising, signalling when the browser flow is needed.

        Profiles with username and password use the password grant; everything
        else tries client credentials, and a rejection there means the caller
        should fall back to the interactive flow.
        """
        profile = self.require_profile()

        if profile.has_password_credentials:
            try:
                self._authenticate_as(profile, GRANT_PASSWORD)
            except (AuthError, NetworkError) as e:
                return AuthAttempt(success=False, grant_type=GRANT_PASSWORD, error=str(e))
            return AuthAttempt(success=True, grant_type=GRANT_PASSWORD)

        try:
            self._authenticate_as(profile, GRANT_CLIENT_CREDENTIALS)
        except (AuthError, NetworkError) as e:
            _logger.info(
                "client_credentials failed for %r; interactive login needed: %s",
                profile.name,
                e,
            )
            return AuthAttempt(
                success=False,
                needs_oauth=True,
                grant_type=GRANT_CLIENT_CREDENTIALS,
                error=str(e),
            )
        return AuthAttempt(success=True, grant_type=GRANT_CLIENT_CREDENTIALS)

    def get_authorization_url(self, redirect_uri: str, *, profile: Optional[Profile] = None) -> str:
        """Return the browser URL that starts the authorization-code grant.

        ``prompt=login`` forces Salesforce to ask for credentials again so a
        browser session from another org is not silently reused.
        """
        profile = profile or self.require_profile()
        if not profile.client_id:
            raise ValidationError(["client_id"], GRANT_AUTHORIZATION_CODE)

        params = urlencode(
            {
                "response_type": "code",
                "client_id": profile.client_id,
                "redirect_uri": redirect_uri,
                "prompt": "login",
            }
        )
        return f"{profile.login_url}{AUTHORIZE_PATH}?{params}"

    def authenticate_with_auth_code(
        self, code: str, redirect_uri: str, *, profile: Optional[Profile] = None
    ) -> Token:
        """Exchange an authorization code; ``redirect_uri`` must match the one used.

        ``profile`` pins the exchange to the profile that issued the
        authorization URL; it defaults to the current one.
        """
        profile = profile or self.require_profile()
        data = {
            "grant_type": GRANT_AUTHORIZATION_CODE,
            "code": code,
            "client_id": profile.client_id,
            "client_secret": profile.client_secret,
            "redirect_uri": redirect_uri,
        }
        return self._request_token(profile, data)

    # --------------------------- Internal helpers --------------------

    def require_profile(self) -> Profile:
        profile = self.configs.current()
        if profile is None:
            raise ConfigError("No config selected or config file not found")
        return profile

    def _authenticate_as(self, profile: Profile, grant_type: str) -> Token:
        if grant_type == GRANT_PASSWORD:
            missing = [k for k in ("username", "password") if not getattr(profile, k)]
            if missing:
                raise ValidationError(missing, GRANT_PASSWORD)
            data = {
                "grant_type": GRANT_PASSWORD,
                "client_id": profile.client_id,
                "client_secret": profile.client_secret,
                "username": profile.username,
                "password": profile.password,
            }
        elif grant_type == GRANT_CLIENT_CREDENTIALS:
            data = {
                "grant_type": GRANT_CLIENT_CREDENTIALS,
                "client_id": profile.client_id,
                "client_secret": profile.client_secret,
            }
        elif grant_type == GRANT_AUTHORIZATION_CODE:
            raise UsageError(
                f"Profile {profile.name!r} uses the authorization_code grant; "
                "start the interactive OAuth flow instead of authenticating directly."
            )
        else:
            raise ConfigError(f"Unsupported grant_type {grant_type!r} in profile {profile.name!r}")

        _logger.info("Authenticating profile %r using %s grant", profile.name, grant_type)
        return self._request_token(profile, data)

    def _request_token(self, profile: Profile, data: Dict[str, Any]) -> Token:
        token_url = f"{profile.login_url}{TOKEN_PATH}"
        _logger.debug("Requesting access token from %s", token_url)
        try:
            r = self.session.post(token_url, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"Token request to {token_url} failed: {e}") from e

        try:
            payload = r.json()
        except ValueError:
            payload = r.text

        if r.status_code >= 400 or not isinstance(payload, dict):
            _logger.error("Authentication failed (%s): %s", r.status_code, payload)
            raise AuthError(
                f"Salesforce auth failed ({r.status_code}): {r.text}",
                status_code=r.status_code,
                body=payload,
            )

        try:
            token = Token.from_response(payload)
        except KeyError as e:
            raise AuthError(
                f"Token response missing {e.args[0]!r}", status_code=r.status_code, body=payload
            ) from e

        # Keyed by the profile whose credentials produced it
        self.tokens.put(profile.name, token)
        _logger.info("Authenticated profile %r against %s", profile.name, token.instance_url)
        return token
