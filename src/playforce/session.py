"""Process-owned session context.

One :class:`SessionContext` holds every piece of mutable state the engine
needs: the selected profile, in-memory tokens, in-flight queries and the OAuth
callback listener. The host (CLI, desktop shell) creates it, routes user
actions to its methods and calls :meth:`shutdown` on exit.

Usage:
    with SessionContext.create(config_dir=Path("configs")) as ctx:
        ctx.select_config("prod")
        if not ctx.try_authenticate().success:
            flow = ctx.start_oauth_flow()
            ctx.complete_oauth_flow(flow)
        result = ctx.execute_soql("SELECT * FROM Account", query_id="q1")
"""

from __future__ import annotations

import logging
import webbrowser
from concurrent.futures import CancelledError
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence

import requests

from .api import READ_METHODS, RequestExecutor
from .auth import AuthAttempt, Authenticator
from .callback_server import CALLBACK_PORTS, CallbackListener, CallbackResult
from .config_store import ConfigStore, Profile
from .exceptions import AuthError, LicenseError, UsageError
from .license import LicenseGate, LicenseStatus
from .query import CancellationToken, QueryEngine, QueryProgress, QueryResult
from .token_cache import Token, TokenCache

_logger = logging.getLogger(__name__)

DEFAULT_OAUTH_TIMEOUT = 120.0


@dataclass
class OAuthFlow:
    """A started browser login, pinned to the profile that built its URL."""

    authorization_url: str
    redirect_uri: str
    profile: Optional[Profile] = None
    _waiter: Any = None


class SessionContext:
    def __init__(
        self,
        configs: ConfigStore,
        *,
        license_gate: Optional[LicenseGate] = None,
        callback_ports: Sequence[int] = CALLBACK_PORTS,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.configs = configs
        self.tokens = TokenCache()
        self.http = http or requests.Session()
        self.authenticator = Authenticator(configs, self.tokens, self.http)
        self.executor = RequestExecutor(configs, self.tokens, self.authenticator, self.http)
        self.queries = QueryEngine(self.executor)
        self.license_gate = license_gate or LicenseGate()
        self.listener = CallbackListener(callback_ports)

    @classmethod
    def create(
        cls,
        config_dir: Optional[Path] = None,
        *,
        license_file: Optional[Path] = None,
        callback_ports: Sequence[int] = CALLBACK_PORTS,
    ) -> SessionContext:
        return cls(
            ConfigStore(config_dir),
            license_gate=LicenseGate(license_file),
            callback_ports=callback_ports,
        )

    def __enter__(self) -> SessionContext:
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Stop the callback listener and forget every token."""
        self.listener.stop()
        self.tokens.clear()
        self.http.close()
        _logger.debug("Session context shut down")

    # --------------------------- Profiles ----------------------------

    def list_configs(self) -> List[str]:
        return self.configs.list()

    def select_config(self, name: str) -> bool:
        return self.configs.select(name)

    select_profile = select_config

    def get_current_config(self) -> Optional[Dict[str, Any]]:
        profile = self.configs.current()
        return profile.public_view() if profile else None

    # --------------------------- Authentication ----------------------

    def requires_oauth(self) -> bool:
        """Always False: client credentials are tried first and
        :meth:`try_authenticate` reports when the browser flow is needed."""
        return False

    def try_authenticate(self) -> AuthAttempt:
        return self.authenticator.try_authenticate()

    def has_valid_token(self) -> bool:
        return self.tokens.get(self.configs.current_name) is not None

    def current_token(self) -> Optional[Token]:
        return self.tokens.get(self.configs.current_name)

    def start_oauth_flow(self, *, open_browser: bool = True) -> OAuthFlow:
        """Start the listener (first time only) and return the authorization URL."""
        profile = self.authenticator.require_profile()
        redirect_uri = self.listener.start()
        url = self.authenticator.get_authorization_url(redirect_uri, profile=profile)
        flow = OAuthFlow(url, redirect_uri, profile, self.listener.expect())
        if open_browser:
            _logger.info("Opening browser for Salesforce login")
            webbrowser.open(url)
        return flow

    def complete_oauth_flow(self, flow: OAuthFlow, timeout: float = DEFAULT_OAUTH_TIMEOUT) -> Token:
        """Wait for the browser redirect of ``flow`` and exchange its code.

        The code is exchanged with the profile the flow was started for, even
        if another profile has been selected meanwhile, and the token is
        cached under that profile's name.
        """
        if flow._waiter is None:
            raise UsageError("OAuth flow was not started with start_oauth_flow()")
        try:
            result: CallbackResult = flow._waiter.result(timeout=timeout)
        except FutureTimeout:
            raise AuthError(f"Login timed out after {timeout:.0f} seconds") from None
        except CancelledError:
            raise AuthError("Login was superseded by a newer OAuth flow or the session shut down") from None
        if not result.ok:
            raise AuthError(
                f"Authorization failed: {result.error}: {result.error_description}",
                body={"error": result.error, "error_description": result.error_description},
            )
        return self.exchange_auth_code(result.code or "", flow.redirect_uri, profile=flow.profile)

    def exchange_auth_code(self, code: str, redirect_uri: str, *, profile: Optional[Profile] = None) -> Token:
        return self.authenticator.authenticate_with_auth_code(code, redirect_uri, profile=profile)

    # --------------------------- Queries -----------------------------

    def execute_soql(
        self,
        query: str,
        *,
        on_progress: Optional[Callable[[QueryProgress], None]] = None,
        query_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> QueryResult:
        return self.queries.execute(query, on_progress=on_progress, query_id=query_id, cancel=cancel)

    def iter_soql(
        self, query: str, *, query_id: Optional[str] = None, cancel: Optional[CancellationToken] = None
    ) -> Generator[QueryProgress, None, QueryResult]:
        return self.queries.iter_query(query, query_id=query_id, cancel=cancel)

    def abort_query(self, query_id: str) -> bool:
        return self.queries.abort(query_id)

    # --------------------------- REST --------------------------------

    def execute_rest(self, path: str, method: str = "GET", body: Any = None) -> Any:
        """Call the sObjects REST API; anything but a read needs a license."""
        if method.upper() not in READ_METHODS:
            status = self.license_gate.check()
            if not status.licensed:
                raise LicenseError(
                    f"{status.message} Write operations ({method.upper()}) require a valid "
                    "playforce license; contact your administrator to obtain one."
                )
        return self.executor.rest(path, method, body)

    def describe_global(self) -> Dict[str, Any]:
        return self.executor.describe_global()

    def describe_object(self, name: str) -> Dict[str, Any]:
        return self.executor.describe_object(name)

    def get_license_info(self, license_file: Optional[Path] = None) -> LicenseStatus:
        """License status from the configured source, or from ``license_file``."""
        gate = self.license_gate.with_file(license_file) if license_file else self.license_gate
        return gate.check()
