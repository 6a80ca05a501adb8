"""Local HTTP listener that captures the OAuth authorization-code redirect.

The listener binds once to the first free port in a small range and then
stays up for the life of the process, so repeated logins reuse the same
redirect URI. Each flow registers a waiter with :meth:`CallbackListener.expect`;
the next callback resolves it and the HTTP response is sent without waiting
for the consumer.
"""

from __future__ import annotations

import errno
import html
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional, Sequence
from urllib.parse import parse_qs, urlparse

from .exceptions import NetworkError

_logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/oauth/callback"
CALLBACK_PORTS = tuple(range(8888, 8893))

_RETRYABLE_BIND_ERRNOS = {errno.EADDRINUSE, errno.EACCES}


@dataclass
class CallbackResult:
    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code is not None


# ---------------------------------------------------------------------------
# Request handler
# ---------------------------------------------------------------------------


class _CallbackHandler(BaseHTTPRequestHandler):
    """Captures the authorization code (or error) from the OAuth redirect."""

    server: "_CallbackHTTPServer"

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path != CALLBACK_PATH:
            self._respond(404, "<h2>Not found</h2>")
            return

        params = parse_qs(parsed.query)

        if "error" in params:
            result = CallbackResult(
                error=params["error"][0],
                error_description=params.get("error_description", [""])[0],
            )
            self.server.listener._deliver(result)
            self._respond(
                400,
                f"<h2>Authorization failed</h2><p>{html.escape(result.error or '')}: "
                f"{html.escape(result.error_description or '')}</p>"
                "<p>You can close this tab.</p>",
            )
            return

        if "code" in params:
            self.server.listener._deliver(CallbackResult(code=params["code"][0]))
            self._respond(
                200,
                "<h2>Login successful!</h2><p>You can close this tab and return to playforce.</p>",
            )
            return

        self._respond(400, "<h2>Missing authorization code</h2>")

    def _respond(self, status: int, body: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(body.encode("utf-8"))

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        _logger.debug("callback %s - %s", self.address_string(), format % args)


class _CallbackHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, listener: "CallbackListener") -> None:
        self.listener = listener
        super().__init__(address, _CallbackHandler)


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


class CallbackListener:
    def __init__(self, ports: Sequence[int] = CALLBACK_PORTS, host: str = CALLBACK_HOST) -> None:
        if not ports:
            raise ValueError("ports must not be empty")
        self.ports = tuple(ports)
        self.host = host
        self._server: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._waiter: Optional[Future] = None

    @property
    def port(self) -> Optional[int]:
        return self._server.server_address[1] if self._server else None

    @property
    def redirect_uri(self) -> str:
        if self._server is None:
            raise NetworkError("Callback listener is not running")
        return f"http://{self.host}:{self.port}{CALLBACK_PATH}"

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self) -> str:
        """Bind (first call only) and return the redirect URI."""
        with self._lock:
            if self._server is None:
                self._server = self._bind()
                self._thread = threading.Thread(
                    target=self._server.serve_forever,
                    name="playforce-oauth-callback",
                    daemon=True,
                )
                self._thread.start()
                _logger.info("OAuth callback listener on %s", self.redirect_uri)
        return self.redirect_uri

    def _bind(self) -> _CallbackHTTPServer:
        for port in self.ports:
            try:
                return _CallbackHTTPServer((self.host, port), self)
            except OSError as e:
                if e.errno not in _RETRYABLE_BIND_ERRNOS:
                    raise NetworkError(f"Cannot bind OAuth callback on port {port}: {e}") from e
                _logger.debug("Port %d unavailable (%s); trying next", port, e.strerror)

        raise NetworkError(
            f"No free port for the OAuth callback in range "
            f"{self.ports[0]}-{self.ports[-1]} on {self.host}"
        )

    def expect(self) -> "Future[CallbackResult]":
        """Register the waiter that the next callback will resolve.

        A newer flow replaces any waiter still pending from an older one.
        """
        with self._lock:
            if self._waiter is not None and not self._waiter.done():
                self._waiter.cancel()
            self._waiter = Future()
            return self._waiter

    def _deliver(self, result: CallbackResult) -> None:
        with self._lock:
            waiter, self._waiter = self._waiter, None
        if waiter is None or waiter.done():
            _logger.warning("OAuth callback received with no login in progress")
            return
        waiter.set_result(result)

    def stop(self) -> None:
        with self._lock:
            server, self._server = self._server, None
            thread, self._thread = self._thread, None
            if self._waiter is not None and not self._waiter.done():
                self._waiter.cancel()
            self._waiter = None
        if server is not None:
            server.shutdown()
            server.server_close()
        if thread is not None:
            thread.join(timeout=1.0)
