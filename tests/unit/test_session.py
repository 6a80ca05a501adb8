"""Tests for playforce.session.SessionContext (collaborator-facing operations)."""

import socket
import threading
from unittest.mock import patch
from urllib.request import ProxyHandler, build_opener

import pytest

from playforce.config_store import ConfigStore
from playforce.exceptions import AuthError, LicenseError
from playforce.license import LicenseGate, LicenseStatus
from playforce.session import SessionContext


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def token_server(fake_http, response, token_json):
    fake_http.handler = lambda m, u, **kw: response(json_data=token_json())
    return fake_http


def test_select_and_list(session_ctx):
    assert session_ctx.list_configs() == ["cc", "pw", "web"]
    assert session_ctx.select_config("pw")
    assert session_ctx.get_current_config()["grant_type"] == "password"
    assert not session_ctx.select_config("nope")
    assert session_ctx.get_current_config() is None


def test_requires_oauth_is_always_false(session_ctx):
    session_ctx.select_config("web")
    assert session_ctx.requires_oauth() is False


def test_tokens_survive_profile_switch(session_ctx, token_server):
    session_ctx.select_config("pw")
    assert not session_ctx.has_valid_token()
    assert session_ctx.try_authenticate().success
    assert session_ctx.has_valid_token()

    session_ctx.select_config("cc")
    assert not session_ctx.has_valid_token()

    session_ctx.select_config("pw")
    assert session_ctx.has_valid_token()


def test_shutdown_clears_tokens(config_dir, token_server, tmp_path):
    ctx = SessionContext(
        ConfigStore(config_dir), license_gate=LicenseGate(tmp_path / "x.env"), http=token_server
    )
    ctx.select_config("pw")
    ctx.try_authenticate()
    ctx.shutdown()
    assert len(ctx.tokens) == 0
    assert token_server.closed


class TestOAuthFlow:
    @pytest.fixture
    def ctx(self, config_dir, token_server, tmp_path):
        ctx = SessionContext(
            ConfigStore(config_dir),
            license_gate=LicenseGate(tmp_path / "x.env"),
            callback_ports=[free_port()],
            http=token_server,
        )
        ctx.select_config("web")
        yield ctx
        ctx.shutdown()

    def redirect(self, url):
        build_opener(ProxyHandler({})).open(url, timeout=5).close()

    def test_full_flow(self, ctx, token_server):
        flow = ctx.start_oauth_flow(open_browser=False)
        assert f"redirect_uri={flow.redirect_uri.replace(':', '%3A').replace('/', '%2F')}" in (
            flow.authorization_url
        )

        threading.Thread(target=self.redirect, args=(f"{flow.redirect_uri}?code=CODE1",)).start()
        token = ctx.complete_oauth_flow(flow, timeout=5)

        assert ctx.has_valid_token()
        assert ctx.current_token() is token
        data = token_server.calls[-1][2]["data"]
        assert data["code"] == "CODE1"
        assert data["redirect_uri"] == flow.redirect_uri

    def test_browser_opened(self, ctx):
        with patch("playforce.session.webbrowser.open") as mock_open:
            flow = ctx.start_oauth_flow()
        mock_open.assert_called_once_with(flow.authorization_url)

    def test_second_flow_reuses_listener(self, ctx):
        first = ctx.start_oauth_flow(open_browser=False)
        second = ctx.start_oauth_flow(open_browser=False)
        assert first.redirect_uri == second.redirect_uri

    def test_denied(self, ctx):
        flow = ctx.start_oauth_flow(open_browser=False)
        url = f"{flow.redirect_uri}?error=access_denied&error_description=nope"
        threading.Thread(target=self._quiet_redirect, args=(url,)).start()

        with pytest.raises(AuthError) as excinfo:
            ctx.complete_oauth_flow(flow, timeout=5)
        assert "access_denied" in str(excinfo.value)
        assert not ctx.has_valid_token()

    def _quiet_redirect(self, url):
        from urllib.error import HTTPError

        try:
            self.redirect(url)
        except HTTPError:
            pass

    def test_timeout(self, ctx):
        flow = ctx.start_oauth_flow(open_browser=False)
        with pytest.raises(AuthError, match="timed out"):
            ctx.complete_oauth_flow(flow, timeout=0.1)

    def test_superseded_flow_fails_as_auth_error(self, ctx):
        first = ctx.start_oauth_flow(open_browser=False)
        ctx.start_oauth_flow(open_browser=False)

        with pytest.raises(AuthError, match="superseded"):
            ctx.complete_oauth_flow(first, timeout=1)

    def test_shutdown_cancels_pending_flow(self, ctx):
        flow = ctx.start_oauth_flow(open_browser=False)
        ctx.listener.stop()

        with pytest.raises(AuthError, match="superseded"):
            ctx.complete_oauth_flow(flow, timeout=1)

    def test_code_exchanged_for_profile_that_started_flow(self, ctx, token_server):
        flow = ctx.start_oauth_flow(open_browser=False)
        assert "client_id=webcid" in flow.authorization_url
        ctx.select_config("cc")

        threading.Thread(target=self.redirect, args=(f"{flow.redirect_uri}?code=abc",)).start()
        ctx.complete_oauth_flow(flow, timeout=5)

        data = token_server.calls[-1][2]["data"]
        assert data["client_id"] == "webcid"
        assert data["client_secret"] == "websec"
        assert "web" in ctx.tokens
        assert "cc" not in ctx.tokens
        assert not ctx.has_valid_token()


class TestExecuteRest:
    @pytest.fixture
    def api(self, session_ctx, fake_http, response, token_json):
        def handler(method, url, **kwargs):
            if url.endswith("/services/oauth2/token"):
                return response(json_data=token_json())
            if method == "GET":
                return response(json_data={"Id": "001", "Name": "Acme"})
            return response(status_code=204)

        fake_http.handler = handler
        session_ctx.select_config("cc")
        return session_ctx

    def test_read_not_gated(self, api):
        with patch.object(api.license_gate, "check") as check:
            assert api.execute_rest("Account/001")["Name"] == "Acme"
        check.assert_not_called()

    def test_write_refused_without_license(self, api, fake_http):
        with pytest.raises(LicenseError) as excinfo:
            api.execute_rest("Account/001", "PATCH", {"Name": "New"})
        assert "No license found" in str(excinfo.value)
        assert not any(m == "PATCH" for m, _, _ in fake_http.calls)

    def test_write_allowed_with_license(self, api, fake_http):
        licensed = LicenseStatus(True, "Licensed.", organization="Acme")
        with patch.object(api.license_gate, "check", return_value=licensed):
            assert api.execute_rest("Account/001", "patch", {"Name": "New"}) is None
        method, url, kwargs = fake_http.calls[-1]
        assert method == "PATCH"
        assert kwargs["json"] == {"Name": "New"}

    def test_gate_checked_on_every_write(self, api):
        licensed = LicenseStatus(True, "Licensed.")
        with patch.object(api.license_gate, "check", return_value=licensed) as check:
            api.execute_rest("Account/001", "DELETE")
            api.execute_rest("Account/002", "DELETE")
        assert check.call_count == 2
