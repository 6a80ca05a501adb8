import json

import pytest

from playforce.config_store import ConfigStore
from playforce.session import SessionContext

INSTANCE_URL = "https://example.my.salesforce.com"
LOGIN_URL = "https://login.example.com"


class DummyResponse:
    def __init__(self, *, status_code=200, json_data=None, text=None):
        self.status_code = status_code
        self._json_data = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        if self._json_data is None:
            raise ValueError("No JSON body")
        return self._json_data


class FakeHTTP:
    """
    Stand-in for requests.Session.

    ``handler(method, url, **kwargs)`` returns a DummyResponse; every call is
    recorded in ``calls`` as (method, url, kwargs).
    """

    def __init__(self, handler=None):
        self.handler = handler
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def close(self):
        self.closed = True

    def urls(self, method=None):
        return [u for m, u, _ in self.calls if method is None or m == method]


def token_payload(access_token="00DTOKEN-1234567890", instance_url=INSTANCE_URL):
    return {
        "access_token": access_token,
        "instance_url": instance_url,
        "token_type": "Bearer",
        "issued_at": "1700000000000",
    }


@pytest.fixture
def config_dir(tmp_path):
    d = tmp_path / "configs"
    d.mkdir()
    (d / "cc.json").write_text(
        json.dumps(
            {
                "login_url": LOGIN_URL + "/",
                "client_id": "cid",
                "client_secret": "csec",
            }
        )
    )
    (d / "pw.json").write_text(
        json.dumps(
            {
                "login_url": LOGIN_URL,
                "client_id": "cid",
                "client_secret": "csec",
                "username": "user@example.com",
                "password": "hunter2",
                "apiVersion": "v60.0",
            }
        )
    )
    (d / "web.json").write_text(
        json.dumps(
            {
                "login_url": LOGIN_URL,
                "client_id": "webcid",
                "client_secret": "websec",
                "grant_type": "authorization_code",
            }
        )
    )
    return d


@pytest.fixture
def fake_http():
    return FakeHTTP()


@pytest.fixture
def session_ctx(config_dir, fake_http, tmp_path):
    from playforce.license import LicenseGate

    ctx = SessionContext(
        ConfigStore(config_dir),
        license_gate=LicenseGate(tmp_path / "no-license.env"),
        http=fake_http,
    )
    yield ctx
    ctx.shutdown()


@pytest.fixture
def response():
    """Factory for DummyResponse objects."""
    return DummyResponse


@pytest.fixture
def token_json():
    return token_payload


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PLAYFORCE_LICENSE", "PLAYFORCE_LICENSE_FILE", "PLAYFORCE_CONFIG_DIR"):
        monkeypatch.delenv(name, raising=False)
