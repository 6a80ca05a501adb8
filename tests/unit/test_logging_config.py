import logging

import pytest

from playforce.logging_config import SecretRedactingFilter, configure_logging, redact


def test_configure_logging_levels(caplog):
    # None: keep default WARNING (>=20)
    configure_logging(None)
    logger = logging.getLogger("playforce.test")
    logger.warning("warn")
    assert any("warn" in rec.message for rec in caplog.records)

    caplog.clear()
    configure_logging(logging.DEBUG)
    logger.debug("dbg")
    assert any("dbg" in rec.message for rec in caplog.records)


def test_urllib3_connection_logger_quietened():
    configure_logging(logging.DEBUG)
    assert logging.getLogger("urllib3.connection").level == logging.ERROR


@pytest.mark.parametrize(
    "text, secret",
    [
        ("Authorization: Bearer 00DTOKEN-1234567890", "00DTOKEN-1234567890"),
        ('{"access_token": "00Dabc!def", "instance_url": "https://x"}', "00Dabc!def"),
        ("{'client_secret': 'csec', 'client_id': 'cid'}", "csec"),
        ("grant_type=password&username=u&password=hunter2", "hunter2"),
    ],
)
def test_redact(text, secret):
    cleaned = redact(text)
    assert secret not in cleaned
    assert "***" in cleaned


def test_redact_leaves_plain_text():
    text = "Authenticating profile 'pw' using password grant"
    assert redact(text) == text


def test_filter_rewrites_formatted_message():
    record = logging.LogRecord(
        "playforce.auth",
        logging.ERROR,
        __file__,
        1,
        "Authentication failed (%s): %s",
        (400, {"client_secret": "csec"}),
        None,
    )
    assert SecretRedactingFilter().filter(record)
    assert "csec" not in record.getMessage()
    assert record.getMessage().startswith("Authentication failed (400)")


def test_configure_logging_installs_filter_once():
    configure_logging(logging.INFO)
    configure_logging(logging.INFO)
    for handler in logging.getLogger().handlers:
        filters = [f for f in handler.filters if isinstance(f, SecretRedactingFilter)]
        assert len(filters) == 1
