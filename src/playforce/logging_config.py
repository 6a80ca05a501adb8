"""Root logging setup for the CLI, with secret redaction on every handler."""

from __future__ import annotations

import logging
import re
from typing import Optional

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"

REDACTED = "***"

_SECRET_PATTERNS = [
    # Authorization headers
    re.compile(r"(Bearer\s+)[^\s'\",]+", re.IGNORECASE),
    # JSON bodies and dict reprs: "access_token": "..." / 'password': '...'
    re.compile(
        r"""(["']?(?:access_token|refresh_token|client_secret|password)["']?\s*[:=]\s*["']?)[^"'&,\s}]+""",
        re.IGNORECASE,
    ),
]


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Masks tokens, client secrets and passwords in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _install_redaction(handler: logging.Handler) -> None:
    if not any(isinstance(f, SecretRedactingFilter) for f in handler.filters):
        handler.addFilter(SecretRedactingFilter())


def configure_logging(level: Optional[int]) -> None:
    """Configure root logging once; safe to call multiple times."""
    lvl = level if level is not None else logging.WARNING
    root = logging.getLogger()

    if root.handlers:
        root.setLevel(lvl)
    else:
        logging.basicConfig(
            level=lvl,
            format=_DEFAULT_FMT,
            datefmt=_DEFAULT_DATEFMT,
        )

    # Handler filters see records propagated from every playforce/requests logger
    for handler in root.handlers:
        _install_redaction(handler)

    # urllib3 warns about every malformed header Salesforce sends back
    urllib3_conn_logger = logging.getLogger("urllib3.connection")
    if urllib3_conn_logger.level == logging.NOTSET or urllib3_conn_logger.level < logging.ERROR:
        urllib3_conn_logger.setLevel(logging.ERROR)
