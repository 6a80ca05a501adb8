from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

_logger = logging.getLogger(__name__)


@dataclass
class Token:
    """Credential returned by the Salesforce token endpoint."""

    access_token: str
    instance_url: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> Token:
        return cls(
            access_token=payload["access_token"],
            instance_url=payload["instance_url"].rstrip("/"),
            raw=dict(payload),
        )

    @property
    def preview(self) -> str:
        t = self.access_token
        return f"{t[:10]}...{t[-6:]}" if len(t) > 16 else "***"


class TokenCache:
    """In-memory tokens keyed by profile name. Nothing is written to disk."""

    def __init__(self) -> None:
        self._tokens: Dict[str, Token] = {}

    def get(self, profile_name: Optional[str]) -> Optional[Token]:
        if profile_name is None:
            return None
        return self._tokens.get(profile_name)

    def put(self, profile_name: str, token: Token) -> None:
        self._tokens[profile_name] = token
        _logger.debug("Token stored in memory for profile %r", profile_name)

    def discard(self, profile_name: str) -> None:
        self._tokens.pop(profile_name, None)

    def clear(self) -> None:
        self._tokens.clear()

    def __contains__(self, profile_name: object) -> bool:
        return profile_name in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
