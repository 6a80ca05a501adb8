from __future__ import annotations

from typing import Any, List, Optional


class PlayforceError(RuntimeError):
    """Base class for every error raised by the session/query engine."""


class ConfigError(PlayforceError):
    """Raised when no profile is selected or the selected profile is unreadable."""


class ValidationError(PlayforceError):
    """Raised when a grant is missing fields it requires."""

    def __init__(self, missing: List[str], grant_type: str = "password"):
        self.missing = missing
        self.grant_type = grant_type
        super().__init__(
            f"Missing required fields for {grant_type} grant: " + ", ".join(missing)
        )


class UsageError(PlayforceError):
    """Programmatic misuse of the API."""


class AuthError(PlayforceError):
    """Provider rejected the credentials or the token exchange.

    ``body`` holds the provider's error payload verbatim.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class SessionExpiredError(AuthError):
    """The access token was rejected as invalid or expired."""


class NetworkError(PlayforceError):
    """Transport failure, including running out of callback ports."""


class LicenseError(PlayforceError):
    """A write operation was refused by the license gate."""


class ApiError(PlayforceError):
    """Error or unparsable response from the Salesforce REST API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(message)


class SOQLError(ApiError):
    pass


class RESTError(ApiError):
    pass
