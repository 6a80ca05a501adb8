"""Signed license check guarding write operations.

The license is a ``.env`` line ``PLAYFORCE_LICENSE=<base64 JSON>`` where the
JSON is ``{"data": {...}, "signature": "<base64>"}``. The signature is RSA
PKCS#1 v1.5 over SHA-256 of ``data`` serialized compactly, in its original key
order. The gate never raises; it reports a :class:`LicenseStatus`.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .env_loader import read_env_value

_logger = logging.getLogger(__name__)

LICENSE_KEY = "PLAYFORCE_LICENSE"
LICENSE_FILE_ENV = "PLAYFORCE_LICENSE_FILE"

REQUIRED_FIELDS = ("organization", "licenseeEmail", "startDateUTC")

PUBLIC_KEY_PEM = b"""-----BEGIN PUBLIC KEY-----
MIIBIjANBgkqhkiG9w0BAQEFAAOCAQ8AMIIBCgKCAQEAmSlXnn/37iNb3FFLu4y6
AWg9VQ9yOEnpP4InccS4cQn4MzXVLc3qiga154942Vc+jrre6QpP8H7DE6sbglur
iIfi67orRmBl3j1eeiF2iVOonzQY8OekwjsrgwBF8V5oB2FhM2q+tcZNZPlyLKx6
hGOlpKzcXx8RwK5LBc8k7MZvAvDdoDb/cHoh6jx9N5zuSf9I8rEl5IXebp6GKHZQ
Jv37fRmBUq3szrlxNeuLDyh0OQ0y10UgdC1qCTSCa1loN4xqFeSdeuV8cR8PL5Xz
JweOBj22Yuxufu1Cm1P337in50Yr+qOqB8d/mBSFlg3wID5ENqx/744jgNmEWHSi
7QIDAQAB
-----END PUBLIC KEY-----
"""


@dataclass
class LicenseStatus:
    licensed: bool
    message: str
    organization: Optional[str] = None
    licensee_email: Optional[str] = None
    tier: Optional[str] = None
    expires: Optional[datetime] = None
    is_paid: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "licensed": self.licensed,
            "message": self.message,
            "organization": self.organization,
            "licenseeEmail": self.licensee_email,
            "tier": self.tier,
            "expires": self.expires.isoformat() if self.expires else None,
            "isPaid": self.is_paid,
        }


def canonical_json(data: Any) -> bytes:
    """Serialize exactly as the signer did: compact, key order preserved."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def parse_utc(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def default_license_file() -> Path:
    env = os.getenv(LICENSE_FILE_ENV)
    return Path(env).expanduser() if env else Path.cwd() / ".env"


class LicenseGate:
    def __init__(
        self,
        license_file: Optional[Path] = None,
        *,
        public_key_pem: bytes = PUBLIC_KEY_PEM,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.license_file = Path(license_file) if license_file is not None else default_license_file()
        self._public_key_pem = public_key_pem
        self._clock = clock

    def with_file(self, license_file: Path) -> LicenseGate:
        """Same key and clock, reading the license from ``license_file``."""
        return LicenseGate(license_file, public_key_pem=self._public_key_pem, clock=self._clock)

    def _public_key(self) -> rsa.RSAPublicKey:
        key = serialization.load_pem_public_key(self._public_key_pem)
        if not isinstance(key, rsa.RSAPublicKey):
            raise TypeError("License public key must be an RSA key")
        return key

    def read_token(self) -> Optional[str]:
        return read_env_value(LICENSE_KEY, self.license_file)

    def check(self, token: Optional[str] = None) -> LicenseStatus:
        """Validate the license; re-read from the source unless ``token`` is given."""
        if token is None:
            token = self.read_token()
        if not token:
            return LicenseStatus(
                False,
                f"No license found. Add {LICENSE_KEY}=<license> to {self.license_file}.",
            )

        try:
            envelope = json.loads(base64.b64decode(token, validate=True))
            data = envelope["data"]
            signature = base64.b64decode(envelope["signature"], validate=True)
        except (binascii.Error, ValueError, TypeError, KeyError) as e:
            _logger.warning("License could not be decoded: %s", e)
            return LicenseStatus(False, "Invalid license format.")
        if not isinstance(data, dict):
            return LicenseStatus(False, "Invalid license format.")

        try:
            self._public_key().verify(
                signature, canonical_json(data), padding.PKCS1v15(), hashes.SHA256()
            )
        except InvalidSignature:
            _logger.warning("License signature mismatch")
            return LicenseStatus(False, "License signature is invalid.")

        missing = [k for k in REQUIRED_FIELDS if not data.get(k)]
        if missing:
            return LicenseStatus(False, "License is missing fields: " + ", ".join(missing))

        start = parse_utc(data.get("startDateUTC"))
        paid_end = parse_utc(data.get("paidEndDateUTC"))
        free_end = parse_utc(data.get("freeEndDateUTC"))
        if start is None or (paid_end is None and free_end is None):
            return LicenseStatus(False, "License dates are invalid.")

        info = dict(
            organization=data.get("organization"),
            licensee_email=data.get("licenseeEmail"),
            tier=data.get("tier"),
        )
        now = self._clock()

        if now < start:
            return LicenseStatus(
                False, f"License is not active until {start.date().isoformat()}.", **info
            )
        if paid_end is not None and now <= paid_end:
            return LicenseStatus(True, "Licensed.", expires=paid_end, is_paid=True, **info)
        if free_end is not None and now <= free_end:
            return LicenseStatus(True, "Licensed (free tier).", expires=free_end, is_paid=False, **info)

        last = max(d for d in (paid_end, free_end) if d is not None)
        return LicenseStatus(
            False, f"License expired on {last.date().isoformat()}.", expires=last, **info
        )
