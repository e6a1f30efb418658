from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from datetime import timedelta
from typing import Any, Optional

from reelscore.logging import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_TTL = timedelta(minutes=30)
REFRESH_TOKEN_BYTES = 64
MIN_SECRET_LENGTH = 32


class SignerConfigurationError(Exception):
    """The signing secret is missing or too short to issue tokens."""


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenIssuer:
    """Issues HS256 access tokens and opaque refresh tokens."""

    def __init__(
        self,
        secret: str | None,
        *,
        issuer: str,
        audience: str,
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
    ) -> None:
        if not secret:
            raise SignerConfigurationError("JWT_SECRET is not configured")
        if len(secret) < MIN_SECRET_LENGTH:
            raise SignerConfigurationError(
                f"JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters"
            )
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl

    def issue_access(self, username: str, role: str) -> str:
        now = int(time.time())
        payload = {
            "username": username,
            "role": role,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + int(self.access_ttl.total_seconds()),
            "token_type": "access",
        }
        return self._encode_jwt(payload)

    def issue_refresh(self) -> str:
        # No identity is embedded; the store maps the value to its owner.
        return secrets.token_bytes(REFRESH_TOKEN_BYTES).hex()

    def decode_access(self, token: str) -> Optional[dict[str, Any]]:
        payload = self._decode_jwt(token)
        if not payload or payload.get("token_type") != "access":
            return None
        return payload

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to avoid algorithm confusion.
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return None

        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            return None
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            return None
        try:
            exp_ts = float(payload.get("exp"))
        except (TypeError, ValueError):
            return None
        if exp_ts <= time.time():
            return None
        return payload
