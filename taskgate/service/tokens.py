from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

from taskgate.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    iat: float
    exp: int
    iss: str


class TokenCodec:
    """Compact HS256 signed tokens carrying a subject and an expiry.

    Only ``alg == HS256`` is accepted, signatures are compared in constant
    time and ``decode`` returns None for every failure mode.
    """

    def __init__(self, secret: str, issuer: str) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret.encode()
        self.issuer = issuer

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def encode(self, subject: str, ttl_seconds: int, *, now: Optional[float] = None) -> str:
        issued_at = time.time() if now is None else now
        payload: dict[str, Any] = {
            "sub": subject,
            "iat": issued_at,
            "exp": int(issued_at + ttl_seconds),
            "iss": self.issuer,
        }
        header_enc = self._encode_segment(
            json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def decode(self, token: str, *, now: Optional[float] = None) -> Optional[TokenClaims]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("token_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("token_invalid_algorithm")
            return None

        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("token_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict) or payload.get("iss") != self.issuer:
            return None
        try:
            exp = int(payload["exp"])
            iat = float(payload.get("iat", 0))
            sub = str(payload["sub"])
        except (KeyError, TypeError, ValueError):
            return None
        current = time.time() if now is None else now
        if current >= exp:
            return None
        return TokenClaims(sub=sub, iat=iat, exp=exp, iss=self.issuer)
