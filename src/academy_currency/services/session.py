"""Signed session tokens.

Tokens have the form ``base64url(payload).base64url(signature)`` where the
signature is HMAC-SHA256 over the encoded payload, keyed by the
application secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta

from academy_currency.domain.conversions import ConversionContext
from academy_currency.domain.session import SessionClaims
from academy_currency.logging_config import get_logger

logger = get_logger(__name__)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class SessionTokenService:
    def __init__(self, secret_key: str, expire_minutes: int = 60) -> None:
        self._key = secret_key.encode("utf-8")
        self.expire_minutes = expire_minutes

    def issue(
        self,
        user_id: str,
        tenant_id: str,
        role: str,
        email: str | None = None,
        expires_in: timedelta | None = None,
    ) -> str:
        """Create a signed token for a user of a tenant."""
        lifetime = expires_in or timedelta(minutes=self.expire_minutes)
        claims = SessionClaims(
            sub=user_id,
            tenant_id=tenant_id,
            role=role,
            email=email,
            exp=datetime.now(UTC) + lifetime,
        )
        payload = _b64encode(
            json.dumps(claims.to_dict(), separators=(",", ":")).encode("utf-8")
        )
        logger.debug("session_token_issued", user_id=user_id, tenant_id=tenant_id)
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str) -> SessionClaims | None:
        """Decode a token, returning None if it is malformed, tampered or expired."""
        try:
            payload, signature = token.split(".")
        except ValueError:
            return None
        expected = self._sign(payload).encode("utf-8")
        if not hmac.compare_digest(signature.encode("utf-8"), expected):
            logger.warning("session_token_bad_signature")
            return None
        try:
            claims = SessionClaims.from_dict(json.loads(_b64decode(payload)))
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
            return None
        if claims.is_expired:
            logger.debug("session_token_expired", user_id=claims.sub)
            return None
        return claims

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256).digest()
        return _b64encode(digest)


def context_from_claims(
    claims: SessionClaims,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ConversionContext:
    return ConversionContext(
        tenant_id=claims.tenant_id,
        user_id=claims.sub,
        role=claims.role,
        user_email=claims.email,
        ip_address=ip_address,
        user_agent=user_agent,
    )
