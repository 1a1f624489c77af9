# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""JWT minting and verification for access and renewal tokens."""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from typing import Callable, Optional

import jwt

from .errors import Expired, InvalidSignature, Malformed
from .models import Role, TokenClaims, TokenKind

logger = logging.getLogger("ledgerguard.auth")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE = 60 * 60  # 1 hour in seconds
RENEWAL_TOKEN_EXPIRE = 7 * 24 * 60 * 60  # 7 days in seconds

_REQUIRED_CLAIMS = ["sub", "role", "type", "iat", "exp", "jti"]

Clock = Callable[[], float]


def digest(token: str) -> str:
    """SHA-256 hex digest of a bearer string. Only this form is ever persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """Mints and verifies HS256-signed tokens with a process-wide secret.

    Expiry is checked against the injected clock, not PyJWT's wall clock,
    so verification is reproducible in tests.
    """

    def __init__(self, secret: Optional[str] = None, clock: Clock = time.time) -> None:
        if not secret:
            secret = secrets.token_urlsafe(48)
            logger.warning("No JWT secret configured — generated an ephemeral one")
        self._secret = secret
        self._clock = clock

    def mint(self, subject: str, role: Role, kind: TokenKind, ttl: int) -> str:
        """Create a signed token valid for ``ttl`` seconds from now."""
        now = int(self._clock())
        payload = {
            "sub": subject,
            "role": Role(role).value,
            "type": TokenKind(kind).value,
            "iat": now,
            "exp": now + int(ttl),
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str, kind: Optional[TokenKind] = None) -> TokenClaims:
        """Verify a token and return its claims.

        Raises:
            InvalidSignature: bad signature or a signing algorithm other than HS256.
            Expired: ``exp`` is at or before the current clock reading.
            Malformed: undecodable token, missing/invalid claims, or wrong kind.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as exc:
            raise InvalidSignature(str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise Malformed(str(exc)) from exc

        claims = self._claims_from(payload)
        if kind is not None and claims.kind != kind:
            raise Malformed(f"expected {TokenKind(kind).value} token, got {claims.kind.value}")
        if claims.expires_at <= self._clock():
            raise Expired("token has expired")
        return claims

    @staticmethod
    def _claims_from(payload: dict) -> TokenClaims:
        try:
            return TokenClaims(
                subject=str(payload["sub"]),
                role=Role(payload["role"]),
                kind=TokenKind(payload["type"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                token_id=str(payload["jti"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise Malformed(f"invalid claims: {exc}") from exc
