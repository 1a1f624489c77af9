# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Login, renewal and revocation on top of the token codec and the store.

Renewal tokens are tracked server-side by SHA-256 digest. A renewal is
accepted only when the token verifies *and* its persisted record still
exists and is unexpired, so deleting the record revokes a token whose
signature is otherwise still good. Renewing does not retire the
presented renewal token.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from ledgerguard.core.logger import SecurityLogger
from ledgerguard.storage.base import AccessStore

from .errors import StoreUnavailable, TokenError, Unauthenticated
from .jwt_handler import ACCESS_TOKEN_EXPIRE, RENEWAL_TOKEN_EXPIRE, TokenCodec, digest
from .models import IssuedTokens, Principal, RenewalRecord, RenewedAccess, Role, TokenKind
from .password import DEFAULT_ROUNDS, check_secret, hash_secret

logger = logging.getLogger("ledgerguard.auth")

INVALID_CREDENTIALS = "invalid credentials"
INVALID_RENEWAL = "invalid or expired renewal token"
INVALID_ACCESS = "invalid or expired token"


class SessionManager:
    """Issues, renews and revokes credentials for registered principals."""

    def __init__(
        self,
        store: AccessStore,
        codec: TokenCodec,
        *,
        access_ttl: int = ACCESS_TOKEN_EXPIRE,
        renewal_ttl: int = RENEWAL_TOKEN_EXPIRE,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Callable[[], float] = time.time,
        security_log: Optional[SecurityLogger] = None,
    ) -> None:
        self._store = store
        self._codec = codec
        self._access_ttl = access_ttl
        self._renewal_ttl = renewal_ttl
        self._bcrypt_rounds = bcrypt_rounds
        self._clock = clock
        self._security_log = security_log or SecurityLogger(name="auth")
        # Checked against when the identity is unknown, so both failure
        # branches pay the same bcrypt cost
        self._dummy_hash = hash_secret(secrets.token_urlsafe(24), rounds=bcrypt_rounds)

    async def provision(self, identity: str, secret: str, role: Role) -> Principal:
        """Register a new principal (administrative path).

        Raises:
            ValueError: weak secret or identity already registered.
        """
        secret_hash = hash_secret(secret, rounds=self._bcrypt_rounds)
        principal = await self._store.create_principal(
            identity, secret_hash, Role(role), created_at=self._clock()
        )
        logger.info("Provisioned principal %s with role %s", principal.id, principal.role.value)
        return principal

    async def login(self, identity: str, secret: str) -> IssuedTokens:
        """Exchange identity + secret for an access and a renewal token.

        Unknown identity and wrong secret are indistinguishable to the caller.

        Raises:
            Unauthenticated: credentials rejected.
            StoreUnavailable: the store failed; surfaces as an internal error.
        """
        principal = await self._store.get_principal_by_identity(identity)

        if principal is None:
            check_secret(secret, self._dummy_hash)
            self._login_failed(identity, "unknown_identity")
            raise Unauthenticated(INVALID_CREDENTIALS)

        if not check_secret(secret, principal.secret_hash):
            self._login_failed(identity, "bad_secret")
            raise Unauthenticated(INVALID_CREDENTIALS)

        now = self._clock()
        access_token = self._codec.mint(principal.id, principal.role, TokenKind.ACCESS, self._access_ttl)
        renewal_token = self._codec.mint(principal.id, principal.role, TokenKind.RENEWAL, self._renewal_ttl)

        try:
            await self._store.save_renewal_token(
                RenewalRecord(
                    owner=principal.id,
                    token_hash=digest(renewal_token),
                    expires_at=now + self._renewal_ttl,
                    created_at=now,
                )
            )
        except ValueError as exc:
            logger.error("Could not persist renewal token for %s: %s", principal.id, exc)
            raise StoreUnavailable(str(exc)) from exc

        self._security_log.info("Login success", subject=principal.id, role=principal.role.value)
        return IssuedTokens(
            access_token=access_token,
            renewal_token=renewal_token,
            role=principal.role,
            expires_in_seconds=self._access_ttl,
        )

    async def renew(self, renewal_token: str) -> RenewedAccess:
        """Mint a fresh access token from a live renewal token.

        Raises:
            Unauthenticated: bad token, revoked or expired record, or principal gone.
        """
        try:
            claims = self._codec.verify(renewal_token, kind=TokenKind.RENEWAL)
        except TokenError as exc:
            logger.info("Renewal rejected: %s", exc)
            raise Unauthenticated(INVALID_RENEWAL) from None

        record = await self._store.find_renewal_token(claims.subject, digest(renewal_token))
        if record is None or record.expires_at <= self._clock():
            self._security_log.security_event(
                "renewal_rejected",
                "medium",
                {"subject": claims.subject, "reason": "revoked" if record is None else "expired"},
            )
            raise Unauthenticated(INVALID_RENEWAL)

        principal = await self._store.get_principal(claims.subject)
        if principal is None:
            raise Unauthenticated(INVALID_RENEWAL)

        access_token = self._codec.mint(principal.id, principal.role, TokenKind.ACCESS, self._access_ttl)
        return RenewedAccess(access_token=access_token, role=principal.role)

    async def revoke(self, access_token: str, renewal_token: str) -> int:
        """Delete the caller's own renewal record. Returns rows deleted (0 is fine).

        Raises:
            Unauthenticated: the access token does not verify.
        """
        try:
            claims = self._codec.verify(access_token, kind=TokenKind.ACCESS)
        except TokenError as exc:
            logger.info("Revocation rejected: %s", exc)
            raise Unauthenticated(INVALID_ACCESS) from None

        deleted = await self._store.delete_renewal_token(claims.subject, digest(renewal_token))
        self._security_log.security_event(
            "renewal_revoked", "low", {"subject": claims.subject, "deleted": deleted}
        )
        return deleted

    def _login_failed(self, identity: str, reason: str) -> None:
        self._security_log.security_event(
            "login_failed", "medium", {"identity": identity, "reason": reason}
        )
