# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Single authenticate-then-authorize stage for protected routes.

``authorize`` is the pure decision; ``require_roles`` wraps it as a
FastAPI dependency that hands the verified ``Caller`` to the handler as
a parameter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import Forbidden, TokenError, Unauthenticated
from .jwt_handler import TokenCodec
from .models import Role, TokenKind

_bearer_scheme = HTTPBearer(auto_error=False)


class AuthOutcome(str, Enum):
    OK = "ok"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Caller:
    """Verified identity of the current request."""

    subject: str
    role: Role


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    caller: Optional[Caller] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.OK


def authorize(token: Optional[str], allowed_roles: Iterable[Role], codec: TokenCodec) -> AuthResult:
    """Verify an access token and check its role against ``allowed_roles``."""
    if not token:
        return AuthResult(AuthOutcome.UNAUTHENTICATED, reason="missing authorization header")
    try:
        claims = codec.verify(token, kind=TokenKind.ACCESS)
    except TokenError:
        return AuthResult(AuthOutcome.UNAUTHENTICATED, reason="invalid or expired token")

    caller = Caller(subject=claims.subject, role=claims.role)
    if claims.role not in frozenset(allowed_roles):
        return AuthResult(AuthOutcome.FORBIDDEN, caller=caller, reason="forbidden - insufficient permissions")
    return AuthResult(AuthOutcome.OK, caller=caller)


async def bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """FastAPI dependency — the raw bearer string, 401 when absent or not Bearer."""
    if not credentials or not credentials.credentials:
        raise Unauthenticated("missing authorization header")
    return credentials.credentials


def require_roles(*roles: Role):
    """Build a dependency that admits only access tokens carrying one of ``roles``."""
    allowed = frozenset(Role(r) for r in roles)

    async def dependency(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    ) -> Caller:
        codec: TokenCodec = request.app.state.core.codec
        token = credentials.credentials if credentials else None
        result = authorize(token, allowed, codec)
        if result.outcome is AuthOutcome.UNAUTHENTICATED:
            raise Unauthenticated(result.reason)
        if result.outcome is AuthOutcome.FORBIDDEN:
            raise Forbidden(result.reason)
        return result.caller

    return dependency
