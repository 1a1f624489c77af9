# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Principal, token and wire models for authentication."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Closed set of principal roles."""

    ADMIN = "admin"
    VIEWER = "viewer"


class TokenKind(str, Enum):
    ACCESS = "access"
    RENEWAL = "renewal"


@dataclass(frozen=True)
class Principal:
    """A registered caller identity."""

    id: str
    identity: str
    secret_hash: str
    role: Role
    created_at: float


@dataclass(frozen=True)
class RenewalRecord:
    """Server-side trace of an issued renewal token. Only the digest is kept."""

    owner: str
    token_hash: str
    expires_at: float
    created_at: float


@dataclass(frozen=True)
class TokenClaims:
    """Verified content of a bearer token."""

    subject: str
    role: Role
    kind: TokenKind
    issued_at: int
    expires_at: int
    token_id: str


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    renewal_token: str
    role: Role
    expires_in_seconds: int


@dataclass(frozen=True)
class RenewedAccess:
    access_token: str
    role: Role


# === Request / response bodies ===


class LoginRequest(BaseModel):
    """Login request body."""

    identity: str = Field(..., min_length=1, max_length=128)
    secret: str = Field(..., min_length=1, max_length=256)


class LoginResponse(BaseModel):
    """Response after a successful login."""

    access_token: str
    renewal_token: str
    role: Role
    expires_in_seconds: int


class RefreshRequest(BaseModel):
    renewal_token: str = Field(..., min_length=1)


class RefreshResponse(BaseModel):
    access_token: str
    role: Role


class LogoutRequest(BaseModel):
    renewal_token: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    message: str


class ErrorBody(BaseModel):
    """Error response body. Never carries internal detail."""

    error: str
