# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Authentication API router — /auth/login, /auth/refresh, /auth/logout."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from ledgerguard.api.deps import AccessCore, get_core

from .errors import MalformedInput
from .guard import bearer_token
from .models import (
    ErrorBody,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
)

auth_router = APIRouter(prefix="/auth", tags=["auth"])

_ERRORS = {
    400: {"model": ErrorBody},
    401: {"model": ErrorBody},
    429: {"model": ErrorBody},
    500: {"model": ErrorBody},
}


@auth_router.post("/login", response_model=LoginResponse, responses=_ERRORS)
async def login(req: LoginRequest, core: AccessCore = Depends(get_core)):
    """Authenticate with identity + secret, get access + renewal tokens."""
    issued = await core.sessions.login(req.identity, req.secret)
    return LoginResponse(
        access_token=issued.access_token,
        renewal_token=issued.renewal_token,
        role=issued.role,
        expires_in_seconds=issued.expires_in_seconds,
    )


@auth_router.post("/refresh", response_model=RefreshResponse, responses=_ERRORS)
async def refresh(req: RefreshRequest, core: AccessCore = Depends(get_core)):
    """Exchange a renewal token for a fresh access token."""
    renewed = await core.sessions.renew(req.renewal_token)
    return RefreshResponse(access_token=renewed.access_token, role=renewed.role)


@auth_router.post(
    "/logout",
    response_model=MessageResponse,
    responses=_ERRORS,
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": LogoutRequest.model_json_schema()}},
        }
    },
)
async def logout(
    request: Request,
    access_token: str = Depends(bearer_token),
    core: AccessCore = Depends(get_core),
):
    """Revoke the caller's renewal token.

    The body is parsed here rather than declared as a parameter so a
    missing bearer header is rejected before the body is looked at.
    """
    try:
        req = LogoutRequest.model_validate_json(await request.body())
    except ValidationError:
        raise MalformedInput() from None
    await core.sessions.revoke(access_token, req.renewal_token)
    return MessageResponse(message="renewal token revoked successfully")
