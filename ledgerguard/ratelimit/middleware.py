# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""HTTP hook that runs every request through the rate governor before routing."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ledgerguard.auth.errors import RateExceeded
from ledgerguard.auth.models import ErrorBody

from .governor import RateGovernor, Verdict

logger = logging.getLogger("ledgerguard.ratelimit")

# Paths that bypass rate limiting
EXEMPT_PATHS = {"/health"}

_Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_trusted_proxies(entries: Iterable[str]) -> list[_Network]:
    """Parse IPs/CIDRs, skipping (and logging) invalid entries."""
    networks: list[_Network] = []
    for entry in entries:
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Invalid trusted proxy entry: %s", entry)
    return networks


def _is_trusted_proxy(ip: str, trusted: list[_Network]) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(addr in net for net in trusted)


def client_key(
    request: Request,
    trusted_proxies: list[_Network] | None = None,
    trust_forwarded_for: bool = True,
) -> str:
    """Derive the rate-limit identity of the caller.

    First hop of X-Forwarded-For wins, then X-Real-IP, then the transport
    peer. With trusted proxies configured the headers only count when the
    peer is one of them. Clients that reach the service directly can still
    forge the headers when ``trust_forwarded_for`` is on without a proxy list.
    """
    peer = request.client.host if request.client else "unknown"
    if not trust_forwarded_for:
        return peer
    if trusted_proxies and not _is_trusted_proxy(peer, trusted_proxies):
        return peer

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return peer


def endpoint_key(request: Request) -> str:
    return f"{request.method} {request.url.path}"


def rate_limited_response(retry_after: int = 60) -> JSONResponse:
    error = RateExceeded(retry_after=retry_after)
    return JSONResponse(
        status_code=error.status_code,
        content=ErrorBody(error=error.message).model_dump(),
        headers=error.headers,
    )


def install_rate_limit(
    app: FastAPI,
    *,
    trusted_proxies: Iterable[str] = (),
    trust_forwarded_for: bool = True,
) -> None:
    """Register the rate governor as an HTTP middleware on ``app``.

    The governor is looked up on ``app.state.core`` per request because it
    is only built once the lifespan has opened the store.
    """
    networks = parse_trusted_proxies(trusted_proxies)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        governor: RateGovernor = request.app.state.core.governor
        key = client_key(request, networks, trust_forwarded_for)
        verdict = await governor.admit(key, endpoint_key(request))
        if verdict is Verdict.DENY:
            return rate_limited_response(retry_after=governor.window)
        return await call_next(request)
