# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Ledgerguard API server.

Wires the token codec, session manager, rate governor and retention
sweeper around the shared store, and mounts the auth and ledger routers.

Run with: uvicorn ledgerguard.api.server:app  (install the ``serve`` extra)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ledgerguard.auth.errors import AccessError, MalformedInput
from ledgerguard.auth.jwt_handler import TokenCodec
from ledgerguard.auth.models import ErrorBody
from ledgerguard.auth.router import auth_router
from ledgerguard.auth.session import SessionManager
from ledgerguard.core.config import LedgerConfig, Settings
from ledgerguard.core.logger import SecurityLogger, configure_logging
from ledgerguard.ledger.router import ledger_router
from ledgerguard.maintenance.sweeper import RetentionSweeper
from ledgerguard.ratelimit.governor import RateGovernor
from ledgerguard.ratelimit.middleware import install_rate_limit
from ledgerguard.storage.base import AccessStore
from ledgerguard.storage.memory import MemoryStore

from .deps import AccessCore

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

logger = logging.getLogger("ledgerguard.api")


async def open_store(settings: Settings) -> AccessStore:
    """PostgreSQL when a DB URL is configured, otherwise the in-memory dev store."""
    if not settings.db_url:
        logger.warning(
            "No LEDGER_DB_URL set — using in-memory store (dev mode, not shared between processes)"
        )
        return MemoryStore()
    from ledgerguard.storage.postgres import PostgresStore

    store = PostgresStore(settings.db_url)
    await store.connect()
    return store


def build_core(settings: Settings, store: AccessStore) -> AccessCore:
    security_log = SecurityLogger(name="security", level=settings.log_level, log_dir=settings.log_dir)
    codec = TokenCodec(settings.jwt_secret)
    return AccessCore(
        store=store,
        codec=codec,
        sessions=SessionManager(
            store,
            codec,
            access_ttl=settings.access_ttl,
            renewal_ttl=settings.renewal_ttl,
            bcrypt_rounds=settings.bcrypt_rounds,
            security_log=security_log,
        ),
        governor=RateGovernor(
            store,
            limit=settings.rate_limit,
            window=settings.rate_window,
            timeout=settings.rate_timeout,
            security_log=security_log,
        ),
        sweeper=RetentionSweeper(
            store,
            interval=settings.sweep_interval,
            rate_retention=settings.rate_retention,
        ),
    )


def create_app(settings: Optional[Settings] = None, store: Optional[AccessStore] = None) -> FastAPI:
    """Application factory.

    Args:
        settings: Typed settings; loaded from config/default.yaml + env when omitted.
        store: Pre-built store (tests); opened from settings when omitted.
    """
    if settings is None:
        load_dotenv(PROJECT_ROOT / ".env")
        settings = LedgerConfig().settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: open the store, build the core, start the sweeper."""
        active_store = store if store is not None else await open_store(settings)
        core = build_core(settings, active_store)
        app.state.core = core
        core.sweeper.start()
        logger.info("Ledgerguard core initialized")
        try:
            yield
        finally:
            await core.sweeper.stop()
            if store is None:
                await active_store.close()

    app = FastAPI(
        title="Ledgerguard API",
        description="Access-control core for the ledger service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(auth_router)
    app.include_router(ledger_router)

    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError):
        if exc.status_code >= 500:
            logger.error(
                "Internal error on %s %s: %s",
                request.method, request.url.path, getattr(exc, "detail", "") or exc,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorBody(error=exc.message).model_dump(),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = MalformedInput()
        logger.info("Malformed request on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=error.status_code,
            content=ErrorBody(error=error.message).model_dump(),
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # Wraps the routers: every request is counted before it is dispatched
    install_rate_limit(
        app,
        trusted_proxies=settings.trusted_proxies,
        trust_forwarded_for=settings.trust_forwarded_for,
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response

    return app


def _default_app() -> FastAPI:
    load_dotenv(PROJECT_ROOT / ".env")
    settings = LedgerConfig().settings()
    configure_logging(settings.log_level)
    return create_app(settings)


app = _default_app()
