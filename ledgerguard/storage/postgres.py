# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""PostgreSQL store via asyncpg — the shared store all service instances use.

- ``connect()`` opens the pool and creates the schema, called once from the
  server lifespan.
- Rate-window units of work run in one transaction that first takes a
  transaction-scoped advisory lock on the (client key, endpoint) pair, so
  writers to the same key queue up while other keys proceed.
- Driver and network failures surface as ``StoreUnavailable``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional

import asyncpg

from ledgerguard.auth.errors import StoreUnavailable
from ledgerguard.auth.models import Principal, RenewalRecord, Role

from .base import LedgerEntry

logger = logging.getLogger("ledgerguard.storage")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS principals (
        id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        identity      TEXT UNIQUE NOT NULL,
        secret_hash   TEXT NOT NULL,
        role          TEXT NOT NULL CHECK (role IN ('admin', 'viewer')),
        created_at    DOUBLE PRECISION NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS renewal_tokens (
        id            BIGSERIAL PRIMARY KEY,
        owner_id      UUID NOT NULL REFERENCES principals(id) ON DELETE CASCADE,
        token_hash    TEXT UNIQUE NOT NULL,
        expires_at    DOUBLE PRECISION NOT NULL,
        created_at    DOUBLE PRECISION NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_renewal_tokens_expires ON renewal_tokens(expires_at)",
    """
    CREATE TABLE IF NOT EXISTS rate_windows (
        id             BIGSERIAL PRIMARY KEY,
        client_key     TEXT NOT NULL,
        endpoint       TEXT NOT NULL,
        window_start   DOUBLE PRECISION NOT NULL,
        request_count  INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_rate_windows_key
    ON rate_windows(client_key, endpoint, window_start)
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id            BIGSERIAL PRIMARY KEY,
        amount        NUMERIC(18, 2) NOT NULL,
        description   TEXT NOT NULL,
        created_at    DOUBLE PRECISION NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_audit (
        id            BIGSERIAL PRIMARY KEY,
        ledger_id     BIGINT NOT NULL REFERENCES ledger_entries(id),
        actor         TEXT NOT NULL,
        action        TEXT NOT NULL,
        created_at    DOUBLE PRECISION NOT NULL
    )
    """,
)

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


@asynccontextmanager
async def _translated(operation: str) -> AsyncIterator[None]:
    """Re-raise driver/network errors as StoreUnavailable."""
    try:
        yield
    except _STORE_ERRORS as exc:
        logger.error("[Store] %s failed: %s", operation, exc)
        raise StoreUnavailable(f"{operation}: {exc}") from exc


def _row_to_principal(row) -> Principal:
    return Principal(
        id=str(row["id"]),
        identity=row["identity"],
        secret_hash=row["secret_hash"],
        role=Role(row["role"]),
        created_at=row["created_at"],
    )


def _row_to_renewal(row) -> RenewalRecord:
    return RenewalRecord(
        owner=str(row["owner_id"]),
        token_hash=row["token_hash"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
    )


def _row_to_entry(row) -> LedgerEntry:
    return LedgerEntry(
        id=row["id"],
        amount=row["amount"],
        description=row["description"],
        created_at=row["created_at"],
    )


class _PgRateWindow:
    """Rate-window statements bound to one connection, transaction and key."""

    def __init__(self, conn, client_key: str, endpoint: str) -> None:
        self._conn = conn
        self._key = (client_key, endpoint)

    async def purge(self, cutoff: float) -> None:
        await self._conn.execute(
            """
            DELETE FROM rate_windows
            WHERE client_key = $1 AND endpoint = $2 AND window_start <= $3
            """,
            *self._key, cutoff,
        )

    async def increment(self, cutoff: float) -> bool:
        result = await self._conn.execute(
            """
            UPDATE rate_windows SET request_count = request_count + 1
            WHERE client_key = $1 AND endpoint = $2 AND window_start > $3
            """,
            *self._key, cutoff,
        )
        return result != "UPDATE 0"

    async def insert(self, window_start: float) -> None:
        await self._conn.execute(
            """
            INSERT INTO rate_windows (client_key, endpoint, window_start, request_count)
            VALUES ($1, $2, $3, 1)
            """,
            *self._key, window_start,
        )

    async def count(self) -> int:
        value = await self._conn.fetchval(
            """
            SELECT request_count FROM rate_windows
            WHERE client_key = $1 AND endpoint = $2
            ORDER BY window_start DESC LIMIT 1
            """,
            *self._key,
        )
        return value or 0


class PostgresStore:
    """``AccessStore`` backed by PostgreSQL."""

    def __init__(self, db_url: str, min_size: int = 1, max_size: int = 10) -> None:
        self._db_url = db_url
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """Open the pool and create the schema. Called once at startup."""
        async with _translated("connect"):
            self._pool = await asyncpg.create_pool(
                self._db_url, min_size=self._min_size, max_size=self._max_size
            )
            async with self._pool.acquire() as conn:
                for statement in _SCHEMA:
                    await conn.execute(statement)
        logger.info("[Store] PostgreSQL connected, schema ready")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise StoreUnavailable("pool not connected")
        return self._pool

    # ── Principals ──────────────────────────────────────────────────────────

    async def create_principal(
        self, identity: str, secret_hash: str, role: Role, created_at: float
    ) -> Principal:
        pool = self._require_pool()
        try:
            async with _translated("create_principal"), pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO principals (identity, secret_hash, role, created_at)
                    VALUES ($1, $2, $3, $4)
                    RETURNING *
                    """,
                    identity, secret_hash, Role(role).value, created_at,
                )
        except StoreUnavailable as exc:
            if isinstance(exc.__cause__, asyncpg.UniqueViolationError):
                raise ValueError(f"identity already registered: {identity}") from None
            raise
        return _row_to_principal(row)

    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        pool = self._require_pool()
        async with _translated("get_principal"), pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    "SELECT * FROM principals WHERE id = $1::uuid", principal_id
                )
            except asyncpg.DataError:
                # Not a UUID: no such principal
                return None
        return _row_to_principal(row) if row else None

    async def get_principal_by_identity(self, identity: str) -> Optional[Principal]:
        pool = self._require_pool()
        async with _translated("get_principal_by_identity"), pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM principals WHERE identity = $1", identity
            )
        return _row_to_principal(row) if row else None

    # ── Renewal tokens ──────────────────────────────────────────────────────

    async def save_renewal_token(self, record: RenewalRecord) -> None:
        pool = self._require_pool()
        async with _translated("save_renewal_token"), pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO renewal_tokens (owner_id, token_hash, expires_at, created_at)
                VALUES ($1::uuid, $2, $3, $4)
                """,
                record.owner, record.token_hash, record.expires_at, record.created_at,
            )

    async def find_renewal_token(self, owner: str, token_hash: str) -> Optional[RenewalRecord]:
        pool = self._require_pool()
        async with _translated("find_renewal_token"), pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    SELECT * FROM renewal_tokens
                    WHERE owner_id = $1::uuid AND token_hash = $2
                    """,
                    owner, token_hash,
                )
            except asyncpg.DataError:
                return None
        return _row_to_renewal(row) if row else None

    async def delete_renewal_token(self, owner: str, token_hash: str) -> int:
        pool = self._require_pool()
        async with _translated("delete_renewal_token"), pool.acquire() as conn:
            try:
                result = await conn.execute(
                    "DELETE FROM renewal_tokens WHERE owner_id = $1::uuid AND token_hash = $2",
                    owner, token_hash,
                )
            except asyncpg.DataError:
                return 0
        return int(result.split()[-1])

    async def delete_expired_renewal_tokens(self, now: float) -> int:
        pool = self._require_pool()
        async with _translated("delete_expired_renewal_tokens"), pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM renewal_tokens WHERE expires_at < $1", now
            )
        return int(result.split()[-1])

    # ── Rate windows ────────────────────────────────────────────────────────

    @asynccontextmanager
    async def rate_window(self, client_key: str, endpoint: str) -> AsyncIterator[_PgRateWindow]:
        pool = self._require_pool()
        async with _translated("rate_window"), pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtextextended($1, 0))",
                    f"{client_key}\x1f{endpoint}",
                )
                yield _PgRateWindow(conn, client_key, endpoint)

    async def delete_stale_rate_windows(self, before: float) -> int:
        pool = self._require_pool()
        async with _translated("delete_stale_rate_windows"), pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM rate_windows WHERE window_start < $1", before
            )
        return int(result.split()[-1])

    # ── Ledger ──────────────────────────────────────────────────────────────

    async def create_ledger_entry(
        self, amount: Decimal, description: str, actor: str, created_at: float
    ) -> LedgerEntry:
        pool = self._require_pool()
        async with _translated("create_ledger_entry"), pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO ledger_entries (amount, description, created_at)
                    VALUES ($1, $2, $3)
                    RETURNING *
                    """,
                    amount, description, created_at,
                )
                await conn.execute(
                    """
                    INSERT INTO ledger_audit (ledger_id, actor, action, created_at)
                    VALUES ($1, $2, 'INSERT', $3)
                    """,
                    row["id"], actor, created_at,
                )
        return _row_to_entry(row)

    async def list_ledger_entries(self) -> list[LedgerEntry]:
        pool = self._require_pool()
        async with _translated("list_ledger_entries"), pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM ledger_entries ORDER BY id")
        return [_row_to_entry(r) for r in rows]

    async def get_ledger_entry(self, entry_id: int) -> Optional[LedgerEntry]:
        pool = self._require_pool()
        async with _translated("get_ledger_entry"), pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM ledger_entries WHERE id = $1", entry_id)
        return _row_to_entry(row) if row else None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
