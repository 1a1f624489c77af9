# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""In-memory store for development and tests (no LEDGER_DB_URL).

State lives in one process only, so it does not satisfy the shared-store
deployment model; the server logs a warning when it falls back to it.
Rate-window units of work take a per-key asyncio lock and work on a copy
of the row, which is written back only when the block exits cleanly.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator, Optional

from ledgerguard.auth.models import Principal, RenewalRecord, Role

from .base import LedgerEntry

_Key = tuple[str, str]


@dataclass
class _WindowRow:
    window_start: float
    request_count: int


class _MemoryRateWindow:
    """Copy-on-write view of one rate-window row."""

    def __init__(self, row: Optional[_WindowRow]) -> None:
        self.row = _WindowRow(row.window_start, row.request_count) if row else None

    async def purge(self, cutoff: float) -> None:
        if self.row is not None and self.row.window_start <= cutoff:
            self.row = None

    async def increment(self, cutoff: float) -> bool:
        if self.row is None or self.row.window_start <= cutoff:
            return False
        self.row.request_count += 1
        return True

    async def insert(self, window_start: float) -> None:
        self.row = _WindowRow(window_start=window_start, request_count=1)

    async def count(self) -> int:
        return self.row.request_count if self.row else 0


class MemoryStore:
    """Process-local implementation of ``AccessStore``."""

    def __init__(self) -> None:
        self._principals: dict[str, Principal] = {}
        self._renewals: dict[str, RenewalRecord] = {}  # token_hash -> record
        self._windows: dict[_Key, _WindowRow] = {}
        self._window_locks: dict[_Key, asyncio.Lock] = {}
        self._ledger: dict[int, LedgerEntry] = {}
        self._audit: list[dict] = []
        self._ledger_ids = itertools.count(1)

    # ── Principals ──────────────────────────────────────────────────────────

    async def create_principal(
        self, identity: str, secret_hash: str, role: Role, created_at: float
    ) -> Principal:
        if any(p.identity == identity for p in self._principals.values()):
            raise ValueError(f"identity already registered: {identity}")
        principal = Principal(
            id=str(uuid.uuid4()),
            identity=identity,
            secret_hash=secret_hash,
            role=Role(role),
            created_at=created_at,
        )
        self._principals[principal.id] = principal
        return principal

    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        return self._principals.get(principal_id)

    async def get_principal_by_identity(self, identity: str) -> Optional[Principal]:
        for principal in self._principals.values():
            if principal.identity == identity:
                return principal
        return None

    # ── Renewal tokens ──────────────────────────────────────────────────────

    async def save_renewal_token(self, record: RenewalRecord) -> None:
        if record.token_hash in self._renewals:
            raise ValueError("duplicate renewal token hash")
        self._renewals[record.token_hash] = record

    async def find_renewal_token(self, owner: str, token_hash: str) -> Optional[RenewalRecord]:
        record = self._renewals.get(token_hash)
        if record is None or record.owner != owner:
            return None
        return record

    async def delete_renewal_token(self, owner: str, token_hash: str) -> int:
        record = self._renewals.get(token_hash)
        if record is None or record.owner != owner:
            return 0
        del self._renewals[token_hash]
        return 1

    async def delete_expired_renewal_tokens(self, now: float) -> int:
        expired = [h for h, r in self._renewals.items() if r.expires_at < now]
        for token_hash in expired:
            del self._renewals[token_hash]
        return len(expired)

    # ── Rate windows ────────────────────────────────────────────────────────

    @asynccontextmanager
    async def rate_window(self, client_key: str, endpoint: str) -> AsyncIterator[_MemoryRateWindow]:
        key = (client_key, endpoint)
        lock = self._window_locks.setdefault(key, asyncio.Lock())
        async with lock:
            tx = _MemoryRateWindow(self._windows.get(key))
            yield tx
            # Only reached when the block did not raise
            if tx.row is None:
                self._windows.pop(key, None)
            else:
                self._windows[key] = tx.row

    async def delete_stale_rate_windows(self, before: float) -> int:
        stale = [k for k, row in self._windows.items() if row.window_start < before]
        for key in stale:
            del self._windows[key]
            lock = self._window_locks.get(key)
            if lock is not None and not lock.locked():
                del self._window_locks[key]
        return len(stale)

    # ── Ledger ──────────────────────────────────────────────────────────────

    async def create_ledger_entry(
        self, amount: Decimal, description: str, actor: str, created_at: float
    ) -> LedgerEntry:
        entry = LedgerEntry(
            id=next(self._ledger_ids),
            amount=amount,
            description=description,
            created_at=created_at,
        )
        self._ledger[entry.id] = entry
        self._audit.append({"ledger_id": entry.id, "actor": actor, "action": "INSERT"})
        return entry

    async def list_ledger_entries(self) -> list[LedgerEntry]:
        return [self._ledger[i] for i in sorted(self._ledger)]

    async def get_ledger_entry(self, entry_id: int) -> Optional[LedgerEntry]:
        return self._ledger.get(entry_id)

    async def close(self) -> None:
        return None
