# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Storage contract shared by the PostgreSQL and in-memory backends.

Three access-control relations (principals, renewal tokens, rate windows)
plus the ledger tables consumed by the CRUD routes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncContextManager, Optional, Protocol

from ledgerguard.auth.models import Principal, RenewalRecord, Role


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    amount: Decimal
    description: str
    created_at: float


class RateWindowTx(Protocol):
    """Unit of work over the rate-window row of one (client key, endpoint).

    Obtained from ``AccessStore.rate_window``; writers to the same key are
    serialized for the lifetime of the unit of work, and everything done
    through it commits or rolls back together.
    """

    async def purge(self, cutoff: float) -> None:
        """Delete the row if its window started at or before ``cutoff``."""

    async def increment(self, cutoff: float) -> bool:
        """Bump the count of a row whose window started after ``cutoff``.

        Returns False when there is no such live row.
        """

    async def insert(self, window_start: float) -> None:
        """Create the row with count 1."""

    async def count(self) -> int:
        """Current request count for the key (0 without a row)."""


class AccessStore(Protocol):
    """Durable store consumed by the session manager, governor and sweeper.

    Backends raise ``StoreUnavailable`` when the store cannot be reached.
    """

    # ── Principals ──────────────────────────────────────────────────────────

    async def create_principal(
        self, identity: str, secret_hash: str, role: Role, created_at: float
    ) -> Principal: ...

    async def get_principal(self, principal_id: str) -> Optional[Principal]: ...

    async def get_principal_by_identity(self, identity: str) -> Optional[Principal]: ...

    # ── Renewal tokens ──────────────────────────────────────────────────────

    async def save_renewal_token(self, record: RenewalRecord) -> None: ...

    async def find_renewal_token(self, owner: str, token_hash: str) -> Optional[RenewalRecord]: ...

    async def delete_renewal_token(self, owner: str, token_hash: str) -> int: ...

    async def delete_expired_renewal_tokens(self, now: float) -> int: ...

    # ── Rate windows ────────────────────────────────────────────────────────

    def rate_window(self, client_key: str, endpoint: str) -> AsyncContextManager[RateWindowTx]: ...

    async def delete_stale_rate_windows(self, before: float) -> int: ...

    # ── Ledger ──────────────────────────────────────────────────────────────

    async def create_ledger_entry(
        self, amount: Decimal, description: str, actor: str, created_at: float
    ) -> LedgerEntry: ...

    async def list_ledger_entries(self) -> list[LedgerEntry]: ...

    async def get_ledger_entry(self, entry_id: int) -> Optional[LedgerEntry]: ...

    async def close(self) -> None: ...
