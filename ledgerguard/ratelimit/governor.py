# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Request-rate governor backed by the shared store.

Each (client key, endpoint) pair owns at most one live window row. A
window opens with the first request and lasts ``window`` seconds; the
row is purged lazily by the next request that finds it expired.

When the store cannot complete the unit of work the governor admits the
request and reports the failure to the operational log only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from ledgerguard.core.logger import SecurityLogger, pseudonymize_ip
from ledgerguard.storage.base import AccessStore

logger = logging.getLogger("ledgerguard.ratelimit")

REQUESTS_PER_WINDOW = 60
WINDOW_SECONDS = 60


class Verdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class RateGovernor:
    """Sliding-window request counter keyed by client and endpoint."""

    def __init__(
        self,
        store: AccessStore,
        *,
        limit: int = REQUESTS_PER_WINDOW,
        window: int = WINDOW_SECONDS,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        security_log: Optional[SecurityLogger] = None,
    ) -> None:
        self._store = store
        self._limit = limit
        self._window = window
        self._timeout = timeout
        self._clock = clock
        self._security_log = security_log or SecurityLogger(name="ratelimit")

    @property
    def window(self) -> int:
        return self._window

    async def admit(self, client_key: str, endpoint: str) -> Verdict:
        """Count this request and decide whether it may proceed."""
        try:
            if self._timeout is not None:
                count = await asyncio.wait_for(
                    self._count_request(client_key, endpoint), timeout=self._timeout
                )
            else:
                count = await self._count_request(client_key, endpoint)
        except asyncio.TimeoutError:
            logger.error(
                "Rate limit check timed out after %.1fs for %s, admitting",
                self._timeout, endpoint,
            )
            return Verdict.ALLOW
        except Exception:
            # Fail open: the limiter must not take the service down with the store
            logger.exception("Rate limit check failed for %s, admitting", endpoint)
            return Verdict.ALLOW

        if count > self._limit:
            self._security_log.security_event(
                "rate_limited",
                "medium",
                {
                    "client": pseudonymize_ip(client_key),
                    "endpoint": endpoint,
                    "count": count,
                    "limit": self._limit,
                },
            )
            return Verdict.DENY
        return Verdict.ALLOW

    async def _count_request(self, client_key: str, endpoint: str) -> int:
        now = self._clock()
        cutoff = now - self._window
        async with self._store.rate_window(client_key, endpoint) as tx:
            await tx.purge(cutoff)
            if not await tx.increment(cutoff):
                await tx.insert(now)
            return await tx.count()
