# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Periodic retention sweep: expired renewal records and orphaned rate windows."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ledgerguard.storage.base import AccessStore

logger = logging.getLogger("ledgerguard.sweeper")

SWEEP_INTERVAL = 60 * 60  # hourly
RATE_WINDOW_RETENTION = 24 * 60 * 60


@dataclass(frozen=True)
class SweepReport:
    """Rows removed per action; None when that action failed."""

    expired_renewals: Optional[int]
    stale_rate_windows: Optional[int]


class RetentionSweeper:
    """Runs both cleanup actions on a single background timer.

    Each action is its own short store call. A failing action is logged
    and does not stop the other one or the timer.
    """

    def __init__(
        self,
        store: AccessStore,
        *,
        interval: float = SWEEP_INTERVAL,
        rate_retention: float = RATE_WINDOW_RETENTION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._interval = interval
        self._rate_retention = rate_retention
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> SweepReport:
        now = self._clock()

        expired: Optional[int] = None
        try:
            expired = await self._store.delete_expired_renewal_tokens(now)
        except Exception:
            logger.exception("Failed to clean up expired renewal tokens")

        stale: Optional[int] = None
        try:
            stale = await self._store.delete_stale_rate_windows(now - self._rate_retention)
        except Exception:
            logger.exception("Failed to clean up rate window rows")

        if expired or stale:
            logger.info(
                "Retention sweep removed %s renewal token(s), %s rate window(s)",
                expired, stale,
            )
        return SweepReport(expired_renewals=expired, stale_rate_windows=stale)

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="retention-sweeper")
        logger.info("Retention sweeper started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.sweep_once()
