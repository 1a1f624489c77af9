# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Service container attached to ``app.state.core`` and its accessor dependency."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from ledgerguard.auth.jwt_handler import TokenCodec
from ledgerguard.auth.session import SessionManager
from ledgerguard.maintenance.sweeper import RetentionSweeper
from ledgerguard.ratelimit.governor import RateGovernor
from ledgerguard.storage.base import AccessStore


@dataclass
class AccessCore:
    store: AccessStore
    codec: TokenCodec
    sessions: SessionManager
    governor: RateGovernor
    sweeper: RetentionSweeper


def get_core(request: Request) -> AccessCore:
    return request.app.state.core
