# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Ledger API router — the protected record routes.

Writes are admin-only; reads are open to admin and viewer. The audit row
records the authenticated caller handed in by the guard.
"""

from __future__ import annotations

import time
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from ledgerguard.api.deps import AccessCore, get_core
from ledgerguard.auth.errors import NotFound
from ledgerguard.auth.guard import Caller, require_roles
from ledgerguard.auth.models import ErrorBody, Role
from ledgerguard.storage.base import LedgerEntry

ledger_router = APIRouter(prefix="/ledger", tags=["ledger"])

_ERRORS = {code: {"model": ErrorBody} for code in (400, 401, 403, 404, 429)}


class CreateEntryRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=512)

    @field_validator("description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description is required")
        return value


class EntryResponse(BaseModel):
    id: int
    amount: Decimal
    description: str
    created_at: float


class CreatedResponse(BaseModel):
    status: str = "created"
    id: int


def _to_response(entry: LedgerEntry) -> EntryResponse:
    return EntryResponse(
        id=entry.id,
        amount=entry.amount,
        description=entry.description,
        created_at=entry.created_at,
    )


@ledger_router.post("", status_code=201, response_model=CreatedResponse, responses=_ERRORS)
async def create_entry(
    req: CreateEntryRequest,
    caller: Caller = Depends(require_roles(Role.ADMIN)),
    core: AccessCore = Depends(get_core),
):
    entry = await core.store.create_ledger_entry(
        req.amount, req.description.strip(), actor=caller.subject, created_at=time.time()
    )
    return CreatedResponse(id=entry.id)


@ledger_router.get("", response_model=list[EntryResponse], responses=_ERRORS)
async def list_entries(
    _caller: Caller = Depends(require_roles(Role.ADMIN, Role.VIEWER)),
    core: AccessCore = Depends(get_core),
):
    return [_to_response(e) for e in await core.store.list_ledger_entries()]


@ledger_router.get("/{entry_id}", response_model=EntryResponse, responses=_ERRORS)
async def get_entry(
    entry_id: int,
    _caller: Caller = Depends(require_roles(Role.ADMIN, Role.VIEWER)),
    core: AccessCore = Depends(get_core),
):
    entry = await core.store.get_ledger_entry(entry_id)
    if entry is None:
        raise NotFound("ledger entry not found")
    return _to_response(entry)
