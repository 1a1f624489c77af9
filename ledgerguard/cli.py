# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Ledgerguard CLI — principal provisioning.

Commands:
  ledgerguard hash-secret                      Print a bcrypt hash for a secret
  ledgerguard create-principal IDENTITY --role Register a principal in the configured store
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

from ledgerguard.auth.errors import StoreUnavailable
from ledgerguard.auth.models import Role
from ledgerguard.auth.password import hash_secret
from ledgerguard.core.config import LedgerConfig
from ledgerguard.core.logger import configure_logging

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _err(msg: str) -> None:
    print(f"  [!] {msg}", file=sys.stderr)


def _read_secret() -> str:
    _getpass = getpass.getpass if sys.stdin.isatty() else input
    secret = _getpass("  Secret: ")
    if sys.stdin.isatty() and getpass.getpass("  Repeat: ") != secret:
        raise ValueError("Secrets do not match")
    return secret


def cmd_hash_secret(args: argparse.Namespace) -> int:
    try:
        print(hash_secret(_read_secret(), rounds=args.rounds))
    except ValueError as e:
        _err(str(e))
        return 1
    return 0


async def _create_principal(db_url: str, identity: str, secret_hash: str, role: Role):
    from ledgerguard.storage.postgres import PostgresStore

    store = PostgresStore(db_url, max_size=1)
    await store.connect()
    try:
        return await store.create_principal(identity, secret_hash, role, created_at=time.time())
    finally:
        await store.close()


def cmd_create_principal(args: argparse.Namespace) -> int:
    try:
        settings = LedgerConfig(args.config).settings()
    except ValueError as e:
        _err(f"Invalid configuration: {e}")
        return 1
    if not settings.db_url:
        _err("LEDGER_DB_URL is not set, nothing to provision into")
        return 1
    try:
        secret_hash = hash_secret(_read_secret(), rounds=settings.bcrypt_rounds)
        principal = asyncio.run(
            _create_principal(settings.db_url, args.identity, secret_hash, Role(args.role))
        )
    except ValueError as e:
        _err(str(e))
        return 1
    except StoreUnavailable as e:
        _err(f"Store unavailable: {e.detail}")
        return 1
    print(f"  Created {principal.identity} ({principal.role.value}) id={principal.id}")
    return 0


# ─── CLI Entry Point ──────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    load_dotenv(_PROJECT_ROOT / ".env")
    configure_logging("WARNING")

    parser = argparse.ArgumentParser(
        prog="ledgerguard",
        description="Ledgerguard — principal provisioning",
    )
    parser.add_argument(
        "--config", default=str(_PROJECT_ROOT / "config" / "default.yaml"),
        help="Path to the YAML config",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_hash = sub.add_parser("hash-secret", help="Print a bcrypt hash for a secret")
    p_hash.add_argument("--rounds", type=int, default=12, help="bcrypt cost factor (default: 12)")

    p_create = sub.add_parser("create-principal", help="Register a principal")
    p_create.add_argument("identity", help="Login identity")
    p_create.add_argument(
        "--role", choices=[r.value for r in Role], default=Role.VIEWER.value,
        help="Role (default: viewer)",
    )

    args = parser.parse_args(argv)

    commands = {
        "hash-secret": cmd_hash_secret,
        "create-principal": cmd_create_principal,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
