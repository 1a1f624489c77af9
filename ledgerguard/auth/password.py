# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Principal secret hashing and verification with bcrypt (direct, no passlib)."""

import bcrypt

MIN_SECRET_LENGTH = 12
MAX_SECRET_BYTES = 72  # bcrypt ignores (or rejects) anything longer
DEFAULT_ROUNDS = 12


def hash_secret(plaintext: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a secret with a fresh salt at the given cost factor."""
    if len(plaintext) < MIN_SECRET_LENGTH:
        raise ValueError(f"Secret must be at least {MIN_SECRET_LENGTH} characters")
    encoded = plaintext.encode("utf-8")
    if len(encoded) > MAX_SECRET_BYTES:
        raise ValueError(f"Secret must be at most {MAX_SECRET_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_secret(plaintext: str, digest: str) -> bool:
    """Verify a secret against its bcrypt hash.

    Comparison is constant-time inside bcrypt. A malformed digest or an
    over-long secret is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
    except ValueError:
        return False
