# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Access-control error taxonomy.

``AccessError`` subclasses cross the trust boundary: their ``message`` is
what the caller sees, so it must stay generic. Detail goes to the logs.
``TokenError`` subclasses are internal codec outcomes that callers map
to ``Unauthenticated``.
"""

from __future__ import annotations

from typing import Optional


class AccessError(Exception):
    """Base class for errors rendered as ``{"error": message}`` responses."""

    status_code: int = 500
    default_message: str = "internal error"

    def __init__(self, message: Optional[str] = None, headers: Optional[dict[str, str]] = None) -> None:
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)


class MalformedInput(AccessError):
    status_code = 400
    default_message = "invalid request body"


class Unauthenticated(AccessError):
    status_code = 401
    default_message = "not authenticated"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AccessError):
    status_code = 403
    default_message = "forbidden - insufficient permissions"


class RateExceeded(AccessError):
    status_code = 429
    default_message = "rate limit exceeded - try again in 1 minute"

    def __init__(self, retry_after: int = 60) -> None:
        super().__init__(headers={"Retry-After": str(retry_after)})


class StoreUnavailable(AccessError):
    """The shared store could not complete an operation.

    The public message is fixed; the underlying cause is chained via
    ``raise ... from`` and only ever logged.
    """

    status_code = 500

    def __init__(self, detail: str = "") -> None:
        super().__init__()
        self.detail = detail


class NotFound(AccessError):
    status_code = 404
    default_message = "not found"


# === Token codec outcomes ===


class TokenError(Exception):
    """A bearer token failed verification."""


class InvalidSignature(TokenError):
    """Signature mismatch or unexpected signing algorithm."""


class Expired(TokenError):
    """The token's expiry has passed."""


class Malformed(TokenError):
    """Not a decodable token, or required claims are missing or invalid."""
