# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Ledgerguard structured logging.

Wraps stdlib logging with key=value context, redaction of credentials
and a JSON line format for security events (failed logins, revocations,
rate-limit denials, store outages).
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

# Patterns to redact from log context values
_SENSITIVE_PATTERNS = re.compile(
    r"(?:eyJ[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]*)"  # JWTs
    r"|(?:\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53})"                        # bcrypt hashes
)

_SENSITIVE_KEYS = frozenset({
    "password", "secret", "secret_hash", "token", "access_token",
    "renewal_token", "authorization", "credential", "jwt_secret",
})


def _redact_value(key: str, value: Any) -> Any:
    """Redact sensitive values in log context."""
    if isinstance(value, str):
        if key.lower() in _SENSITIVE_KEYS:
            return "[REDACTED]"
        if _SENSITIVE_PATTERNS.search(value):
            return _SENSITIVE_PATTERNS.sub("[REDACTED]", value)
    return value


def pseudonymize_ip(ip: str) -> str:
    """Null the last IPv4 octet for log output."""
    parts = ip.split(".")
    if len(parts) == 4:
        parts[-1] = "0"
        return ".".join(parts)
    return ip


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup used by the server and the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class SecurityLogger:
    """Structured logger for access-control events.

    Every event goes to the ``ledgerguard.<name>`` logger; when a log
    directory is configured WARNING+ security events are additionally
    appended to ``security_events.jsonl``.
    """

    def __init__(
        self,
        name: str = "security",
        level: str = "INFO",
        log_dir: Optional[Path | str] = None,
        max_bytes: int = 10 * 1024 * 1024,  # 10 MB
        backup_count: int = 5,
    ) -> None:
        """Initialize the logger.

        Args:
            name: Component identifier, appended to the ``ledgerguard.`` prefix.
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            log_dir: Directory for log files. If None, only propagates to root handlers.
            max_bytes: Max size per log file before rotation (default 10 MB).
            backup_count: Number of rotated log files to keep (default 5).
        """
        self._name = name
        self._logger = logging.getLogger(f"ledgerguard.{name}")
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._security_file_handler: Optional[logging.Handler] = None

        if log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            fmt = logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            # Only add the file handler once per logger name
            if not any(isinstance(h, RotatingFileHandler) for h in self._logger.handlers):
                file_handler = RotatingFileHandler(
                    log_dir / f"ledgerguard-{name}.log",
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
                file_handler.setFormatter(fmt)
                self._logger.addHandler(file_handler)

            self._security_file_handler = RotatingFileHandler(
                log_dir / "security_events.jsonl",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            self._security_file_handler.setFormatter(logging.Formatter("%(message)s"))
            self._security_file_handler.setLevel(logging.WARNING)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(logging.ERROR, message, context)

    def security_event(self, event_type: str, severity: str, details: dict[str, Any]) -> None:
        """Log a structured security event.

        Args:
            event_type: e.g. 'login_failed', 'renewal_revoked', 'rate_limited'.
            severity: low, medium, high or critical.
            details: Event-specific detail fields (redacted before writing).
        """
        safe_details = {k: _redact_value(k, v) for k, v in details.items()}

        event = {
            "event_id": str(uuid.uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "component": self._name,
            "event_type": event_type,
            "severity": severity.upper(),
            **safe_details,
        }
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL,
        }.get(severity.lower(), logging.WARNING)

        json_line = json.dumps(event, ensure_ascii=False, default=str)
        self._logger.log(level, json_line)

        if self._security_file_handler and level >= self._security_file_handler.level:
            record = logging.LogRecord(
                name="security", level=level, pathname="", lineno=0,
                msg=json_line, args=(), exc_info=None,
            )
            self._security_file_handler.emit(record)

    def _log(self, level: int, message: str, context: dict[str, Any]) -> None:
        """Append structured context with redaction."""
        if context:
            safe_ctx = {k: _redact_value(k, v) for k, v in context.items()}
            ctx_str = " ".join(f"{k}={v!r}" for k, v in safe_ctx.items())
            self._logger.log(level, "%s | %s", message, ctx_str)
        else:
            self._logger.log(level, message)
