# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Ledgerguard configuration loader.

Loads YAML defaults, applies environment overrides and hands out a
typed, frozen ``Settings`` snapshot to the application factory.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger("ledgerguard.config")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "default.yaml"

# Environment variable -> dotted config key
_ENV_OVERRIDES = {
    "LEDGER_JWT_SECRET": "auth.jwt_secret",
    "LEDGER_DB_URL": "storage.db_url",
    "LEDGER_LOG_LEVEL": "logging.level",
    "LEDGER_LOG_DIR": "logging.log_dir",
    "LEDGER_TRUSTED_PROXY": "ratelimit.trusted_proxies",
    "LEDGER_BCRYPT_ROUNDS": "auth.bcrypt_rounds",
}

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """Typed view of the configuration used to wire the service."""

    jwt_secret: str = ""
    access_ttl: int = 3600
    renewal_ttl: int = 7 * 86_400
    bcrypt_rounds: int = 12
    db_url: str = ""
    rate_limit: int = 60
    rate_window: int = 60
    rate_timeout: Optional[float] = None
    trust_forwarded_for: bool = True
    trusted_proxies: tuple[str, ...] = ()
    sweep_interval: int = 3600
    rate_retention: int = 86_400
    log_level: str = "INFO"
    log_dir: Optional[str] = None


class LedgerConfig:
    """Central configuration manager.

    Reads the YAML file, layers environment overrides on top and
    validates the result before it is used.
    """

    _REQUIRED_KEYS = {"auth", "ratelimit", "retention"}

    def __init__(
        self,
        config_path: str | Path = DEFAULT_CONFIG_PATH,
        environ: Optional[dict[str, str]] = None,
    ) -> None:
        """Load configuration from the given YAML file.

        Args:
            config_path: Path to the main configuration YAML.
            environ: Environment mapping for overrides (defaults to os.environ).
        """
        self._config_path = Path(config_path)
        self._environ = os.environ if environ is None else environ
        self._data: dict[str, Any] = {}
        self._file_loaded = False
        self._load()

    def _load(self) -> None:
        """Load the YAML config file into _data and apply env overrides."""
        self._file_loaded = self._config_path.exists()
        if self._file_loaded:
            raw = self._config_path.read_text(encoding="utf-8")
            self._data = yaml.safe_load(raw) or {}
        else:
            logger.warning("Config file not found: %s, using built-in defaults", self._config_path)
            self._data = {}
        for env_name, key in _ENV_OVERRIDES.items():
            value = self._environ.get(env_name)
            if value:
                self._set(key, value)

    def _set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        current = self._data
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a configuration value by dotted key path.

        Args:
            key: Dotted key path (e.g. 'ratelimit.requests_per_window').
            default: Fallback value if key is not found.

        Returns:
            The configuration value or the default.
        """
        current: Any = self._data
        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def reload(self) -> None:
        """Hot-reload configuration from disk.

        On validation failure the previous config is kept and an error logged.
        """
        old_data, old_loaded = self._data, self._file_loaded
        self._load()
        try:
            self.validate()
            logger.info("Configuration reloaded from %s", self._config_path)
        except ValueError as e:
            logger.error("Config reload failed validation: %s — keeping previous config", e)
            self._data, self._file_loaded = old_data, old_loaded

    def validate(self) -> bool:
        """Validate the current configuration.

        Returns:
            True if configuration is valid.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self._data:
            raise ValueError("Configuration is empty or not loaded")

        missing = self._REQUIRED_KEYS - set(self._data.keys())
        if missing:
            raise ValueError(f"Missing required config sections: {', '.join(sorted(missing))}")

        self._validate_values()
        return True

    def _validate_values(self) -> None:
        """Range and type checks for whichever values are present."""
        for key in (
            "auth.access_ttl_seconds",
            "auth.renewal_ttl_seconds",
            "ratelimit.requests_per_window",
            "ratelimit.window_seconds",
            "retention.sweep_interval_seconds",
            "retention.rate_window_retention_seconds",
        ):
            value = self._int(key)
            if value is not None and value <= 0:
                raise ValueError(f"{key} must be positive, got {value}")

        rounds = self._int("auth.bcrypt_rounds")
        if rounds is not None and not 4 <= rounds <= 31:
            raise ValueError(f"auth.bcrypt_rounds must be between 4 and 31, got {rounds}")

        log_level = str(self.get("logging.level", "INFO")).upper()
        if log_level not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid logging.level: {log_level!r}")

    def _int(self, key: str) -> Optional[int]:
        value = self.get(key)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {value!r}") from None

    def settings(self) -> Settings:
        """Validate and return a typed settings snapshot.

        Without a config file only the values that are present (env
        overrides) are checked; everything else falls back to the
        ``Settings`` defaults.
        """
        if self._file_loaded:
            self.validate()
        else:
            self._validate_values()
        defaults = Settings()

        proxies = self.get("ratelimit.trusted_proxies", [])
        if isinstance(proxies, str):
            proxies = [p.strip() for p in proxies.split(",") if p.strip()]

        timeout = self.get("ratelimit.store_timeout_seconds")

        return Settings(
            jwt_secret=str(self.get("auth.jwt_secret", "") or ""),
            access_ttl=self._int("auth.access_ttl_seconds") or defaults.access_ttl,
            renewal_ttl=self._int("auth.renewal_ttl_seconds") or defaults.renewal_ttl,
            bcrypt_rounds=self._int("auth.bcrypt_rounds") or defaults.bcrypt_rounds,
            db_url=str(self.get("storage.db_url", "") or ""),
            rate_limit=self._int("ratelimit.requests_per_window") or defaults.rate_limit,
            rate_window=self._int("ratelimit.window_seconds") or defaults.rate_window,
            rate_timeout=float(timeout) if timeout else None,
            trust_forwarded_for=bool(self.get("ratelimit.trust_forwarded_for", True)),
            trusted_proxies=tuple(proxies or ()),
            sweep_interval=self._int("retention.sweep_interval_seconds") or defaults.sweep_interval,
            rate_retention=(
                self._int("retention.rate_window_retention_seconds") or defaults.rate_retention
            ),
            log_level=str(self.get("logging.level", "INFO")).upper(),
            log_dir=self.get("logging.log_dir") or None,
        )
