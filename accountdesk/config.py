"""
Application Configuration.

Pydantic Settings model for the accountdesk core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Local database ---
    SQLITE_PATH: str = "accountdesk_local.db"

    # --- Secure store ---
    # Empty means ``~/.accountdesk_store_salt``.
    STORE_SALT_PATH: str = ""
    STORE_KDF_ITERATIONS: int = 600_000

    # --- Accounts ---
    SESSION_EXPIRY_LEEWAY_S: int = 30
    PERSIST_ON_MUTATION: bool = True

    # --- Region config cache ---
    CONFIG_REFRESH_INTERVAL_S: float = 24 * 3600.0

    # --- Logging ---
    LOG_FILE: str = "accountdesk.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_unusual_setup(self) -> "AppConfig":
        """Emit startup warnings for configurations worth a second look.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        and a disabled persistence policy means rotated tokens are lost
        on restart.
        """
        _log = logging.getLogger("accountdesk.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.PERSIST_ON_MUTATION:
            _log.warning(
                "PERSIST_ON_MUTATION is disabled; account sessions will "
                "not be written to the secure store."
            )

        return self

    @property
    def salt_path(self) -> Path:
        """Resolved location of the per-machine secure store salt."""
        if self.STORE_SALT_PATH:
            return Path(self.STORE_SALT_PATH)
        return Path.home() / ".accountdesk_store_salt"


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    Uses a check-lock-check pattern to avoid the lock overhead on the
    fast path while remaining thread-safe during first initialisation.

    Prefer direct constructor injection of ``AppConfig`` in new code;
    the logger relies on this factory for its file rotation settings.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
