"""
AccountDesk Entry Point.

Bootstraps the account core via constructor injection, initialises the
local SQLite schema, and prints a JSON status report of the persisted
account state.  Every subsystem is wired here; no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import json
import sys
import traceback
from pathlib import Path

from accountdesk.config import get_config
from accountdesk.database import DatabaseManager
from accountdesk.logger import StructuredLogger, get_logger
from accountdesk.schema import initialize_schema
from accountdesk.services import ManagerContainer, create_managers
from accountdesk.services.network import OfflineNetwork


def build_status(managers: ManagerContainer) -> dict[str, object]:
    """Summarise registry and config cache state for display."""
    registry = managers["session_registry"]
    config_cache = managers["config_cache"]
    active = registry.active_account

    cached_regions: dict[str, str | None] = {}
    for region in config_cache.configs():
        updated = config_cache.last_update(region)
        cached_regions[region.value] = updated.isoformat() if updated else None

    return {
        "stored_accounts": [str(account_id) for account_id in registry.stored_accounts],
        "active_account": str(active.id) if active is not None else None,
        "active_region": active.region.value if active is not None else None,
        "requires_action": registry.requires_action,
        "account_load_error": registry.account_load_error,
        "client_version": registry.client_version,
        "cached_regions": cached_regions,
    }


def main() -> None:
    """Application entry point: wire dependencies and report state."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting AccountDesk...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=Path(config.SQLITE_PATH),
        logger=StructuredLogger(name="database"),
    )

    # Ensure db.close() runs on unclean exit too; close() is idempotent.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Manager Container (single composition root)
    # ------------------------------------------------------------------
    managers = create_managers(
        db=db,
        config=config,
        network=OfflineNetwork(),
    )

    try:
        sys.stdout.write(json.dumps(build_status(managers), indent=2) + "\n")
    finally:
        db.close()
        logger.info("AccountDesk shut down.")


def _show_fatal_error(exc: BaseException) -> None:
    """Write a fatal error and its traceback to stderr."""
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        _show_fatal_error(exc)
        sys.exit(1)
