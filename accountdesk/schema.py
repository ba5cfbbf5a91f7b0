"""
Local SQLite Schema.

Single entry point, :func:`initialize_schema`, called once at startup
before any manager touches the database.  It brings a database of any
earlier version up to :data:`CURRENT_SCHEMA_VERSION`:

- version 0 (new file): every table in :data:`_TABLES` is created;
- version N: the upgrade steps registered in :data:`_UPGRADES` for
  versions above N are run in order.

Either path and the version bump commit together, so an interrupted
upgrade leaves the database at version N and is retried next launch.

To add version N+1, bump :data:`CURRENT_SCHEMA_VERSION`, update the DDL in
:data:`_TABLES`, and register an idempotent upgrade step under N+1.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from accountdesk.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 1

_VERSION_TABLE: str = """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_SECURE_ITEMS_TABLE: str = """
    CREATE TABLE IF NOT EXISTS secure_items (
        key TEXT PRIMARY KEY,
        encrypted_payload BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_APP_SETTINGS_TABLE: str = """
    CREATE TABLE IF NOT EXISTS app_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_AUDIT_LOG_TABLE: str = """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        details TEXT DEFAULT '{}',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_TABLES: dict[str, str] = {
    "schema_version": _VERSION_TABLE,
    "secure_items": _SECURE_ITEMS_TABLE,
    "app_settings": _APP_SETTINGS_TABLE,
    "audit_log": _AUDIT_LOG_TABLE,
}

UpgradeStep = Callable[[sqlite3.Connection, StructuredLogger], None]


# ---------------------------------------------------------------------------
# Version tracking
# ---------------------------------------------------------------------------

def _read_version(conn: sqlite3.Connection) -> int:
    """Return the recorded schema version, ``0`` for a new database."""
    conn.execute(_VERSION_TABLE)
    conn.commit()
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row is not None else 0


def _write_version(conn: sqlite3.Connection, version: int) -> None:
    """Record *version*.  Left uncommitted for the caller's transaction."""
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


# ---------------------------------------------------------------------------
# Upgrade steps
# ---------------------------------------------------------------------------

# Version -> step bringing the previous version up to it.  Empty while the
# schema is at its first version.
_UPGRADES: dict[int, UpgradeStep] = {}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create or upgrade the local database schema.  Idempotent.

    Raises
    ------
    sqlite3.Error
        If the upgrade fails.  The transaction is rolled back first.
    """
    current = _read_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Schema is up to date (version %d).", current)
        return

    try:
        if current == 0:
            for ddl in _TABLES.values():
                conn.execute(ddl)
            logger.info("Created %d tables.", len(_TABLES))
        else:
            for version in sorted(v for v in _UPGRADES if v > current):
                if version > CURRENT_SCHEMA_VERSION:
                    break
                logger.info("Upgrading schema to version %d.", version)
                _UPGRADES[version](conn, logger)
        _write_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Schema upgrade from version %d failed; rolled back.", current)
        raise

    logger.info("Schema at version %d.", CURRENT_SCHEMA_VERSION)
