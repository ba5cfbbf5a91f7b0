"""
Application Settings Service.

Read/write access to the ``app_settings`` key-value table in the local
SQLite database.  The session registry and the config cache each keep
one JSON record here::

    session_registry.state   -> RegistryState
    config_cache.stored      -> StoredConfigs

Reads never raise: a missing, unreadable or invalid record yields
``None`` and a log line, so a damaged settings row degrades to
"nothing cached" instead of blocking startup.
"""

from __future__ import annotations

from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

from accountdesk.database import DatabaseManager
from accountdesk.logger import StructuredLogger

M = TypeVar("M", bound=BaseModel)


class AppSettingsService:
    """Manages persistent JSON records in local SQLite.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager`` with active SQLite connection.
    logger:
        Structured logger instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    # ------------------------------------------------------------------
    # Generic key-value access
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Read a setting value by key.  Returns ``None`` if not found."""
        try:
            row = self._db.sqlite.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
            return row["value"] if row is not None else None
        except Exception as exc:
            self._logger.warning("Failed to read app_settings[%s]: %s", key, exc)
            return None

    def set(self, key: str, value: str) -> bool:
        """Upsert a setting value.  Returns ``True`` on success."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO app_settings (key, value)
                    VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value      = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                self._db.sqlite.commit()
            self._logger.debug("app_settings[%s] updated.", key)
            return True
        except Exception as exc:
            self._logger.error("Failed to write app_settings[%s]: %s", key, exc)
            return False

    # ------------------------------------------------------------------
    # Typed records
    # ------------------------------------------------------------------

    def get_model(self, key: str, model: type[M]) -> Optional[M]:
        """Read *key* and validate it as *model*.

        Returns ``None`` when the key is absent or the stored JSON does
        not validate (the error is logged).
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.warning(
                "app_settings[%s] is not a valid %s record: %s",
                key,
                model.__name__,
                exc,
            )
            return None

    def set_model(self, key: str, record: BaseModel) -> bool:
        """Serialize *record* to JSON and upsert it under *key*."""
        return self.set(key, record.model_dump_json())
