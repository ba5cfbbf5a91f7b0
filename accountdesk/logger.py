"""
Structured JSON Logging Module.

Every service in the account core receives a ``StructuredLogger`` through
its constructor.  Records are emitted as one JSON object per line so that
account switches, token rotations and config refreshes can be traced
after the fact without ever writing session secrets to disk: any
``extra`` field whose name looks like a credential is masked.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

_REDACTED: str = "***"

# Substrings that mark an ``extra`` key as sensitive.
_SENSITIVE_KEY_PARTS: tuple[str, ...] = ("token", "password", "cookie", "secret", "code")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


class JSONFormatter(logging.Formatter):
    """Render a ``LogRecord`` as a single JSON object.

    Keys: ``timestamp`` (ISO-8601, UTC), ``level``, ``logger_name``,
    ``message``, plus ``extra`` for caller-supplied context and
    ``exception`` when traceback information is attached.
    """

    # Attributes every LogRecord carries; anything else came from ``extra``.
    _RESERVED: frozenset[str] = frozenset(
        vars(logging.makeLogRecord({})).keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: _REDACTED if _is_sensitive(key) else str(value)
            for key, value in vars(record).items()
            if key not in self._RESERVED
        }
        if context:
            payload["extra"] = context

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            payload["exception"] = record.exc_text

        return json.dumps(payload, ensure_ascii=False)


def _file_handler(
    log_file: str,
    max_bytes: int,
    backup_count: int,
) -> RotatingFileHandler:
    """Build the rotating file handler, creating the log directory first.

    Raises
    ------
    OSError
        If the directory or the file cannot be created.
    """
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


class StructuredLogger:
    """Injectable JSON logger.

    Wraps ``logging.getLogger(name)`` and attaches a stdout handler and a
    size-rotated file handler the first time a given *name* is used.
    Rotation limits and the default log file come from ``AppConfig``.

    Usage::

        log = StructuredLogger(name="accountdesk.accounts")
        log.info("Activated account %s.", account_id)
    """

    def __init__(
        self,
        name: str = "accountdesk",
        level: int = logging.INFO,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Imported here: config validators log through the stdlib logger.
        from accountdesk.config import get_config
        cfg = get_config()

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target = log_file or cfg.LOG_FILE
        try:
            rotating = _file_handler(
                target,
                max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to console only.", target, exc,
            )
            return
        rotating.setLevel(level)
        rotating.setFormatter(formatter)
        self._logger.addHandler(rotating)

    @property
    def logger(self) -> logging.Logger:
        """The wrapped ``logging.Logger``."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "accountdesk") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name* with configured defaults."""
    return StructuredLogger(name=name)
