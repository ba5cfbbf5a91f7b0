"""
Structured Audit Logging Utility.

Every account state change (added, activated, deactivated, cleared,
client version changed) is logged as a structured JSON object and,
when a connection is supplied, persisted to the ``audit_log`` table.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from accountdesk.logger import StructuredLogger

__all__ = ["AuditEvent", "log_audit_event", "persist_audit_event"]

# Flat scalars only; nested structures should be modelled explicitly.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def _build_event(
    action: str,
    entity_type: str,
    entity_id: str,
    details: Optional[dict[str, DetailValue]],
) -> AuditEvent:
    return AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    )


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    details: Optional[dict[str, DetailValue]] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> None:
    """Log a structured JSON audit event, with optional SQLite persistence.

    Always emits a structured JSON log line via *logger*.  When *conn* is
    provided, also writes the event to the ``audit_log`` table.  Errors
    from the table write are logged but never propagated; audit
    persistence must not break the calling operation.

    Args:
        logger: The logger instance to write to.
        action: What happened (e.g. ``"ADD_ACCOUNT"``, ``"ACTIVATE"``).
        entity_type: Type of entity affected (e.g. ``"Account"``).
        entity_id: Identifier of the affected entity.
        details: Optional additional context.
        conn: Optional SQLite connection for the ``audit_log`` table.
    """
    event = _build_event(action, entity_type, entity_id, details)
    logger.info("AUDIT: %s", json.dumps(event.model_dump(), default=str))

    if conn is not None:
        try:
            persist_audit_event(conn, event)
        except Exception as db_err:
            logger.warning(
                "Failed to persist audit event to SQLite: %s", db_err
            )


def persist_audit_event(conn: sqlite3.Connection, event: AuditEvent) -> None:
    """Write an already validated audit event to ``audit_log``."""
    conn.execute(
        """
        INSERT INTO audit_log (timestamp, action, entity_type, entity_id, details)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            event.timestamp,
            event.action,
            event.entity_type,
            event.entity_id,
            json.dumps(event.details, default=str),
        ),
    )
    conn.commit()
