"""Shared utilities for the accountdesk package."""

from accountdesk.utils.audit import AuditEvent, log_audit_event

__all__ = [
    "AuditEvent",
    "log_audit_event",
]
