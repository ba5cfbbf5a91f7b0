"""
State-Change Notifier.

Synchronous publish/subscribe hub that surfaces (screens, widgets,
CLI status lines) use to learn about committed state changes without
polling.  Events are emitted after a mutation is committed, in
subscription order, on the caller's context.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Callable

from accountdesk.logger import StructuredLogger

StateListener = Callable[["StateEvent"], None]


class StateEvent(StrEnum):
    """Kinds of committed state change."""

    ACTIVE_ACCOUNT_CHANGED = "active_account_changed"
    STORED_ACCOUNTS_CHANGED = "stored_accounts_changed"
    CLIENT_VERSION_CHANGED = "client_version_changed"
    MULTIFACTOR_PROMPT_CHANGED = "multifactor_prompt_changed"
    # Surfaces whose content depends on the active account should reload.
    SURFACES_RELOAD_REQUESTED = "surfaces_reload_requested"
    CONFIG_UPDATED = "config_updated"


class StateNotifier:
    """Holds listeners and fans out ``StateEvent`` values.

    Parameters
    ----------
    logger:
        Structured logger; listener failures are reported here.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._listeners: list[StateListener] = []

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener* and return a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: StateListener) -> None:
        """Remove *listener*.  Unknown listeners are ignored."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def emit(self, event: StateEvent) -> None:
        """Deliver *event* to every listener.

        A listener that raises is logged; the remaining listeners still
        run and the error never reaches the mutating caller.
        """
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self._logger.error(
                    "State listener failed for event %s.", event, exc_info=True,
                )

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
