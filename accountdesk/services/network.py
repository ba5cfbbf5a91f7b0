"""
Network Collaborator Interfaces.

The account core never talks HTTP itself.  It depends on the shapes
below, which a concrete API client implements:

- ``NetworkClient``: performs logins and builds one ``SessionConsumer``
  per account record.
- ``SessionConsumer``: the per-account request client.  It reports
  server-side token rotations through ``on_session_update`` and can
  fetch region config.
- ``ConfigClient``: anything that can fetch region config; every
  ``SessionConsumer`` is one.

``OfflineNetwork`` satisfies ``NetworkClient`` when no API client is
configured, so the rest of the core can start and read persisted state.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

from accountdesk.exceptions import ConfigFetchError, NetworkUnavailable
from accountdesk.models.config_models import RegionConfig
from accountdesk.models.enums import Region
from accountdesk.models.session import Credentials, MultifactorInfo, Session

MultifactorHandler = Callable[[MultifactorInfo], Awaitable[str]]
"""Called by a login that needs a second factor; resolves to the code."""

SessionUpdateCallback = Callable[[Session], None]


@runtime_checkable
class Subscription(Protocol):
    """Handle returned by ``SessionConsumer.on_session_update``."""

    def cancel(self) -> None:
        """Stop delivering callbacks.  Safe to call more than once."""
        ...


@runtime_checkable
class ConfigClient(Protocol):
    """Fetches the remote config document for a region."""

    async def fetch_config(self, region: Region) -> RegionConfig:
        """Raises on network failure; the config cache logs and moves on."""
        ...


@runtime_checkable
class SessionConsumer(ConfigClient, Protocol):
    """Per-account request client bound to one session."""

    client_version: Optional[str]

    def on_session_update(self, callback: SessionUpdateCallback) -> Subscription:
        """Invoke *callback* with the new session whenever tokens rotate."""
        ...


@runtime_checkable
class NetworkClient(Protocol):
    """Entry point to the remote API."""

    async def login(
        self,
        credentials: Credentials,
        carry_over_from: Optional[Session],
        on_multifactor_required: MultifactorHandler,
    ) -> Session:
        """Authenticate and return a new session.

        *carry_over_from* is an existing session for the same login name
        whose cookies should be reused.  When the server demands a second
        factor the client awaits *on_multifactor_required* exactly once.
        Raises ``AuthError`` (or any exception, which the registry wraps).
        """
        ...

    def create_consumer(self, session: Session) -> SessionConsumer:
        """Build the request client for one account."""
        ...


# ---------------------------------------------------------------------------
# Offline adapter
# ---------------------------------------------------------------------------

class _NullSubscription:
    def cancel(self) -> None:
        return None


class OfflineConsumer:
    """``SessionConsumer`` that never rotates and cannot fetch."""

    def __init__(self, session: Session) -> None:
        self.session: Session = session
        self.client_version: Optional[str] = None

    def on_session_update(self, callback: SessionUpdateCallback) -> Subscription:
        return _NullSubscription()

    async def fetch_config(self, region: Region) -> RegionConfig:
        raise ConfigFetchError(
            f"Cannot fetch config for {region}: no network client is configured."
        )


class OfflineNetwork:
    """``NetworkClient`` used when the process runs without an API client.

    Persisted accounts can still be listed and activated; logins fail
    with ``NetworkUnavailable``.
    """

    async def login(
        self,
        credentials: Credentials,
        carry_over_from: Optional[Session],
        on_multifactor_required: MultifactorHandler,
    ) -> Session:
        raise NetworkUnavailable(
            "Cannot sign in: no network client is configured."
        )

    def create_consumer(self, session: Session) -> SessionConsumer:
        return OfflineConsumer(session)
