"""
Account Record.

Owns the ``Session`` of one account and keeps the secure store in step
with it.  Every session mutation (a server-side token rotation or a
client version change) is followed by a persistence attempt; write
failures are logged and never reach the mutator.  At worst the latest
rotation is lost on restart.

Rotation listener ownership
---------------------------
The per-account network consumer holds the rotation callback, and the
record holds the consumer.  To avoid the callback keeping the record
alive, the callback captures only the record's integer handle and the
shared ``RecordArena``; it looks the record up on every call and does
nothing once the record has been discarded.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Optional

from accountdesk.exceptions import (
    NoStoredSession,
    PersistError,
    SessionDecodeError,
    StoreError,
    StoreKeyNotFound,
    StoreReadError,
)
from accountdesk.logger import StructuredLogger
from accountdesk.models.enums import Region
from accountdesk.models.session import AccountID, Session
from accountdesk.services.network import (
    NetworkClient,
    SessionConsumer,
    SessionUpdateCallback,
    Subscription,
)
from accountdesk.services.secure_store import SecureStore


class RecordArena:
    """Handle → record lookup for live ``AccountRecord`` instances."""

    def __init__(self) -> None:
        self._records: dict[int, AccountRecord] = {}
        self._next_handle = itertools.count(1)

    def register(self, record: "AccountRecord") -> int:
        handle = next(self._next_handle)
        self._records[handle] = record
        return handle

    def get(self, handle: int) -> Optional["AccountRecord"]:
        return self._records.get(handle)

    def release(self, handle: int) -> None:
        self._records.pop(handle, None)

    def __len__(self) -> int:
        return len(self._records)


@dataclass
class AccountContext:
    """Collaborators shared by every record a registry creates.

    Attributes
    ----------
    store:
        Secure store holding one serialized session per account.
    network:
        Builds the per-record request client.
    logger:
        Structured logger.
    persist_on_mutation:
        When ``False`` (previews, tests), records never write to the
        store.  This is a normal operating mode, not an error path.
    arena:
        Live-record lookup used by rotation callbacks.
    """

    store: SecureStore
    network: NetworkClient
    logger: StructuredLogger
    persist_on_mutation: bool = True
    arena: RecordArena = field(default_factory=RecordArena)


class AccountRecord:
    """A loaded or freshly created account and its session.

    Build instances with :meth:`create` or :meth:`load`.
    """

    def __init__(self, session: Session, context: AccountContext) -> None:
        self._context: AccountContext = context
        self._logger: StructuredLogger = context.logger
        self._session: Session = session
        self._client: Optional[SessionConsumer] = None
        self._subscription: Optional[Subscription] = None
        self._handle: Optional[int] = context.arena.register(self)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, session: Session, context: AccountContext) -> "AccountRecord":
        """Wrap a freshly obtained *session* and persist it immediately.

        Raises
        ------
        PersistError
            If the initial write fails.  The half-built record is
            discarded before raising.
        """
        record = cls(session, context)
        if not context.persist_on_mutation:
            return record
        try:
            record._save()
        except StoreError as exc:
            record.discard()
            raise PersistError(
                f"Could not save the session for account {session.account_id}.",
                original_error=exc,
            ) from exc
        return record

    @classmethod
    def load(cls, account_id: AccountID, context: AccountContext) -> "AccountRecord":
        """Read the stored session for *account_id*.

        Raises
        ------
        NoStoredSession
            The store has nothing under the account's key.
        SessionDecodeError
            The stored bytes are unreadable, do not parse, or hold a
            session for another account.
        """
        try:
            stored = context.store.load(str(account_id))
        except StoreKeyNotFound as exc:
            raise NoStoredSession(str(account_id)) from exc
        except StoreReadError as exc:
            raise SessionDecodeError(
                "Stored session data could not be read.", original_error=exc,
            ) from exc
        session = Session.from_bytes(stored)
        if session.account_id != account_id:
            raise SessionDecodeError(
                f"Stored session under {account_id} belongs to account {session.account_id}."
            )
        return cls(session, context)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def id(self) -> AccountID:
        return self._session.account_id

    @property
    def region(self) -> Region:
        return self._session.region

    @property
    def session(self) -> Session:
        return self._session

    @property
    def handle(self) -> Optional[int]:
        """Arena handle, or ``None`` once discarded."""
        return self._handle

    @property
    def is_discarded(self) -> bool:
        return self._handle is None

    @property
    def client(self) -> SessionConsumer:
        """The request client for this account, built on first access.

        Building it subscribes the record to token rotations.
        """
        if self._client is None:
            self._client = self._context.network.create_consumer(self._session)
            if self._handle is not None:
                self._subscription = self._client.on_session_update(
                    _rotation_callback(self._context.arena, self._handle)
                )
        return self._client

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def on_session_rotated(self, new_session: Session) -> None:
        """Replace the held session after the server rotated tokens.

        A session for a different account is rejected.
        """
        if new_session.account_id != self.id:
            self._logger.error(
                "Ignoring rotated session for account %s delivered to record %s.",
                new_session.account_id,
                self.id,
            )
            return
        self._logger.info("Storing rotated session for account %s.", self.id)
        self._session = new_session
        self.try_save()

    def set_client_version(self, version: str) -> None:
        """Apply *version* to this account's requests and re-save."""
        self.client.client_version = version
        self.try_save()

    def try_save(self) -> bool:
        """Persist the current session, logging instead of raising.

        Returns ``True`` when the session was written.
        """
        if not self._context.persist_on_mutation:
            return False
        try:
            self._save()
        except StoreError as exc:
            self._logger.error(
                "Error saving account %s: %s", self.id, exc.user_message,
            )
            return False
        self._logger.info("Saved account %s.", self.id)
        return True

    def discard(self) -> None:
        """Stop following rotations and leave the arena.  Idempotent."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._handle is not None:
            self._context.arena.release(self._handle)
            self._handle = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _save(self) -> None:
        self._context.store.store(str(self.id), self._session.to_bytes())

    def __repr__(self) -> str:
        return f"AccountRecord(id={self.id!r}, region={self.region.value!r})"


def _rotation_callback(arena: RecordArena, handle: int) -> SessionUpdateCallback:
    """Build a rotation callback that resolves its record through *arena*."""

    def _on_update(session: Session) -> None:
        record = arena.get(handle)
        if record is None:
            return
        record.on_session_rotated(session)

    return _on_update
