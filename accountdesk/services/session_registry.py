"""
Session Registry.

Process-wide authority for which accounts exist and which one is
active.  One instance is built by ``create_managers`` and handed to
every surface that needs it.

Responsibilities:

- Restore the registry record (stored accounts, active account, client
  version) at startup.  A broken active account is reported through
  :attr:`SessionRegistry.account_load_error` and never crashes startup.
- Add accounts by logging in through the network client, resolving a
  multifactor prompt when the server demands one.
- Switch, toggle and clear the active account.
- Keep the cached client version applied to whichever record is active.
- Notify listeners after every committed change.

All state lives on the asyncio event loop that calls into the registry;
the only suspension points are the login call and the multifactor wait.

State machine for activation::

    NoActive ──set_active / add_account──▶ Active(id)
    Active(id) ──toggle_active(id) / clear──▶ NoActive
    Active(id) ──set_active(id') / add_account──▶ Active(id')
"""

from __future__ import annotations

import sqlite3
from typing import Callable, Optional

from accountdesk.exceptions import AuthError, LoadError
from accountdesk.logger import StructuredLogger
from accountdesk.models.session import AccountID, Credentials, MultifactorInfo, Session
from accountdesk.models.state_models import RegistryState
from accountdesk.services.account_record import AccountContext, AccountRecord
from accountdesk.services.app_settings_service import AppSettingsService
from accountdesk.services.base_service import BaseService
from accountdesk.services.multifactor import MultifactorChallenge
from accountdesk.services.network import NetworkClient
from accountdesk.services.notifier import StateEvent, StateListener, StateNotifier
from accountdesk.services.secure_store import SecureStore
from accountdesk.utils.audit import DetailValue, log_audit_event

_STATE_KEY: str = "session_registry.state"


class SessionRegistry(BaseService):
    """Tracks stored accounts, the active account and the client version.

    Parameters
    ----------
    store:
        Secure store for per-account sessions.
    settings:
        Settings service holding the registry record.
    network:
        Login and per-account request client factory.
    logger:
        Structured JSON logger.
    expiry_leeway_s:
        Seconds before recorded expiry at which a session counts as
        expired for :attr:`requires_action`.
    persist_on_mutation:
        Passed to every record; ``False`` keeps sessions out of the store.
    notifier:
        Shared state notifier.  A private one is created when omitted.
    audit_conn:
        Optional SQLite connection for the ``audit_log`` table.
    """

    def __init__(
        self,
        store: SecureStore,
        settings: AppSettingsService,
        network: NetworkClient,
        logger: StructuredLogger,
        *,
        expiry_leeway_s: int = 30,
        persist_on_mutation: bool = True,
        notifier: Optional[StateNotifier] = None,
        audit_conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        super().__init__(logger)
        self._settings: AppSettingsService = settings
        self._network: NetworkClient = network
        self._expiry_leeway_s: int = expiry_leeway_s
        self._notifier: StateNotifier = notifier or StateNotifier(logger)
        self._audit_conn: Optional[sqlite3.Connection] = audit_conn
        self._context: AccountContext = AccountContext(
            store=store,
            network=network,
            logger=logger,
            persist_on_mutation=persist_on_mutation,
        )

        self._active: Optional[AccountRecord] = None
        self._multifactor_prompt: Optional[MultifactorChallenge] = None
        self._account_load_error: Optional[str] = None

        state = settings.get_model(_STATE_KEY, RegistryState) or RegistryState()
        self._stored_accounts: list[AccountID] = [
            AccountID(account_id) for account_id in state.stored_accounts
        ]
        self._client_version: Optional[str] = state.client_version
        if state.active_account is not None:
            self._restore_active(AccountID(state.active_account))

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def active_account(self) -> Optional[AccountRecord]:
        return self._active

    @property
    def stored_accounts(self) -> list[AccountID]:
        """Known account ids in the order they were added (a copy)."""
        return list(self._stored_accounts)

    @property
    def client_version(self) -> Optional[str]:
        return self._client_version

    @property
    def account_load_error(self) -> Optional[str]:
        """Why the persisted active account failed to load at startup."""
        return self._account_load_error

    @property
    def multifactor_prompt(self) -> Optional[MultifactorChallenge]:
        """The challenge currently waiting for an answer, if any."""
        return self._multifactor_prompt

    @property
    def requires_action(self) -> bool:
        """``True`` when there is no usable active session."""
        if self._active is None:
            return True
        return self._active.session.has_expired(leeway_s=self._expiry_leeway_s)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        return self._notifier.subscribe(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        self._notifier.unsubscribe(listener)

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    async def add_account(self, credentials: Credentials) -> AccountRecord:
        """Log in with *credentials* and make the resulting account active.

        When the active account uses the same login name, its session is
        handed to the login so existing cookies carry over.

        Raises
        ------
        AuthError
            Login failed (``MultifactorCancelled`` if the prompt was
            dismissed).  Stored and active accounts are unchanged.
        PersistError
            The new session could not be saved.  State is unchanged.
        """
        active_session: Optional[Session] = self._active.session if self._active else None
        carry_over: Optional[Session] = None
        if active_session is not None and active_session.username == credentials.username:
            carry_over = active_session

        try:
            session = await self._network.login(
                credentials, carry_over, self.handle_multifactor,
            )
        except AuthError as exc:
            if exc.user_visible:
                self._logger.warning(
                    "Login failed for %s: %s", credentials.username, exc.user_message,
                )
            else:
                self._logger.info("Login for %s cancelled.", credentials.username)
            raise
        except Exception as exc:
            self._logger.error(
                "Login for %s failed unexpectedly.", credentials.username, exc_info=True,
            )
            raise AuthError(
                f"Sign-in failed: {exc}", original_error=exc,
            ) from exc

        record = AccountRecord.create(session, self._context)

        is_new = record.id not in self._stored_accounts
        if is_new:
            self._stored_accounts.append(record.id)
        self._audit("ADD_ACCOUNT", record.id, {"new": is_new, "region": record.region.value})
        self._activate(record)
        if is_new:
            self._notifier.emit(StateEvent.STORED_ACCOUNTS_CHANGED)
        return record

    def toggle_active(self, account_id: AccountID) -> None:
        """Deactivate *account_id* if it is active, otherwise activate it.

        Raises
        ------
        LoadError
            Activation failed; the active account is unchanged.
        """
        if self._active is not None and self._active.id == account_id:
            self._activate(None)
        else:
            self.set_active(account_id)

    def set_active(self, account_id: AccountID) -> None:
        """Load *account_id* from the secure store and make it active.

        A no-op when it is already active (no store access, no events).

        Raises
        ------
        NoStoredSession
            Nothing is stored for the account.
        SessionDecodeError
            The stored session is unreadable or belongs to another account.
        """
        if self._active is not None and self._active.id == account_id:
            return
        record = self.load_account(account_id)
        if account_id not in self._stored_accounts:
            self._stored_accounts.append(account_id)
            self._notifier.emit(StateEvent.STORED_ACCOUNTS_CHANGED)
        self._activate(record)
        self._notifier.emit(StateEvent.SURFACES_RELOAD_REQUESTED)

    def clear(self) -> None:
        """Deactivate and forget every stored account.

        Persisted sessions are left in the secure store, unreferenced.
        """
        self._activate(None)
        self._stored_accounts = []
        self._persist_state()
        self._audit("CLEAR", "*", None)
        self._notifier.emit(StateEvent.STORED_ACCOUNTS_CHANGED)

    def set_client_version(self, version: str) -> None:
        """Cache *version* and apply it to the active account's requests."""
        self._client_version = version
        self._persist_state()
        self._apply_client_version()
        self._audit("SET_CLIENT_VERSION", version, None)
        self._notifier.emit(StateEvent.CLIENT_VERSION_CHANGED)

    def load_account(self, account_id: AccountID) -> AccountRecord:
        """Load a record for *account_id* without activating it.

        Raises ``LoadError`` subclasses like :meth:`set_active`.
        """
        return AccountRecord.load(account_id, self._context)

    def get_account(self, account_id: AccountID) -> AccountRecord:
        """Return the active record for *account_id*, or load a detached one.

        Callers own detached records and must ``discard()`` them.
        """
        if self._active is not None and self._active.id == account_id:
            return self._active
        return self.load_account(account_id)

    # ------------------------------------------------------------------
    # Multifactor
    # ------------------------------------------------------------------

    async def handle_multifactor(self, info: MultifactorInfo) -> str:
        """Surface a multifactor prompt and wait for its answer.

        Handed to the network client during login.  The prompt occupies
        the single prompt slot until resolved; an older pending prompt
        is cancelled.

        Raises
        ------
        MultifactorCancelled
            The prompt was dismissed.
        """
        challenge = MultifactorChallenge(info, self._logger)
        previous = self._multifactor_prompt
        if previous is not None and not previous.is_resolved:
            self._logger.warning(
                "Replacing pending multifactor challenge %s.", previous.id,
            )
            previous.cancel()
        self._set_prompt(challenge)
        try:
            return await challenge.wait()
        finally:
            if self._multifactor_prompt is challenge:
                self._set_prompt(None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _restore_active(self, account_id: AccountID) -> None:
        try:
            record = self.load_account(account_id)
        except LoadError as exc:
            self._logger.error(
                "Could not load active account %s: %s", account_id, exc.user_message,
            )
            self._account_load_error = exc.user_message
            return
        self._active = record
        if record.id not in self._stored_accounts:
            self._stored_accounts.append(record.id)
            self._persist_state()
        self._apply_client_version()
        self._logger.info("Restored active account %s.", record.id)

    def _activate(self, record: Optional[AccountRecord]) -> None:
        previous = self._active
        if previous is None and record is None:
            return
        if previous is not None and previous is not record:
            previous.discard()
        self._active = record
        self._persist_state()
        self._apply_client_version()
        if record is not None:
            self._audit("ACTIVATE", record.id, None)
        elif previous is not None:
            self._audit("DEACTIVATE", previous.id, None)
        self._notifier.emit(StateEvent.ACTIVE_ACCOUNT_CHANGED)

    def _apply_client_version(self) -> None:
        if self._client_version is None or self._active is None:
            return
        self._active.set_client_version(self._client_version)

    def _set_prompt(self, challenge: Optional[MultifactorChallenge]) -> None:
        self._multifactor_prompt = challenge
        self._notifier.emit(StateEvent.MULTIFACTOR_PROMPT_CHANGED)

    def _persist_state(self) -> None:
        state = RegistryState(
            active_account=self._active.id if self._active else None,
            stored_accounts=list(self._stored_accounts),
            client_version=self._client_version,
        )
        if not self._settings.set_model(_STATE_KEY, state):
            self._logger.warning("Registry state not persisted; continuing in memory.")

    def _audit(
        self,
        action: str,
        entity_id: str,
        details: Optional[dict[str, DetailValue]],
    ) -> None:
        log_audit_event(
            self._logger,
            action=action,
            entity_type="Account",
            entity_id=entity_id,
            details=details,
            conn=self._audit_conn,
        )
