"""
Exception Hierarchy.

Every error raised by the account core derives from ``AccountDeskError``
and carries a ``user_message`` suitable for display plus a
``user_visible`` flag.  Callers that render errors check the flag so
that control-flow errors such as ``MultifactorCancelled`` never reach
the screen.

Propagation policy:

- Load and auth errors propagate to the caller of the user-initiated
  action (``set_active``, ``add_account``).
- Store write errors and config fetch errors are caught where they
  happen and logged.
"""

from __future__ import annotations

from typing import Optional


class AccountDeskError(Exception):
    """Base class for all account core errors."""

    user_visible: bool = True

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Human-readable description for display."""
        return self.message


# ---------------------------------------------------------------------------
# Secure store
# ---------------------------------------------------------------------------

class StoreError(AccountDeskError):
    """A secure store operation failed."""


class StoreKeyNotFound(StoreError):
    """The secure store holds no item under the requested key."""

    def __init__(self, key: str) -> None:
        self.key: str = key
        super().__init__(f"No secure item stored under key {key!r}.")


class StoreReadError(StoreError):
    """An item exists but could not be read or decrypted."""


class StoreWriteError(StoreError):
    """An item could not be written."""


# ---------------------------------------------------------------------------
# Account loading and persistence
# ---------------------------------------------------------------------------

class LoadError(AccountDeskError):
    """An account record could not be loaded from the secure store."""


class NoStoredSession(LoadError):
    """The secure store has no session for the account."""

    def __init__(self, account_id: str) -> None:
        self.account_id: str = account_id
        super().__init__(
            "Missing session for account!\n"
            "Add the account again using the same credentials to replace "
            "it with a working version."
        )


class SessionDecodeError(LoadError):
    """Stored bytes exist but do not parse as a session."""


class PersistError(AccountDeskError):
    """A freshly created account record could not be persisted."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthError(AccountDeskError):
    """Login failed; raised verbatim or wrapped from the network client."""


class NetworkUnavailable(AuthError):
    """No network client is configured for this process."""


class MultifactorCancelled(AuthError):
    """The multifactor prompt was dismissed.

    Exists purely to unwind the suspended login call and is never shown
    as a failure.
    """

    user_visible = False

    def __init__(self) -> None:
        super().__init__("Multifactor prompt cancelled.")


# ---------------------------------------------------------------------------
# Region config and surface fetches
# ---------------------------------------------------------------------------

class ConfigFetchError(AccountDeskError):
    """Remote region config could not be fetched."""


class FetchError(AccountDeskError):
    """A surface fetch could not gather its inputs."""


class NoConfigError(FetchError):
    """No cached config exists for the account's region."""

    def __init__(self, region: str) -> None:
        self.region: str = region
        super().__init__(f"Missing configuration data for {region} region!")
