"""
Session Models.

Pydantic models for the authentication state of one account and the
credentials used to obtain it.  ``Session.to_bytes`` produces the unit
that the secure store persists per account.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import NewType, Optional

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from accountdesk.exceptions import SessionDecodeError
from accountdesk.models.enums import MultifactorMethod, Region

AccountID = NewType("AccountID", str)
"""Remote user id.  Stable, hashable, and never reused across accounts."""


class Credentials(BaseModel):
    """Login name and password entered by the user."""

    username: str
    password: SecretStr

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        return value.strip()


class Session(BaseModel):
    """Authentication state for one account.

    Attributes
    ----------
    user_id:
        Remote user id; the source of :attr:`account_id`.
    username:
        Login name the session was obtained with.  Used to decide
        whether a new login can carry over this session's cookies.
    access_token:
        Short-lived bearer token.  Rotates over the session lifetime.
    entitlements_token:
        Optional secondary token some endpoints require.
    cookies:
        Server cookies carried over to re-authentication.
    expires_at:
        UTC instant after which the access token is no longer accepted.
    region:
        Region the account's data lives in.
    """

    user_id: str
    username: str
    access_token: str = Field(repr=False)
    entitlements_token: Optional[str] = Field(default=None, repr=False)
    cookies: dict[str, str] = Field(default_factory=dict, repr=False)
    expires_at: datetime
    region: Region

    @field_validator("expires_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def account_id(self) -> AccountID:
        return AccountID(self.user_id)

    def has_expired(self, leeway_s: int = 30, now: Optional[datetime] = None) -> bool:
        """``True`` when the access token has expired or is about to."""
        current = now or datetime.now(timezone.utc)
        return current >= self.expires_at - timedelta(seconds=leeway_s)

    def to_bytes(self) -> bytes:
        """Serialize to the UTF-8 JSON form stored per account."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Session":
        """Parse bytes produced by :meth:`to_bytes`.

        Raises
        ------
        SessionDecodeError
            If *data* is not a valid serialized session.
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as exc:
            raise SessionDecodeError(
                "Stored session data is corrupted and could not be read.",
                original_error=exc,
            ) from exc


class MultifactorInfo(BaseModel):
    """Challenge details passed through from the login collaborator.

    Only displayed, never interpreted by the core.
    """

    method: MultifactorMethod = MultifactorMethod.UNKNOWN
    email: Optional[str] = None
    code_length: int = 6
    extra: dict[str, str] = Field(default_factory=dict)
