"""
Registry and Surface Models.

``RegistryState`` is the registry-level persisted record.
``FetchedEntry`` is what a surface fetch hands back to rendering: a
value or an error message, never an exception.
"""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from accountdesk.models.enums import Region

T = TypeVar("T")

__all__ = ["FetchedEntry", "RegistryState"]


class RegistryState(BaseModel):
    """Which accounts are known, which one is active, and the client version.

    ``stored_accounts`` keeps insertion order and never holds duplicates.
    """

    active_account: Optional[str] = None
    stored_accounts: list[str] = Field(default_factory=list)
    client_version: Optional[str] = None

    @field_validator("stored_accounts")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class FetchedEntry(BaseModel, Generic[T]):
    """Result of one surface fetch.

    Exactly one of ``value`` and ``error`` is set.  ``error_type`` names
    the exception class so rendering can special-case known failures.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    date: datetime
    account_id: Optional[str] = None
    region: Optional[Region] = None
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
