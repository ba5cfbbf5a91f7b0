"""
Surface Entry Fetcher.

Background surfaces (home-screen widgets, status lines) render one
entry per refresh for a configured account.  ``EntryFetcher`` gathers
everything such a fetch needs from the account core (the account's
request client, its region, the cached region config), runs the
surface-specific fetch, and always hands back a ``FetchedEntry``:
either the value or a displayable error, never an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from accountdesk.exceptions import AccountDeskError, NoConfigError
from accountdesk.logger import StructuredLogger
from accountdesk.models.config_models import RegionConfig
from accountdesk.models.enums import Region
from accountdesk.models.session import AccountID
from accountdesk.models.state_models import FetchedEntry
from accountdesk.services.account_record import AccountRecord
from accountdesk.services.base_service import BaseService
from accountdesk.services.config_cache import ConfigCache
from accountdesk.services.network import SessionConsumer
from accountdesk.services.session_registry import SessionRegistry

T = TypeVar("T")


@dataclass
class FetchContext:
    """Inputs available to a surface-specific fetch."""

    account: AccountRecord
    client: SessionConsumer
    region: Region
    config: RegionConfig


ValueFetcher = Callable[[FetchContext], Awaitable[T]]


class EntryFetcher(BaseService):
    """Runs surface fetches against the account core.

    Parameters
    ----------
    registry:
        Source of account records and the cached client version.
    config_cache:
        Region config cache; refreshed opportunistically per fetch.
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config_cache: ConfigCache,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._registry = registry
        self._config_cache = config_cache

    async def fetch_entry(
        self,
        account_id: AccountID,
        fetch_value: ValueFetcher[T],
        refresh_config: bool = True,
    ) -> FetchedEntry[T]:
        """Fetch one surface value for *account_id*.

        Every failure (unknown account, missing config, network error,
        a bug in *fetch_value*) is collapsed into the returned entry.
        """
        region: Optional[Region] = None
        account: Optional[AccountRecord] = None
        detached = False
        try:
            account = self._registry.get_account(account_id)
            detached = account is not self._registry.active_account
            region = account.region

            version = self._registry.client_version
            if version is not None and detached:
                account.set_client_version(version)

            if refresh_config:
                await self._config_cache.auto_update(region, account.client)
            config = self._config_cache.config(region)
            if config is None:
                raise NoConfigError(region.value)

            context = FetchContext(
                account=account,
                client=account.client,
                region=region,
                config=config,
            )
            value = await fetch_value(context)
        except Exception as exc:
            self._logger.warning(
                "Surface fetch for account %s failed: %s", account_id, exc,
            )
            return FetchedEntry(
                date=datetime.now(timezone.utc),
                account_id=str(account_id),
                region=region,
                error=exc.user_message if isinstance(exc, AccountDeskError) else str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            if detached and account is not None:
                account.discard()

        return FetchedEntry(
            date=datetime.now(timezone.utc),
            account_id=str(account_id),
            region=region,
            value=value,
        )
