"""
Region Config Cache.

Keeps one remote config document per region, persisted as a single
settings record so surfaces started without network access still see
the last known config.

Refresh policy:

- An entry younger than the refresh interval (24 hours by default) is
  fresh; :meth:`ConfigCache.auto_update` does nothing for it.
- A stale or missing entry is refetched, but at most one fetch per
  region is ever in flight.  A second caller that finds the region
  reserved returns immediately.
- A failed fetch is logged and leaves the previous entry in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from accountdesk.logger import StructuredLogger
from accountdesk.models.config_models import ConfigEntry, RegionConfig, StoredConfigs
from accountdesk.models.enums import Region
from accountdesk.services.app_settings_service import AppSettingsService
from accountdesk.services.base_service import BaseService
from accountdesk.services.network import ConfigClient
from accountdesk.services.notifier import StateEvent, StateNotifier

_STORED_KEY: str = "config_cache.stored"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConfigCache(BaseService):
    """Per-region config cache with time-based refresh.

    Parameters
    ----------
    settings:
        Settings service holding the cache record.
    logger:
        Structured JSON logger.
    refresh_interval_s:
        Age in seconds after which an entry is refetched.
    clock:
        Returns the current UTC time.  Injected by tests.
    notifier:
        Shared state notifier; ``CONFIG_UPDATED`` is emitted after each
        successful refresh.
    """

    def __init__(
        self,
        settings: AppSettingsService,
        logger: StructuredLogger,
        refresh_interval_s: float = 24 * 3600.0,
        clock: Optional[Clock] = None,
        notifier: Optional[StateNotifier] = None,
    ) -> None:
        super().__init__(logger)
        self._settings: AppSettingsService = settings
        self._refresh_interval: timedelta = timedelta(seconds=refresh_interval_s)
        self._clock: Clock = clock or _utc_now
        self._notifier: StateNotifier = notifier or StateNotifier(logger)
        self._stored: StoredConfigs = (
            settings.get_model(_STORED_KEY, StoredConfigs) or StoredConfigs()
        )
        self._in_progress: set[Region] = set()

    # ------------------------------------------------------------------
    # Reads (no network, no side effects)
    # ------------------------------------------------------------------

    def config(self, region: Region) -> Optional[RegionConfig]:
        entry = self._stored.configs.get(region)
        return entry.config if entry is not None else None

    def configs(self) -> dict[Region, RegionConfig]:
        return {region: entry.config for region, entry in self._stored.configs.items()}

    def last_update(self, region: Region) -> Optional[datetime]:
        entry = self._stored.configs.get(region)
        return entry.last_update if entry is not None else None

    def is_refreshing(self, region: Region) -> bool:
        return region in self._in_progress

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def auto_update(self, region: Region, client: ConfigClient) -> None:
        """Refetch *region*'s config through *client* if it is stale.

        Never raises for fetch failures; they are logged and the cached
        entry (if any) is kept.
        """
        entry = self._stored.configs.get(region)
        if entry is not None and self._clock() - entry.last_update < self._refresh_interval:
            return
        if region in self._in_progress:
            self._logger.debug("Config refresh for %s already in flight.", region)
            return

        self._in_progress.add(region)
        try:
            try:
                config = await client.fetch_config(region)
            except Exception as exc:
                self._logger.warning(
                    "Error updating config for %s: %s", region, exc, exc_info=True,
                )
                return
            self._store_entry(region, config)
        finally:
            self._in_progress.discard(region)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _store_entry(self, region: Region, config: RegionConfig) -> None:
        now = self._clock()
        previous = self._stored.configs.get(region)
        if previous is not None and previous.last_update > now:
            # Clock moved backwards; keep timestamps monotonic per region.
            now = previous.last_update
        self._stored.configs[region] = ConfigEntry(last_update=now, config=config)
        if not self._settings.set_model(_STORED_KEY, self._stored):
            self._logger.warning("Config cache for %s not persisted.", region)
        self._logger.info("Config for %s updated.", region)
        self._notifier.emit(StateEvent.CONFIG_UPDATED)
