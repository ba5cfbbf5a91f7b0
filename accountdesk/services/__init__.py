"""
Account Core Services Package.

The ``create_managers()`` factory wires the secure store, settings,
session registry, config cache and entry fetcher together, returning a
typed dict that surfaces consume without knowing the dependency graph.
Exactly one instance of each manager exists per process; nothing here
is a module-level global.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from accountdesk.config import AppConfig
from accountdesk.database import DatabaseManager
from accountdesk.exceptions import StoreWriteError
from accountdesk.logger import get_logger
from accountdesk.services.app_settings_service import AppSettingsService
from accountdesk.services.config_cache import ConfigCache
from accountdesk.services.entry_fetcher import EntryFetcher
from accountdesk.services.network import NetworkClient
from accountdesk.services.notifier import StateNotifier
from accountdesk.services.secure_store import EncryptedSecureStore, SecureStore
from accountdesk.services.session_registry import SessionRegistry


class ManagerContainer(TypedDict):
    """Typed container for the account core managers."""

    notifier: StateNotifier
    secure_store: SecureStore
    app_settings_service: AppSettingsService
    session_registry: SessionRegistry
    config_cache: ConfigCache
    entry_fetcher: EntryFetcher


def create_managers(
    db: DatabaseManager,
    config: AppConfig,
    network: NetworkClient,
    notifier: Optional[StateNotifier] = None,
    secure_store: Optional[SecureStore] = None,
) -> ManagerContainer:
    """
    Wire all account core managers together.

    This is the single composition root for the core.  The entry point
    calls it once at startup, after ``initialize_schema``.

    Args:
        db: Initialised DatabaseManager with the schema in place.
        config: Application configuration.
        network: Login / request client implementation.
        notifier: Shared notifier; created when omitted.
        secure_store: Override for the encrypted SQLite store.

    Returns:
        ManagerContainer mapping manager names to fully-wired instances.
    """
    logger = get_logger("accountdesk.core")
    notifier = notifier or StateNotifier(logger)

    store: SecureStore
    if secure_store is not None:
        store = secure_store
    else:
        encrypted = EncryptedSecureStore(
            db=db,
            logger=get_logger("accountdesk.secure_store"),
            salt_path=config.salt_path,
            kdf_iterations=config.STORE_KDF_ITERATIONS,
        )
        try:
            encrypted.warm_up()
        except StoreWriteError as exc:
            # Store calls report the same failure when they run.
            logger.error("Secure store key unavailable: %s", exc.user_message)
        store = encrypted
    app_settings_service = AppSettingsService(db=db, logger=logger)

    session_registry = SessionRegistry(
        store=store,
        settings=app_settings_service,
        network=network,
        logger=get_logger("accountdesk.accounts"),
        expiry_leeway_s=config.SESSION_EXPIRY_LEEWAY_S,
        persist_on_mutation=config.PERSIST_ON_MUTATION,
        notifier=notifier,
        audit_conn=db.sqlite,
    )
    config_cache = ConfigCache(
        settings=app_settings_service,
        logger=get_logger("accountdesk.config_cache"),
        refresh_interval_s=config.CONFIG_REFRESH_INTERVAL_S,
        notifier=notifier,
    )
    entry_fetcher = EntryFetcher(
        registry=session_registry,
        config_cache=config_cache,
        logger=logger,
    )

    return ManagerContainer(
        notifier=notifier,
        secure_store=store,
        app_settings_service=app_settings_service,
        session_registry=session_registry,
        config_cache=config_cache,
        entry_fetcher=entry_fetcher,
    )
