"""Tests for the composition root, the offline adapter and the status report."""

import pytest

from accountdesk.config import AppConfig
from accountdesk.exceptions import ConfigFetchError, NetworkUnavailable
from accountdesk.models import Region
from accountdesk.services import create_managers
from accountdesk.services.network import NetworkClient, OfflineNetwork, SessionConsumer
from accountdesk.services.secure_store import EncryptedSecureStore
from main import build_status

from conftest import make_credentials, make_session


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        STORE_SALT_PATH=str(tmp_path / "salt"),
        STORE_KDF_ITERATIONS=1_000,
        CONFIG_REFRESH_INTERVAL_S=3600,
    )


class TestCreateManagers:

    def test_managers_share_one_notifier(self, db, config):
        managers = create_managers(db=db, config=config, network=OfflineNetwork())

        assert isinstance(managers["secure_store"], EncryptedSecureStore)
        events = []
        managers["notifier"].subscribe(events.append)
        managers["session_registry"].set_client_version("release-12.00")
        assert events

    def test_store_key_is_derived_before_first_use(self, db, config):
        assert not config.salt_path.exists()

        create_managers(db=db, config=config, network=OfflineNetwork())

        assert config.salt_path.exists()

    def test_unusable_salt_location_does_not_abort_startup(self, db, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file")
        config = AppConfig(
            STORE_SALT_PATH=str(blocker / "salt"), STORE_KDF_ITERATIONS=1_000,
        )

        managers = create_managers(db=db, config=config, network=OfflineNetwork())

        assert managers["session_registry"].active_account is None

    def test_fresh_install_status(self, db, config):
        managers = create_managers(db=db, config=config, network=OfflineNetwork())

        status = build_status(managers)

        assert status["stored_accounts"] == []
        assert status["active_account"] is None
        assert status["requires_action"] is True
        assert status["account_load_error"] is None
        assert status["cached_regions"] == {}

    @pytest.mark.asyncio
    async def test_state_survives_rebuild(self, db, config, network):
        network.script(make_session(user_id="u1", username="alice", region=Region.EU))
        managers = create_managers(db=db, config=config, network=network)
        await managers["session_registry"].add_account(make_credentials("alice"))
        await managers["config_cache"].auto_update(
            Region.EU, managers["session_registry"].active_account.client,
        )

        rebuilt = create_managers(db=db, config=config, network=OfflineNetwork())
        status = build_status(rebuilt)

        assert status["stored_accounts"] == ["u1"]
        assert status["active_account"] == "u1"
        assert status["active_region"] == "eu"
        assert status["requires_action"] is False
        assert list(status["cached_regions"]) == ["eu"]
        audit_rows = db.sqlite.execute("SELECT COUNT(*) FROM audit_log").fetchone()[0]
        assert audit_rows >= 2


class TestOfflineNetwork:

    def test_satisfies_protocols(self):
        network = OfflineNetwork()
        assert isinstance(network, NetworkClient)
        assert isinstance(network.create_consumer(make_session()), SessionConsumer)

    @pytest.mark.asyncio
    async def test_login_is_unavailable(self):
        async def never(info):
            raise AssertionError("multifactor handler must not be called")

        with pytest.raises(NetworkUnavailable):
            await OfflineNetwork().login(make_credentials(), None, never)

    @pytest.mark.asyncio
    async def test_config_fetch_fails(self):
        consumer = OfflineNetwork().create_consumer(make_session())
        with pytest.raises(ConfigFetchError):
            await consumer.fetch_config(Region.NA)
