"""Shared test fixtures for the accountdesk test suite.

The fakes below stand in for the secure store, the settings table and
the remote API so the account core can be exercised headless, without
keychain, disk or network access.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from pydantic import BaseModel, ValidationError

from accountdesk.database import DatabaseManager
from accountdesk.exceptions import ConfigFetchError, StoreKeyNotFound, StoreWriteError
from accountdesk.logger import StructuredLogger
from accountdesk.models import (
    Credentials,
    MultifactorInfo,
    MultifactorMethod,
    Region,
    RegionConfig,
    Session,
)
from accountdesk.schema import initialize_schema
from accountdesk.services.app_settings_service import AppSettingsService
from accountdesk.services.notifier import StateNotifier
from accountdesk.services.session_registry import SessionRegistry


# ── Session helpers ──

def make_session(
    user_id: str = "u1",
    username: str = "alice",
    region: Region = Region.NA,
    token: str = "tok-1",
    expires_in: timedelta = timedelta(hours=1),
) -> Session:
    return Session(
        user_id=user_id,
        username=username,
        access_token=token,
        cookies={"ssid": f"cookie-{user_id}"},
        expires_at=datetime.now(timezone.utc) + expires_in,
        region=region,
    )


def make_credentials(username: str = "alice") -> Credentials:
    return Credentials(username=username, password="hunter2")


async def wait_for_prompt(registry: SessionRegistry, not_this=None):
    """Yield to the loop until a (different) multifactor prompt is showing."""
    for _ in range(50):
        prompt = registry.multifactor_prompt
        if prompt is not None and prompt is not not_this:
            return prompt
        await asyncio.sleep(0)
    raise AssertionError("multifactor prompt never appeared")


# ── Fakes ──

class FakeSecureStore:
    """Dict-backed secure store that can be told to fail writes."""

    def __init__(self):
        self.items: dict[str, bytes] = {}
        self.fail_writes = False
        self.loads = 0
        self.writes = 0

    def load(self, key: str) -> bytes:
        self.loads += 1
        if key not in self.items:
            raise StoreKeyNotFound(key)
        return self.items[key]

    def store(self, key: str, value: bytes) -> None:
        if self.fail_writes:
            raise StoreWriteError(f"write of {key!r} refused")
        self.writes += 1
        self.items[key] = value


class FakeSettings:
    """Key-value settings double holding JSON strings in memory."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.fail_writes = False

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> bool:
        if self.fail_writes:
            return False
        self.values[key] = value
        return True

    def get_model(self, key, model):
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError:
            return None

    def set_model(self, key: str, record: BaseModel) -> bool:
        return self.set(key, record.model_dump_json())

    def delete(self, key: str) -> bool:
        raise NotImplementedError


class FakeSubscription:
    def __init__(self, consumer: "FakeConsumer", callback):
        self._consumer = consumer
        self._callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._consumer.callbacks.remove(self._callback)


class FakeConsumer:
    """Per-account client double: rotation trigger and config fetch counter."""

    def __init__(self, session: Session):
        self.session = session
        self.client_version: Optional[str] = None
        self.callbacks: list = []
        self.fetch_calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.fail = False
        self.config = RegionConfig(version="1", data={"endpoint": "pd"})

    def on_session_update(self, callback) -> FakeSubscription:
        self.callbacks.append(callback)
        return FakeSubscription(self, callback)

    def rotate(self, session: Session) -> None:
        for callback in list(self.callbacks):
            callback(session)

    async def fetch_config(self, region: Region) -> RegionConfig:
        self.fetch_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConfigFetchError(f"config for {region} unavailable")
        return self.config

    async def request(self, *args, **kwargs):
        raise NotImplementedError


class FakeLoginClient:
    """Network double returning scripted sessions per login name."""

    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self.error: Optional[BaseException] = None
        self.require_multifactor = False
        self.multifactor_info = MultifactorInfo(
            method=MultifactorMethod.EMAIL, email="a***@example.com",
        )
        self.calls: list[tuple[Credentials, Optional[Session]]] = []
        self.received_codes: list[str] = []
        self.consumers: list[FakeConsumer] = []

    def script(self, session: Session) -> Session:
        self.sessions[session.username] = session
        return session

    async def login(self, credentials, carry_over_from, on_multifactor_required) -> Session:
        self.calls.append((credentials, carry_over_from))
        if self.error is not None:
            raise self.error
        if self.require_multifactor:
            code = await on_multifactor_required(self.multifactor_info)
            self.received_codes.append(code)
        return self.sessions[credentials.username]

    def create_consumer(self, session: Session) -> FakeConsumer:
        consumer = FakeConsumer(session)
        self.consumers.append(consumer)
        return consumer


class FakeClock:
    """Settable UTC clock; ``queue`` values are returned first, in order."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.queue: list[datetime] = []

    def __call__(self) -> datetime:
        if self.queue:
            return self.queue.pop(0)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ── Fixtures ──

@pytest.fixture(scope="session")
def logger(tmp_path_factory):
    log_file = tmp_path_factory.mktemp("logs") / "accountdesk-test.log"
    return StructuredLogger(name="accountdesk.tests", log_file=str(log_file))


@pytest.fixture
def db(logger):
    manager = DatabaseManager(sqlite_path=":memory:", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def app_settings(db, logger):
    return AppSettingsService(db=db, logger=logger)


@pytest.fixture
def store():
    return FakeSecureStore()


@pytest.fixture
def settings():
    return FakeSettings()


@pytest.fixture
def network():
    return FakeLoginClient()


@pytest.fixture
def notifier(logger):
    return StateNotifier(logger)


@pytest.fixture
def events(notifier):
    received: list = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def make_registry(store, settings, network, logger, notifier):
    """Build registries over the shared fakes, as a restarted process would."""

    def _make(**kwargs) -> SessionRegistry:
        kwargs.setdefault("notifier", notifier)
        return SessionRegistry(store, settings, network, logger, **kwargs)

    return _make


@pytest.fixture
def registry(make_registry):
    return make_registry()
