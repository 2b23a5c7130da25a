"""Shared fixtures for the order notifier tests."""

import pytest
from fastapi.testclient import TestClient

from order_notifier.client.cross_tab import BroadcastChannel
from order_notifier.server.container import NotifierContainer
from order_notifier.server.event_buffer import EventBuffer
from order_notifier.server.main import create_app
from order_notifier.shared.config import Settings
from order_notifier.shared.models import UserContext
from order_notifier.shared.storage import MemoryStore

START = 1_700_000_000.0

ADMIN_HEADERS = {"X-User-Id": "7", "X-User-Login": "ana", "X-User-Role": "administrator"}
CUSTOMER_HEADERS = {"X-User-Id": "9", "X-User-Login": "kupac", "X-User-Role": "customer"}

ADMIN = UserContext(user_id=7, username="ana", role="administrator", authorized=True)
CUSTOMER = UserContext(user_id=9, username="kupac", role="customer", authorized=False)


class FakeClock:
    """A `time.time` stand-in that only moves when told to."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances the paired clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture(autouse=True)
def _reset_process_state():
    """sse-starlette keeps a process-wide exit event bound to the first loop; channels are process-wide too."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    BroadcastChannel.reset()
    yield
    BroadcastChannel.reset()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATA_DIR=tmp_path,
        STREAM_LIFETIME_S=0.05,
        STREAM_CHECK_INTERVAL_MS=10,
        QUICK_PING_COUNT=0,
    )


@pytest.fixture()
def buffer(tmp_path, clock):
    return EventBuffer(tmp_path / "order-notifier" / "sse-buffer.json", clock=clock)


@pytest.fixture()
def cookies(clock):
    return MemoryStore(clock)


@pytest.fixture()
def container(settings, clock):
    return NotifierContainer(settings, clock)


@pytest.fixture()
def app(settings, container):
    return create_app(settings, container)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c
