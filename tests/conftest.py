import asyncio

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from backend.channel import ChannelServer
from backend.db import build_session_factory, init_db
from backend.event_log import EventLog
from backend.membership import MembershipProtocol
from backend.session_directory import SessionDirectory
from backend.utils.storage import RecordStore


class FakeWebSocket:
    """Records what the channel writes; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.closed = None
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed = (code, reason)

    def types(self):
        return [frame["type"] for frame in self.sent]


async def _settle(*conns):
    """Yield to the loop until every outbox has been written out."""
    for attempt in range(200):
        await asyncio.sleep(0)
        if attempt >= 5 and all(conn.outbox.empty() for conn in conns):
            return


@pytest.fixture
def session_factory(tmp_path):
    factory = build_session_factory(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(factory.kw["bind"])
    return factory


@pytest.fixture
def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def directory(store):
    return SessionDirectory(store)


@pytest.fixture
def make_socket():
    return FakeWebSocket


@pytest.fixture
def settle():
    return _settle


@pytest_asyncio.fixture
async def channels():
    server = ChannelServer()
    await server.start()
    yield server
    await server.shutdown()


@pytest.fixture
def event_log(store, channels):
    return EventLog(store, channels)


@pytest.fixture
def membership(store, channels):
    return MembershipProtocol(store, channels)


@pytest.fixture
def test_client(session_factory):
    from backend.app import create_app

    with TestClient(create_app(session_factory)) as client:
        yield client
