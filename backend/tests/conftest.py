"""Shared fixtures: in-process sockets and dispatcher factories."""
import pytest

from roomchat.config import Settings
from roomchat.dispatcher import RelayDispatcher


class FakeSocket:
    """Collects everything the dispatcher sends to one connection."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def of_type(self, event_type):
        return [m for m in self.sent if m["type"] == event_type]

    def clear(self):
        self.sent.clear()


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def make_dispatcher():
    def _make(**overrides) -> RelayDispatcher:
        return RelayDispatcher(make_settings(**overrides))
    return _make


@pytest.fixture
def dispatcher(make_dispatcher):
    return make_dispatcher()


@pytest.fixture
def login():
    """Connect, authenticate and optionally join a room; returns (id, socket) with a clean outbox."""
    async def _login(dispatcher, name, room=None, socket=None, **auth):
        socket = socket or FakeSocket()
        connection_id = await dispatcher.connect(socket)
        await dispatcher.handle(connection_id, {"type": "auth", "display_name": name, **auth})
        if room is not None:
            await dispatcher.handle(connection_id, {"type": "join-room", "room_id": room})
        socket.clear()
        return connection_id, socket
    return _login


@pytest.fixture
def make_socket():
    return FakeSocket
