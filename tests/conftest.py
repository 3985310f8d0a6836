"""
Pytest fixtures for the signaling relay tests.

Stores and the router are driven through FakeTransport, an in-memory stand-in
for a WebSocket that records every envelope it is asked to send.
"""

import asyncio
import json

import pytest
from fastapi.websockets import WebSocketState

from backend import ConnectionRegistry, RoomStore
from lifecycle import ConnectionLifecycle
from relay import SignalingRelay


class FakeTransport:
    def __init__(self):
        self.sent = []
        self.open = True
        self.closed_with = None

    @property
    def is_open(self):
        return self.open

    def send_text(self, text):
        if not self.open:
            return False
        self.sent.append(json.loads(text))
        return True

    async def close(self, code=1000, reason=""):
        self.open = False
        self.closed_with = (code, reason)

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]

    def clear(self):
        self.sent.clear()


class ExplodingTransport(FakeTransport):
    """Looks open but raises on every send, like a socket torn down mid-write."""

    def send_text(self, text):
        raise RuntimeError("socket is gone")


class FakeWebSocket:
    """Starlette-like socket for WebSocketTransport; ``send_delay`` simulates a slow peer."""

    def __init__(self, fail_sends=False, send_delay=0):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.frames = []
        self.close_calls = []
        self.fail_sends = fail_sends
        self.send_delay = send_delay

    async def send_text(self, text):
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_sends:
            raise RuntimeError("connection reset")
        self.frames.append(text)

    async def close(self, code=1000, reason=None):
        self.close_calls.append((code, reason))
        self.application_state = WebSocketState.DISCONNECTED


async def wait_until(predicate, timeout=1.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


def make_connection(registry, transport=None):
    return registry.register(transport or FakeTransport())


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def rooms(registry):
    return RoomStore(registry)


@pytest.fixture
def relay(registry, rooms):
    return SignalingRelay(registry, rooms)


@pytest.fixture
def lifecycle(registry, rooms):
    return ConnectionLifecycle(registry, rooms, sweep_interval=0.01)


@pytest.fixture
def connect(lifecycle):
    """Open a connection on a fresh FakeTransport and clear the ``connected`` greeting."""

    def _connect(transport=None):
        transport = transport or FakeTransport()
        connection = lifecycle.connection_opened(transport)
        transport.clear()
        return connection

    return _connect


@pytest.fixture
def send(relay):
    def _send(connection, **envelope):
        relay.handle_message(connection.connection_id, json.dumps(envelope))

    return _send


@pytest.fixture
def room_with(connect, send, rooms):
    """Create ``room_id`` and join one connection per user id; returns {user_id: connection}."""

    def _room_with(room_id, *user_ids):
        if rooms.get_room(room_id) is None:
            rooms.create_room(room_id)
        members = {}
        for user_id in user_ids:
            connection = connect()
            send(connection, type="joinRoom", roomId=room_id, userId=user_id)
            members[user_id] = connection
        for connection in members.values():
            connection.transport.clear()
        return members

    return _room_with
