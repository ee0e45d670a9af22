"""
Shared fixtures for the signaling relay tests.

``RecordingConnection`` is a real ``Connection`` whose frames are captured in
a list instead of going through a writer task, so room, router and registry
logic can be tested without a socket.
"""

import json
from unittest.mock import MagicMock

import pytest
from starlette.websockets import WebSocketState

from backend import RoomDirectory
from connection import Connection
from registry import ConnectionRegistry


class RecordingConnection(Connection):
    def __init__(self, client_id=None, room_id=None):
        websocket = MagicMock()
        websocket.application_state = WebSocketState.CONNECTED
        websocket.client_state = WebSocketState.CONNECTED
        super().__init__(websocket, send_queue_size=16)
        self.client_id = client_id
        self.room_id = room_id
        self.sent = []

    def send(self, message):
        if not self.is_open:
            return False
        self.sent.append(json.loads(json.dumps(message)))
        return True

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


@pytest.fixture
def make_connection():
    def _make(client_id=None, room_id=None):
        return RecordingConnection(client_id=client_id, room_id=room_id)

    return _make


@pytest.fixture
def directory():
    return RoomDirectory()


@pytest.fixture
def registry():
    return ConnectionRegistry(heartbeat_interval_ms=1000)
