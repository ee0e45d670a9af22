"""
End-to-end tests through the FastAPI application.

These drive real WebSocket sessions with Starlette's TestClient, so they
cover the writer task, the read loop and the close paths together.
"""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app import create_app
from constants import CLOSE_POLICY_VIOLATION


def join(ws, room_id, client_id):
    ws.send_json({"type": "join", "roomId": room_id, "clientId": client_id})


class TestHealthCheck:
    def test_get_root_returns_status_and_timestamp(self):
        with TestClient(create_app()) as client:
            before = int(time.time() * 1000)
            response = client.get("/")
            after = int(time.time() * 1000)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert before <= body["ts"] <= after

    @pytest.mark.parametrize("method,path", [("get", "/rooms"), ("get", "/health"), ("post", "/"), ("delete", "/")])
    def test_everything_else_is_404(self, method, path):
        with TestClient(create_app()) as client:
            response = getattr(client, method)(path)

        assert response.status_code == 404


class TestSignalingScenario:
    def test_two_peers_join_negotiate_and_leave(self):
        app = create_app()
        with TestClient(app) as client:
            with client.websocket_connect("/") as a:
                join(a, "r1", "A")
                assert a.receive_json() == {"type": "existing-peers", "peers": []}

                with client.websocket_connect("/") as b:
                    join(b, "r1", "B")
                    assert b.receive_json() == {"type": "existing-peers", "peers": ["A"]}
                    assert a.receive_json() == {"type": "new-peer", "clientId": "B"}

                    sdp = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0"}
                    b.send_json({"type": "offer", "to": "A", "sdp": sdp})
                    assert a.receive_json() == {"type": "offer", "to": "A", "from": "B", "sdp": sdp}

                    a.send_json({"type": "answer", "to": "B", "sdp": {"type": "answer"}})
                    assert b.receive_json() == {"type": "answer", "to": "B", "from": "A", "sdp": {"type": "answer"}}

                assert a.receive_json() == {"type": "peer-left", "clientId": "B"}
                assert app.state.directory.get_users_in_room("r1") == ["A"]

            assert app.state.directory.room_count == 0
            assert len(app.state.registry) == 0

    def test_malformed_frames_do_not_close_the_connection(self):
        with TestClient(create_app()) as client:
            with client.websocket_connect("/") as ws:
                ws.send_text("this is not json")
                ws.send_text("[1, 2, 3]")
                ws.send_json({"type": "mystery"})
                join(ws, "r1", "A")

                assert ws.receive_json() == {"type": "existing-peers", "peers": []}

    def test_incomplete_join_gets_error_and_connection_survives(self):
        with TestClient(create_app()) as client:
            with client.websocket_connect("/") as ws:
                ws.send_json({"type": "join", "roomId": "r1"})
                assert ws.receive_json() == {"type": "error", "message": "join requires roomId and clientId"}

                join(ws, "r1", "A")
                assert ws.receive_json() == {"type": "existing-peers", "peers": []}

    def test_offer_to_unknown_peer_is_silently_dropped(self):
        with TestClient(create_app()) as client:
            with client.websocket_connect("/") as ws:
                join(ws, "r1", "A")
                ws.receive_json()

                ws.send_json({"type": "offer", "to": "nobody", "sdp": {}})
                # Provoke a known reply; anything the offer produced would arrive first
                ws.send_json({"type": "join"})
                assert ws.receive_json() == {"type": "error", "message": "join requires roomId and clientId"}


class TestRateLimit:
    def test_flooding_client_gets_one_error_then_policy_close(self):
        app = create_app(rate_limit_window_ms=60000, rate_limit_max_msgs=3)
        with TestClient(app) as client:
            with client.websocket_connect("/") as b:
                join(b, "r1", "B")
                b.receive_json()

                with client.websocket_connect("/") as ws:
                    join(ws, "r1", "A")
                    assert ws.receive_json() == {"type": "existing-peers", "peers": ["B"]}
                    assert b.receive_json() == {"type": "new-peer", "clientId": "A"}

                    for _ in range(3):
                        ws.send_json({"type": "noop"})

                    assert ws.receive_json() == {"type": "error", "message": "rate limit exceeded"}
                    with pytest.raises(WebSocketDisconnect) as exc:
                        ws.receive_json()
                    assert exc.value.code == CLOSE_POLICY_VIOLATION

                # The flooder's membership is still cleaned up
                assert b.receive_json() == {"type": "peer-left", "clientId": "A"}


class TestHeartbeat:
    def test_idle_client_is_not_dropped(self):
        """Keepalive is protocol-level, so a client that never sends stays connected."""
        app = create_app(heartbeat_interval_ms=20)
        with TestClient(app) as client:
            with client.websocket_connect("/") as ws:
                join(ws, "r1", "A")
                assert ws.receive_json() == {"type": "existing-peers", "peers": []}

                # Many sweep intervals with no traffic in either direction
                time.sleep(0.2)
                assert len(app.state.registry) == 1

                # The next frame the client sees is the reply to its own request
                ws.send_json({"type": "join"})
                assert ws.receive_json() == {"type": "error", "message": "join requires roomId and clientId"}

            assert app.state.directory.get_users_in_room("r1") == []
