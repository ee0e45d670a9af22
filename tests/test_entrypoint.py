"""Tests for the uvicorn server configuration."""

from entrypoint import RelayServer, build_config


class TestBuildConfig:
    def test_keepalive_uses_websocket_protocol_pings(self):
        config = build_config(heartbeat_interval_ms=15000)

        assert config.ws == "websockets"
        assert config.ws_ping_interval == 15.0
        assert config.ws_ping_timeout == 15.0

    def test_server_accepts_config(self):
        server = RelayServer(build_config())

        assert server.config.ws == "websockets"
