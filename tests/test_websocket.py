"""Tests for the WebSocket pass-through tunnel."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from conftest import FakeBackends, FixedRandom, make_config
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from failover_sentinel.balancer import ServerDescriptor
from failover_sentinel.balancer.websocket import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    build_ws_url,
)
from failover_sentinel.server import create_app

HOST = {"Host": "app.test"}


class FakeUpstream:
    """Echoes what it is sent; optionally starts with scripted frames and hangs up."""

    def __init__(self, subprotocol: Optional[str], script: List[Any], hang_up: bool) -> None:
        self.subprotocol = subprotocol
        self.sent: List[Any] = []
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        for item in script:
            self._queue.put_nowait(item)
        if hang_up:
            self._queue.put_nowait(None)

    async def send(self, data: Any) -> None:
        self.sent.append(data)
        await self._queue.put(data)

    def __aiter__(self) -> "FakeUpstream":
        return self

    async def __anext__(self) -> Any:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(None)


class FakeConnector:
    def __init__(
        self,
        refuse: tuple = (),
        subprotocol: Optional[str] = None,
        script: tuple = (),
        hang_up: bool = False,
    ) -> None:
        self.refuse = refuse
        self.subprotocol = subprotocol
        self.script = list(script)
        self.hang_up = hang_up
        self.calls: List[Dict[str, Any]] = []
        self.upstreams: List[FakeUpstream] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeUpstream:
        self.calls.append({"url": url, **kwargs})
        if any(host in url for host in self.refuse):
            raise OSError(f"connection refused: {url}")
        upstream = FakeUpstream(self.subprotocol, self.script, self.hang_up)
        self.upstreams.append(upstream)
        return upstream


def _client(backends: FakeBackends, connector: FakeConnector) -> TestClient:
    app = create_app(
        config=make_config(),
        transport=backends.transport,
        rng=FixedRandom(0.0),
        ws_connect=connector,
    )
    return TestClient(app)


class TestTunnel:
    def test_echo_through_primary(self, backends: FakeBackends) -> None:
        connector = FakeConnector(subprotocol="chat")
        with _client(backends, connector) as client:
            with client.websocket_connect("/ws?room=1", headers=HOST, subprotocols=["chat"]) as ws:
                assert ws.accepted_subprotocol == "chat"
                ws.send_text("ping")
                assert ws.receive_text() == "ping"
                ws.send_bytes(b"\x01\x02")
                assert ws.receive_bytes() == b"\x01\x02"

        call = connector.calls[0]
        assert call["url"] == "ws://primary.test/ws?room=1"
        assert call["subprotocols"] == ["chat"]
        assert call["open_timeout"] == 0.5
        assert ("X-Original-Host", "app.test") in call["additional_headers"]
        names = [k.lower() for k, _ in call["additional_headers"]]
        assert "sec-websocket-key" not in names
        assert "host" not in names
        assert connector.upstreams[0].sent == ["ping", b"\x01\x02"]
        assert connector.upstreams[0].closed
        # The HTTP engine is never involved.
        assert backends.calls == []

    def test_handshake_fails_over_once(self, backends: FakeBackends) -> None:
        connector = FakeConnector(refuse=("primary.test",))
        with _client(backends, connector) as client:
            with client.websocket_connect("/live", headers=HOST) as ws:
                ws.send_text("hi")
                assert ws.receive_text() == "hi"
        assert [c["url"] for c in connector.calls] == [
            "ws://primary.test/live",
            "ws://backup.test/live",
        ]

    def test_all_handshakes_fail(self, backends: FakeBackends) -> None:
        connector = FakeConnector(refuse=("primary.test", "backup.test"))
        with _client(backends, connector) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/live", headers=HOST):
                    pass
        assert exc_info.value.code == CLOSE_TRY_AGAIN_LATER
        assert len(connector.calls) == 2

    def test_unknown_tenant_closes(self, backends: FakeBackends) -> None:
        connector = FakeConnector()
        with _client(backends, connector) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/live", headers={"Host": "nope.test"}):
                    pass
        assert exc_info.value.code == CLOSE_POLICY_VIOLATION
        assert connector.calls == []

    def test_upstream_hang_up_closes_client(self, backends: FakeBackends) -> None:
        connector = FakeConnector(script=("welcome",), hang_up=True)
        with _client(backends, connector) as client:
            with client.websocket_connect("/live", headers=HOST) as ws:
                assert ws.receive_text() == "welcome"
                with pytest.raises(WebSocketDisconnect):
                    ws.receive_text()


class TestUrls:
    def test_build_ws_url(self) -> None:
        server = ServerDescriptor(name="a", host="a.test:9000")
        assert build_ws_url("wss", server, "/socket", "") == "wss://a.test:9000/socket"
        assert build_ws_url("ws", server, "feed", "x=1") == "ws://a.test:9000/feed?x=1"
