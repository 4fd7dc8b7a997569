"""WebSocket pass-through tunnel.

Upgrade requests bypass the retry/health engine: the handshake is tried
against the first selected server and, failing that, one fallback. After
that the tunnel just copies frames in both directions until one side
closes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

import anyio
from anyio.abc import TaskGroup
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from failover_sentinel.balancer.dispatcher import HOP_BY_HOP_HEADERS
from failover_sentinel.balancer.models import Headers, ServerDescriptor, ServerSet
from failover_sentinel.balancer.selector import SelectionPolicy, ServerSelector
from failover_sentinel.constants import DEFAULT_TIMEOUT, ORIGINAL_HOST_HEADER

logger = logging.getLogger(__name__)

# Handshake headers the client library generates itself.
_HANDSHAKE_HEADERS = frozenset(
    {
        "host",
        "sec-websocket-key",
        "sec-websocket-version",
        "sec-websocket-extensions",
        "sec-websocket-protocol",
        "sec-websocket-accept",
        "content-length",
        "x-forwarded-for",
        "x-real-ip",
        ORIGINAL_HOST_HEADER.lower(),
    }
)

# Close codes (RFC 6455 §7.4.1)
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013

MAX_HANDSHAKE_CANDIDATES = 2

Connector = Callable[..., Awaitable[Any]]


def build_ws_url(scheme: str, server: ServerDescriptor, path: str, query: str) -> str:
    url = f"{scheme}://{server.host}{path if path.startswith('/') else '/' + path}"
    if query:
        url += f"?{query}"
    return url


def build_ws_headers(websocket: WebSocket) -> Headers:
    headers: Headers = [
        (k, v)
        for k, v in websocket.headers.items()
        if k.lower() not in _HANDSHAKE_HEADERS and k.lower() not in HOP_BY_HOP_HEADERS
    ]
    host = websocket.headers.get("host")
    if host:
        headers.append((ORIGINAL_HOST_HEADER, host))
    if websocket.client is not None:
        prior = websocket.headers.get("x-forwarded-for")
        chain = f"{prior}, {websocket.client.host}" if prior else websocket.client.host
        headers.append(("X-Forwarded-For", chain))
        headers.append(("X-Real-IP", websocket.client.host))
    return headers


class WebSocketTunnel:
    """Bridge an inbound Starlette WebSocket to a backend server.

    Parameters
    ----------
    selector:
        Used once per connection to order the handshake candidates.
    policy:
        Selection policy (same as for HTTP traffic).
    timeout:
        Seconds allowed for the upstream handshake.
    scheme:
        ``wss`` or ``ws``.
    connect:
        Client connect coroutine, injectable for tests. Called as
        ``connect(url, additional_headers=..., subprotocols=..., open_timeout=...)``.
    """

    def __init__(
        self,
        selector: ServerSelector,
        policy: SelectionPolicy = SelectionPolicy.SMART,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        scheme: str = "wss",
        connect: Connector = ws_connect,
    ) -> None:
        self._selector = selector
        self.policy = SelectionPolicy(policy)
        self.timeout = timeout
        self.scheme = scheme
        self._connect = connect

    async def serve(self, websocket: WebSocket, server_set: ServerSet) -> Optional[str]:
        """Run the tunnel; returns the name of the server used, if any."""
        candidates = self._selector.select(server_set, self.policy)[:MAX_HANDSHAKE_CANDIDATES]
        path = websocket.scope.get("path", "/")
        query = websocket.scope.get("query_string", b"").decode("latin-1")
        headers = build_ws_headers(websocket)
        offered = _offered_subprotocols(websocket)

        upstream = None
        used: Optional[ServerDescriptor] = None
        for server in candidates:
            url = build_ws_url(self.scheme, server, path, query)
            try:
                upstream = await self._connect(
                    url,
                    additional_headers=headers,
                    subprotocols=offered or None,
                    open_timeout=self.timeout,
                )
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning(
                    "WebSocket handshake with %s failed: %s: %s",
                    server.name,
                    type(exc).__name__,
                    exc,
                )
                continue
            used = server
            break

        if upstream is None or used is None:
            logger.error(
                "[%s] No backend accepted the WebSocket upgrade (tried %s)",
                server_set.tenant,
                [s.name for s in candidates],
            )
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return None

        await websocket.accept(subprotocol=getattr(upstream, "subprotocol", None))
        logger.info("[%s] WebSocket tunnel open → %s%s", server_set.tenant, used.name, path)
        try:
            await self._pump(websocket, upstream)
        finally:
            # Runs even when the connection task is being cancelled.
            with anyio.move_on_after(self.timeout, shield=True):
                await upstream.close()
                if (
                    websocket.application_state == WebSocketState.CONNECTED
                    and websocket.client_state == WebSocketState.CONNECTED
                ):
                    try:
                        await websocket.close()
                    except (RuntimeError, WebSocketDisconnect):
                        # Client already went away.
                        pass
            logger.info("[%s] WebSocket tunnel to %s closed", server_set.tenant, used.name)
        return used.name

    async def _pump(self, websocket: WebSocket, upstream: Any) -> None:
        async def run(pump: Callable[[WebSocket, Any], Awaitable[None]], tg: TaskGroup) -> None:
            try:
                await pump(websocket, upstream)
            except (ConnectionClosed, WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("WebSocket pump ended with %s: %s", type(exc).__name__, exc)
            # Either side finishing ends the tunnel.
            tg.cancel_scope.cancel()

        async with anyio.create_task_group() as tg:
            tg.start_soon(run, _client_to_upstream, tg)
            tg.start_soon(run, _upstream_to_client, tg)


def _offered_subprotocols(websocket: WebSocket) -> List[str]:
    raw = websocket.headers.get("sec-websocket-protocol", "")
    return [p.strip() for p in raw.split(",") if p.strip()]


async def _client_to_upstream(websocket: WebSocket, upstream: Any) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            if message.get("text") is not None:
                await upstream.send(message["text"])
            elif message.get("bytes") is not None:
                await upstream.send(message["bytes"])
    except (ConnectionClosed, WebSocketDisconnect):
        return


async def _upstream_to_client(websocket: WebSocket, upstream: Any) -> None:
    try:
        async for data in upstream:
            if isinstance(data, str):
                await websocket.send_text(data)
            else:
                await websocket.send_bytes(data)
    except (ConnectionClosed, WebSocketDisconnect):
        return
