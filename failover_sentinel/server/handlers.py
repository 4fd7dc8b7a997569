"""Inbound request handlers: HTTP catch-all and WebSocket pass-through.

Both handlers pull the :class:`BalancerService` off ``app.state`` (set by
the lifespan) and translate between Starlette objects and the balancer's
own request/response types.
"""

import logging
from typing import List, Optional

import anyio
from anyio.abc import TaskGroup
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send
from starlette.websockets import WebSocket

from failover_sentinel.balancer import ProxyResponse, RequestContext
from failover_sentinel.balancer.websocket import CLOSE_INTERNAL_ERROR, CLOSE_POLICY_VIOLATION
from failover_sentinel.errors import TenantNotFoundError
from failover_sentinel.runtime.service import BalancerService

logger = logging.getLogger(__name__)

# Nginx convention for "client closed request"; never actually delivered.
CLIENT_CLOSED_STATUS = 499


def _get_service(app_state: object) -> Optional[BalancerService]:
    return getattr(app_state, "balancer_service", None)


async def build_request_context(request: Request) -> RequestContext:
    """Materialize the inbound request so it can be replayed."""
    scope = request.scope
    raw_path = scope.get("raw_path")
    path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else scope.get("path", "/")
    body = await request.body()
    return RequestContext(
        method=request.method,
        path=path,
        query=scope.get("query_string", b"").decode("latin-1"),
        headers=[(k.decode("latin-1"), v.decode("latin-1")) for k, v in scope["headers"]],
        body=body,
        host=request.headers.get("host", ""),
        client_ip=request.client.host if request.client else None,
        scheme=request.url.scheme,
    )


def to_starlette_response(proxy: ProxyResponse, method: str = "GET") -> Response:
    """Convert a :class:`ProxyResponse`, preserving duplicate headers.

    Starlette computes ``Content-Length`` from the body, except for HEAD
    where the upstream value describes the body that was not sent.
    """
    response = Response(content=proxy.body, status_code=proxy.status_code)
    upstream_length = proxy.header("content-length") if method == "HEAD" else None
    if upstream_length is not None:
        response.raw_headers = [
            (k, v) for k, v in response.raw_headers if k != b"content-length"
        ]
    response.raw_headers.extend(
        (k.lower().encode("latin-1"), v.encode("latin-1"))
        for k, v in proxy.headers
        if k.lower() != "content-length" or upstream_length is not None
    )
    return response


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def handle_proxy(request: Request) -> Response:
    """Hand the request to the orchestrator, abandoning it if the client leaves."""
    service = _get_service(request.app.state)
    if service is None:
        logger.error("Request received before the balancer service started.")
        return Response("Service not ready", status_code=503, media_type="text/plain")

    ctx = await build_request_context(request)
    logger.debug(
        "[%s] %s %s%s (host=%s, client=%s)",
        ctx.request_id,
        ctx.method,
        ctx.path,
        f"?{ctx.query}" if ctx.query else "",
        ctx.host,
        ctx.client_ip,
    )

    result: List[ProxyResponse] = []

    async def run_proxy(tg: TaskGroup) -> None:
        result.append(await service.orchestrator.handle(ctx))
        tg.cancel_scope.cancel()

    async def watch_client(tg: TaskGroup) -> None:
        await _wait_for_disconnect(request)
        tg.cancel_scope.cancel()

    async with anyio.create_task_group() as tg:
        tg.start_soon(run_proxy, tg)
        tg.start_soon(watch_client, tg)

    if not result:
        logger.info(
            "[%s] Client disconnected after %.0fms; attempts %s abandoned.",
            ctx.request_id,
            ctx.elapsed_ms,
            ctx.metadata.get("attempted", []),
        )
        return Response(status_code=CLIENT_CLOSED_STATUS)

    proxy = result[0]
    logger.info(
        "[%s] %s %s → %d via %s in %.0fms",
        ctx.request_id,
        ctx.method,
        ctx.path,
        proxy.status_code,
        proxy.served_by or "-",
        ctx.elapsed_ms,
    )
    return to_starlette_response(proxy, ctx.method)


class ProxyEndpoint:
    """Raw ASGI endpoint so that every HTTP method, WebDAV and custom
    verbs included, reaches the orchestrator unchanged."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = await handle_proxy(Request(scope, receive))
        await response(scope, receive, send)


async def handle_websocket(websocket: WebSocket) -> None:
    """Catch-all WebSocket endpoint; tunnels to a backend server."""
    service = _get_service(websocket.app.state)
    if service is None:
        await websocket.close(code=CLOSE_INTERNAL_ERROR)
        return

    try:
        server_set = service.resolver.resolve(websocket.headers.get("host"))
    except TenantNotFoundError:
        await websocket.close(code=CLOSE_POLICY_VIOLATION)
        return

    await service.tunnel.serve(websocket, server_set)
