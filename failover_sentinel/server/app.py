"""Starlette ASGI application factory."""

import logging
from typing import Any, List, Optional

import httpx
from starlette.applications import Starlette
from starlette.routing import BaseRoute, Mount, Route, WebSocketRoute

from failover_sentinel.config.loader import find_config_file, load_sentinel_config
from failover_sentinel.config.schema import SentinelConfig
from failover_sentinel.constants import MANAGEMENT_API_PREFIX, SERVER_NAME
from failover_sentinel.server.handlers import ProxyEndpoint, handle_websocket
from failover_sentinel.server.lifespan import app_lifespan
from failover_sentinel.server.management import create_management_app

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[SentinelConfig] = None,
    *,
    config_path: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    rng: Any = None,
    ws_connect: Any = None,
) -> Starlette:
    """Create and return the Starlette ASGI application.

    When *config* is not given it is loaded from *config_path* (or the
    usual search order). *transport*, *rng* and *ws_connect* are handed
    through to the :class:`BalancerService` built by the lifespan.
    """
    if config is None:
        config_path = find_config_file(config_path)
        config = load_sentinel_config(config_path)

    routes: List[BaseRoute] = []
    mgmt_app: Optional[Starlette] = None
    if config.server.management.enabled:
        mgmt_app = create_management_app(config.server.management.token)
        routes.append(Mount(MANAGEMENT_API_PREFIX, app=mgmt_app))
    routes.extend(
        [
            Route("/{path:path}", endpoint=ProxyEndpoint()),
            WebSocketRoute("/{path:path}", endpoint=handle_websocket),
        ]
    )

    application = Starlette(lifespan=app_lifespan, routes=routes)
    app_s = application.state
    app_s.sentinel_config = config
    app_s.config_file_path = config_path
    app_s.mgmt_app = mgmt_app
    app_s.transport = transport
    app_s.rng = rng
    app_s.ws_connect = ws_connect
    app_s.host = config.server.host
    app_s.port = config.server.port

    logger.info(
        "Starlette ASGI app '%s' created. Proxy on /, Manage on %s",
        SERVER_NAME,
        MANAGEMENT_API_PREFIX if mgmt_app is not None else "(disabled)",
    )
    return application
