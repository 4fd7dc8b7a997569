"""Management API package.

Exposes ``create_management_app`` to build the management ASGI sub-app with auth.
"""

from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware

from failover_sentinel.server.management.auth import ManagementAuthMiddleware, resolve_token
from failover_sentinel.server.management.router import management_routes


def create_management_app(config_token: Optional[str] = None) -> Starlette:
    """Build the management sub-application with auth middleware.

    The token is resolved from the env var or *config_token* at
    construction time.
    """
    token = resolve_token(config_token)
    return Starlette(
        routes=management_routes.routes,
        middleware=[Middleware(ManagementAuthMiddleware, token=token)],
    )


__all__ = ["create_management_app", "management_routes"]
