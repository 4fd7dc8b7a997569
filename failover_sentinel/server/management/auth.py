"""Bearer-token guard for the balancer's management endpoints.

The token comes from ``FAILOVER_MGMT_TOKEN`` or, failing that, from
``server.management.token``. Without a token every endpoint is open.
``/health`` stays public either way so that external monitors can check
the balancer without credentials.
"""

import hmac
import logging
import os
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from failover_sentinel.display.logging_config import secret_redaction_filter
from failover_sentinel.server.management.schemas import ErrorResponse

logger = logging.getLogger(__name__)

MGMT_TOKEN_ENV_VAR = "FAILOVER_MGMT_TOKEN"

PUBLIC_PATHS: FrozenSet[str] = frozenset({"/health"})


@dataclass(frozen=True)
class ManagementToken:
    """A resolved token and where it came from (``env`` or ``config``)."""

    value: str
    source: str

    def matches(self, presented: str) -> bool:
        return hmac.compare_digest(presented.encode("utf-8"), self.value.encode("utf-8"))


def resolve_token(config_token: Optional[str] = None) -> Optional[ManagementToken]:
    """Pick the management token, environment first.

    Blank values count as unset. The chosen value is registered with the
    log redaction filter before it is returned.
    """
    candidates = (
        ("env", os.environ.get(MGMT_TOKEN_ENV_VAR)),
        ("config", config_token),
    )
    for source, raw in candidates:
        value = (raw or "").strip()
        if value:
            secret_redaction_filter.register(value)
            return ManagementToken(value=value, source=source)
    return None


def _route_path(scope: Scope) -> str:
    """Path below the management mount point."""
    path = scope.get("path", "/")
    root_path = scope.get("root_path", "")
    if root_path and path.startswith(root_path):
        path = path[len(root_path):]
    return path.rstrip("/") or "/"


def _bearer_credentials(scope: Scope) -> Optional[str]:
    value = Headers(scope=scope).get("authorization", "")
    scheme, _, credentials = value.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def _reject(message: str) -> JSONResponse:
    body = ErrorResponse(error="unauthorized", message=message)
    return JSONResponse(
        body.model_dump(),
        status_code=401,
        headers={"WWW-Authenticate": 'Bearer realm="failover-management"'},
    )


class ManagementAuthMiddleware:
    """ASGI middleware guarding the management sub-app.

    Parameters
    ----------
    app:
        The management sub-app.
    token:
        Resolved token, or ``None`` to leave the endpoints open.
    public_paths:
        Paths (relative to the mount point) served without credentials.
    """

    def __init__(
        self,
        app: ASGIApp,
        token: Optional[ManagementToken] = None,
        public_paths: Iterable[str] = PUBLIC_PATHS,
    ) -> None:
        self.app = app
        self.token = token
        self.public_paths = frozenset(public_paths)
        if token is None:
            logger.warning(
                "Management endpoints are unauthenticated; set %s to protect "
                "backend health details.",
                MGMT_TOKEN_ENV_VAR,
            )
        else:
            logger.info("Management endpoints require a bearer token (from %s).", token.source)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.token is None:
            await self.app(scope, receive, send)
            return

        path = _route_path(scope)
        if path in self.public_paths:
            await self.app(scope, receive, send)
            return

        presented = _bearer_credentials(scope)
        if presented is None:
            response = _reject("Expected 'Authorization: Bearer <token>'.")
        elif not self.token.matches(presented):
            client = scope.get("client")
            logger.warning(
                "Rejected management request for %s from %s (bad token).",
                path,
                client[0] if client else "unknown",
            )
            response = _reject("Invalid bearer token.")
        else:
            await self.app(scope, receive, send)
            return
        await response(scope, receive, send)
