"""Management API router: read-only endpoints.

All routes are mounted under ``/_failover/v1/`` by ``server/app.py``.
"""

import logging
from typing import Optional

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, Router

from failover_sentinel.constants import SERVER_NAME, SERVER_VERSION
from failover_sentinel.runtime.service import BalancerService, ServiceState
from failover_sentinel.server.management.schemas import (
    BackendDetail,
    BackendsResponse,
    ErrorResponse,
    HealthResponse,
    HealthServers,
    StatusBalancer,
    StatusResponse,
    StatusService,
)

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────


def _get_service(request: Request) -> Optional[BalancerService]:
    return getattr(request.app.state, "balancer_service", None)


def _error_json(error: str, message: str, status_code: int = 500) -> JSONResponse:
    body = ErrorResponse(error=error, message=message)
    return JSONResponse(body.model_dump(), status_code=status_code)


def _not_ready() -> JSONResponse:
    return _error_json("not_ready", "Balancer service is not running.", status_code=503)


# ── GET /_failover/v1/health ─────────────────────────────────────────────


async def handle_health(request: Request) -> JSONResponse:
    """Liveness check; always public."""
    service = _get_service(request)
    if service is None or service.state is not ServiceState.RUNNING:
        resp = HealthResponse(status="unhealthy", version=SERVER_VERSION)
        return JSONResponse(resp.model_dump(), status_code=503)

    rows = service.backend_health()
    total = len(rows)
    healthy = sum(1 for r in rows if r["circuit"] == "closed" and not r["marked_down"])
    open_circuits = sum(1 for r in rows if r["circuit"] == "open")

    if healthy == total:
        status = "healthy"
    elif healthy > 0:
        status = "degraded"
    else:
        status = "unhealthy"

    resp = HealthResponse(
        status=status,
        uptime_seconds=service.uptime_seconds,
        version=SERVER_VERSION,
        servers=HealthServers(total=total, healthy=healthy, open_circuits=open_circuits),
    )
    return JSONResponse(resp.model_dump())


# ── GET /_failover/v1/status ────────────────────────────────────────────


async def handle_status(request: Request) -> JSONResponse:
    """Service state plus the effective balancer settings."""
    service = _get_service(request)
    if service is None:
        return _not_ready()

    bal = service.config.balancer
    resp = StatusResponse(
        service=StatusService(
            name=SERVER_NAME,
            version=SERVER_VERSION,
            state=service.state.value,
            uptime_seconds=service.uptime_seconds,
            started_at=service.started_at.isoformat() if service.started_at else None,
        ),
        balancer=StatusBalancer(
            mode=service.policy.value,
            timeout=bal.timeout,
            retries=bal.retries,
            upstream_scheme=bal.upstream_scheme,
            fast_failover=bal.fast_failover.enabled,
            down_ttl=bal.fast_failover.down_ttl,
            debug_headers=bal.debug_headers,
        ),
        config_path=getattr(request.app.state, "config_file_path", None),
        tenants=service.resolver.tenants,
        default_servers=bool(service.config.default_servers),
    )
    return JSONResponse(resp.model_dump())


# ── GET /_failover/v1/backends ──────────────────────────────────────────


async def handle_backends(request: Request) -> JSONResponse:
    """Per-server health snapshot with the current adaptive weight."""
    service = _get_service(request)
    if service is None:
        return _not_ready()

    backends = [BackendDetail(**row) for row in service.backend_health()]
    resp = BackendsResponse(backends=backends)
    return JSONResponse(resp.model_dump())


management_routes = Router(
    routes=[
        Route("/health", endpoint=handle_health, methods=["GET"]),
        Route("/status", endpoint=handle_status, methods=["GET"]),
        Route("/backends", endpoint=handle_backends, methods=["GET"]),
    ]
)
