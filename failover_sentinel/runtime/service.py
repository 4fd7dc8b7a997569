"""Balancer runtime service: owns the engine components and their lifecycle.

BalancerService builds the shared HTTP client, health store, selector,
dispatcher, orchestrator, tenant resolver and WebSocket tunnel from a
validated :class:`SentinelConfig`. It does NOT import the display layer;
status information is exposed through properties so that callers
(lifespan.py, management API) can render it however they choose.
"""

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from failover_sentinel.balancer import (
    Dispatcher,
    FailoverOrchestrator,
    HealthStore,
    SelectionPolicy,
    ServerSelector,
    TenantResolver,
    WebSocketTunnel,
    WeightCalculator,
)
from failover_sentinel.config.schema import SentinelConfig

logger = logging.getLogger(__name__)


class ServiceState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"


class BalancerService:
    """Manages the lifecycle of the balancing engine.

    Usage::

        service = BalancerService(config)
        await service.start()
        response = await service.orchestrator.handle(ctx)
        await service.stop()

    Parameters
    ----------
    config:
        Validated configuration.
    transport:
        Optional ``httpx`` transport for the outbound client (tests use
        :class:`httpx.MockTransport`).
    rng:
        Optional random source for the selector.
    ws_connect:
        Optional WebSocket connect coroutine for the tunnel.
    """

    def __init__(
        self,
        config: SentinelConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Any = None,
        ws_connect: Any = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._state = ServiceState.PENDING
        self._started_at: Optional[datetime] = None
        self._started_mono: Optional[float] = None

        bal = config.balancer
        self.policy = SelectionPolicy(bal.mode)

        self.store = HealthStore(
            failure_threshold=bal.smart.failure_threshold,
            reset_seconds=bal.smart.circuit_reset_time,
            down_ttl=bal.fast_failover.down_ttl,
        )
        self.weights = WeightCalculator(
            slow_threshold_ms=bal.smart.slow_threshold_ms,
            min_weight=bal.smart.min_weight,
            max_weight=bal.smart.max_weight,
        )
        self.selector = ServerSelector(self.store, self.weights, rng=rng)
        self.resolver = TenantResolver.from_config(config)

        tunnel_kwargs: Dict[str, Any] = {}
        if ws_connect is not None:
            tunnel_kwargs["connect"] = ws_connect
        self.tunnel = WebSocketTunnel(
            self.selector,
            self.policy,
            timeout=bal.timeout,
            scheme="wss" if bal.upstream_scheme == "https" else "ws",
            **tunnel_kwargs,
        )

        self._client: Optional[httpx.AsyncClient] = None
        self._orchestrator: Optional[FailoverOrchestrator] = None

        logger.info(
            "BalancerService initialized (mode=%s, tenants=%d, servers=%d).",
            self.policy.value,
            len(self.resolver.tenants),
            len(self.resolver.all_servers()),
        )

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        if self._state is ServiceState.RUNNING:
            logger.warning("BalancerService already running.")
            return
        bal = self.config.balancer
        client_kwargs: Dict[str, Any] = {
            "follow_redirects": False,
            "timeout": httpx.Timeout(bal.timeout),
            "verify": bal.verify_tls,
        }
        if self._transport is not None:
            client_kwargs["transport"] = self._transport
        self._client = httpx.AsyncClient(**client_kwargs)

        dispatcher = Dispatcher(
            self._client,
            self.store,
            timeout=bal.timeout,
            retries=bal.retries,
            scheme=bal.upstream_scheme,
        )
        self._orchestrator = FailoverOrchestrator(
            self.resolver,
            self.selector,
            dispatcher,
            self.store,
            policy=self.policy,
            retries=bal.retries,
            fast_failover=bal.fast_failover.enabled,
            debug_headers=bal.debug_headers,
        )
        self._state = ServiceState.RUNNING
        self._started_at = datetime.now(timezone.utc)
        self._started_mono = time.monotonic()
        logger.info(
            "BalancerService running (timeout=%.1fs, retries=%d, fast_failover=%s).",
            bal.timeout,
            bal.retries,
            bal.fast_failover.enabled,
        )

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._orchestrator = None
        self._state = ServiceState.STOPPED
        logger.info("BalancerService stopped.")

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def orchestrator(self) -> FailoverOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("BalancerService is not running")
        return self._orchestrator

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @property
    def uptime_seconds(self) -> Optional[float]:
        if self._started_mono is None or self._state is not ServiceState.RUNNING:
            return None
        return time.monotonic() - self._started_mono

    def backend_health(self) -> List[Dict[str, Any]]:
        """Per-server health rows; reading them never changes health state."""
        rows: List[Dict[str, Any]] = []
        for server in self.resolver.all_servers():
            record = self.store.peek(server.name)
            rows.append(
                {
                    "name": server.name,
                    "host": server.host,
                    "base_weight": server.base_weight,
                    "weight": round(self.weights.compute_weight(server, record), 2),
                    "circuit": record.circuit.value,
                    "marked_down": record.down_until is not None,
                    **{
                        k: v
                        for k, v in record.to_dict().items()
                        if k not in ("circuit", "down_until")
                    },
                }
            )
        return rows
