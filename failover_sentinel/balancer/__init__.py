"""Health-aware server selection and dispatch engine.

Public API
----------
- :class:`FailoverOrchestrator`: Top-level per-request control loop
- :class:`ServerSelector` / :class:`SelectionPolicy`: Candidate ordering
- :class:`Dispatcher`: Bounded attempt against one server
- :class:`WeightCalculator`: Health-adjusted weights
- :class:`HealthStore`: Per-server health and circuit state
- :class:`TenantResolver`: Hostname → server set lookup
- :class:`WebSocketTunnel`: Upgrade pass-through
"""

from failover_sentinel.balancer.dispatcher import (
    AttemptOutcome,
    DispatchFailure,
    Dispatcher,
    FailureKind,
)
from failover_sentinel.balancer.health import CircuitState, HealthRecord, HealthStore
from failover_sentinel.balancer.models import (
    ProxyResponse,
    RequestContext,
    ServerDescriptor,
    ServerSet,
)
from failover_sentinel.balancer.orchestrator import FailoverOrchestrator
from failover_sentinel.balancer.selector import SelectionPolicy, ServerSelector
from failover_sentinel.balancer.tenants import TenantResolver
from failover_sentinel.balancer.weights import WeightCalculator
from failover_sentinel.balancer.websocket import WebSocketTunnel

__all__ = [
    "AttemptOutcome",
    "CircuitState",
    "DispatchFailure",
    "Dispatcher",
    "FailoverOrchestrator",
    "FailureKind",
    "HealthRecord",
    "HealthStore",
    "ProxyResponse",
    "RequestContext",
    "SelectionPolicy",
    "ServerDescriptor",
    "ServerSelector",
    "ServerSet",
    "TenantResolver",
    "WebSocketTunnel",
    "WeightCalculator",
]
