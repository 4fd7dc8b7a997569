"""Health tracking package for backend servers.

Public API
----------
- :class:`HealthStore`: Per-server health records with circuit breaker
- :class:`HealthRecord`: Per-server health record
- :class:`CircuitState`: Circuit breaker state enum
"""

from failover_sentinel.balancer.health.circuit_breaker import CircuitState
from failover_sentinel.balancer.health.store import HealthRecord, HealthStore

__all__ = [
    "CircuitState",
    "HealthRecord",
    "HealthStore",
]
