"""Circuit breaker states for backend servers.

States::

    CLOSED ──(N failures)──► OPEN ──(reset time)──► HALF_OPEN
       ▲                                                │
       └──────────────(trial success)───────────────────┘
                      (trial fail) ──► OPEN

The transition logic lives in :class:`~failover_sentinel.balancer.health.store.HealthStore`
so that it runs under the store lock.
"""

from __future__ import annotations

from enum import Enum

from failover_sentinel.constants import (
    DEFAULT_CIRCUIT_RESET_SECONDS,
    DEFAULT_FAILURE_THRESHOLD,
)

DEFAULT_RESET_SECONDS = DEFAULT_CIRCUIT_RESET_SECONDS

__all__ = ["CircuitState", "DEFAULT_FAILURE_THRESHOLD", "DEFAULT_RESET_SECONDS"]


class CircuitState(Enum):
    """States for the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"
