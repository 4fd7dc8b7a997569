"""
Failover Sentinel - a health-aware HTTP(S) failover load balancer.

Routes inbound requests to a small set of backend servers per tenant
(typically a primary and a backup), steers traffic away from unhealthy
backends using a circuit breaker and latency-weighted selection, and
restores traffic once they recover.
"""

from failover_sentinel.constants import SERVER_NAME, SERVER_VERSION

__version__ = SERVER_VERSION
__app_name__ = SERVER_NAME

__all__ = [
    "SERVER_NAME",
    "SERVER_VERSION",
    "__version__",
    "__app_name__",
]
