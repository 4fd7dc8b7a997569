"""Runtime service layer for Failover Sentinel."""

from failover_sentinel.runtime.service import BalancerService, ServiceState

__all__ = ["BalancerService", "ServiceState"]
