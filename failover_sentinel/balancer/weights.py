"""Dynamic selection weights derived from observed server health."""

from __future__ import annotations

from failover_sentinel.balancer.health.store import HealthRecord
from failover_sentinel.balancer.models import ServerDescriptor
from failover_sentinel.constants import (
    DEFAULT_MAX_WEIGHT,
    DEFAULT_MIN_WEIGHT,
    DEFAULT_SLOW_THRESHOLD_MS,
)


class WeightCalculator:
    """Compute a health-adjusted weight for a server.

    Starting from the static base weight, a slow server is penalised
    linearly in its average latency, then recent failures divide the
    result again. An open circuit collapses to ``min_weight`` so a
    recovering server still has a small chance to be tried. The result
    is clamped to ``[min_weight, max_weight]``.
    """

    def __init__(
        self,
        slow_threshold_ms: float = DEFAULT_SLOW_THRESHOLD_MS,
        min_weight: float = DEFAULT_MIN_WEIGHT,
        max_weight: float = DEFAULT_MAX_WEIGHT,
    ) -> None:
        if slow_threshold_ms <= 0:
            raise ValueError("slow_threshold_ms must be positive")
        if min_weight > max_weight:
            raise ValueError("min_weight must not exceed max_weight")
        self.slow_threshold_ms = slow_threshold_ms
        self.min_weight = min_weight
        self.max_weight = max_weight

    def compute_weight(self, descriptor: ServerDescriptor, health: HealthRecord) -> float:
        weight = float(descriptor.base_weight)

        if health.avg_response_time_ms > self.slow_threshold_ms:
            weight /= health.avg_response_time_ms / self.slow_threshold_ms

        if health.consecutive_failures > 0:
            weight /= health.consecutive_failures + 1

        if health.circuit_open:
            weight = self.min_weight

        return max(self.min_weight, min(self.max_weight, weight))
