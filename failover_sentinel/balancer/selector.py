"""Server selection policies.

Turns a :class:`ServerSet` plus current health into an ordered list of
servers to try. Every member of the set appears at most once; the order is
the try sequence.
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from failover_sentinel.balancer.health.store import HealthStore
from failover_sentinel.balancer.models import ServerDescriptor, ServerSet
from failover_sentinel.balancer.weights import WeightCalculator
from failover_sentinel.errors import ConfigurationError

logger = logging.getLogger(__name__)


class SelectionPolicy(str, Enum):
    """How candidates are ordered for a request."""

    FAILOVER = "failover"
    WEIGHTED = "weighted"
    SMART = "smart"


class RandomSource(Protocol):
    """Anything with ``random() -> float`` in ``[0, 1)``."""

    def random(self) -> float: ...


class ServerSelector:
    """Order candidates for a request under a :class:`SelectionPolicy`.

    Parameters
    ----------
    store:
        Health store; consulted for circuit state (which may move an open
        circuit to half-open) and, for the smart policy, health records.
    weights:
        Calculator used by the smart policy.
    rng:
        Random source for weighted draws; defaults to :class:`random.Random`.
    """

    def __init__(
        self,
        store: HealthStore,
        weights: Optional[WeightCalculator] = None,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self._store = store
        self._weights = weights or WeightCalculator()
        self._rng: RandomSource = rng if rng is not None else random.Random()

    def select(
        self,
        server_set: ServerSet,
        policy: SelectionPolicy = SelectionPolicy.SMART,
    ) -> List[ServerDescriptor]:
        servers = list(server_set.servers)
        if not servers:
            raise ConfigurationError(f"No servers configured for tenant '{server_set.tenant}'")
        if len(servers) == 1:
            return servers

        policy = SelectionPolicy(policy)
        eligible = [s for s in servers if self._store.is_available(s.name)]

        if policy is SelectionPolicy.FAILOVER:
            ordered = eligible or servers
        elif policy is SelectionPolicy.WEIGHTED:
            if eligible:
                ordered = self._weighted_order(eligible, [s.base_weight for s in eligible])
            else:
                ordered = servers
        else:
            pool = eligible or servers
            weights = [self._weights.compute_weight(s, self._store.get(s.name)) for s in pool]
            ordered = self._weighted_order(pool, weights)

        if not eligible:
            logger.warning(
                "[%s] All circuits open; last-resort order %s",
                server_set.tenant,
                [s.name for s in ordered],
            )
        else:
            logger.debug(
                "[%s] %s selection → %s",
                server_set.tenant,
                policy.value,
                [s.name for s in ordered],
            )
        return ordered

    def _weighted_order(
        self,
        pool: Sequence[ServerDescriptor],
        weights: Sequence[float],
    ) -> List[ServerDescriptor]:
        """Draw one server by weight and put it first; the rest keep their order."""
        total = sum(weights)
        if total <= 0:
            return list(pool)

        draw = self._rng.random() * total
        # Float rounding can leave the draw at the very top of the range.
        selected = max(idx for idx, weight in enumerate(weights) if weight > 0)
        cumulative = 0.0
        for idx, weight in enumerate(weights):
            cumulative += weight
            if draw < cumulative:
                selected = idx
                break

        rest = [s for idx, s in enumerate(pool) if idx != selected]
        return [pool[selected], *rest]
