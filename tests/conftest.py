"""Shared fixtures: fake clock, deterministic randomness, fake backends."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Union

import httpx
import pytest

from failover_sentinel.balancer import HealthStore, ServerDescriptor, ServerSet
from failover_sentinel.config.loader import validate_config_data


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FixedRandom:
    """Cycles through the given ``random()`` values."""

    def __init__(self, *values: float) -> None:
        self._values = list(values) or [0.0]
        self._idx = 0

    def random(self) -> float:
        value = self._values[self._idx % len(self._values)]
        self._idx += 1
        return value


Behaviour = Union[str, int, Callable[[httpx.Request], Any]]


class FakeBackends:
    """Per-host behaviour for an :class:`httpx.MockTransport`.

    Behaviours: ``"ok"`` (200 naming the host), ``"down"`` (connection
    refused), ``"timeout"`` (connect timeout), an ``int`` status code, or a
    callable taking the request.
    """

    def __init__(self) -> None:
        self.behaviour: Dict[str, Behaviour] = {}
        self.calls: List[httpx.Request] = []

    def set(self, host: str, behaviour: Behaviour) -> None:
        self.behaviour[host] = behaviour

    def handler(self, request: httpx.Request) -> Any:
        self.calls.append(request)
        host = request.url.host
        behaviour = self.behaviour.get(host, "ok")
        if callable(behaviour):
            return behaviour(request)
        if behaviour == "down":
            raise httpx.ConnectError("connection refused", request=request)
        if behaviour == "timeout":
            raise httpx.ConnectTimeout("timed out", request=request)
        if isinstance(behaviour, int):
            return httpx.Response(behaviour, text=f"{host} says {behaviour}")
        return httpx.Response(200, text=f"hello from {host}", headers={"X-Backend": host})

    @property
    def hosts(self) -> List[str]:
        return [r.url.host for r in self.calls]

    def count(self, host: str) -> int:
        return self.hosts.count(host)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


PRIMARY = ServerDescriptor(name="primary", host="primary.test", base_weight=80)
BACKUP = ServerDescriptor(name="backup", host="backup.test", base_weight=20)


def make_config(**balancer: Any):
    """Validated config with one two-server tenant at ``app.test``."""
    raw = {
        "balancer": {"upstream_scheme": "http", "timeout": 0.5, **balancer},
        "tenants": {
            "app.test": {
                "servers": [
                    {"name": "primary", "host": "primary.test", "weight": 80},
                    {"name": "backup", "host": "backup.test", "weight": 20},
                ]
            }
        },
    }
    return validate_config_data(raw)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> HealthStore:
    return HealthStore(failure_threshold=3, reset_seconds=30.0, down_ttl=30.0, clock=clock)


@pytest.fixture()
def backends() -> FakeBackends:
    return FakeBackends()


@pytest.fixture()
def server_set() -> ServerSet:
    return ServerSet(servers=(PRIMARY, BACKUP), tenant="app.test")
