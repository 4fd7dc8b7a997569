"""Tests for the per-request failover loop."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from conftest import BACKUP, PRIMARY, FakeBackends, FixedRandom

from failover_sentinel.balancer import (
    Dispatcher,
    FailoverOrchestrator,
    HealthStore,
    RequestContext,
    SelectionPolicy,
    ServerSelector,
    ServerSet,
    TenantResolver,
)
from failover_sentinel.balancer.orchestrator import NOT_FOUND_BODY, UNAVAILABLE_BODY


def _ctx(host: str = "app.test") -> RequestContext:
    return RequestContext(
        method="GET",
        path="/",
        headers=[("Host", host)],
        host=host,
        client_ip="198.51.100.4",
    )


def _handle(
    backends: FakeBackends,
    store: HealthStore,
    server_set: ServerSet,
    ctx: RequestContext,
    *,
    policy: SelectionPolicy = SelectionPolicy.FAILOVER,
    rng: Any = None,
    **kwargs: Any,
):
    resolver = TenantResolver({server_set.tenant: server_set})
    selector = ServerSelector(store, rng=rng or FixedRandom(0.0))

    async def _run():
        async with httpx.AsyncClient(transport=backends.transport) as client:
            dispatcher = Dispatcher(client, store, scheme="http", timeout=1.0)
            orchestrator = FailoverOrchestrator(
                resolver, selector, dispatcher, store, policy=policy, **kwargs
            )
            return await orchestrator.handle(ctx)

    return asyncio.run(_run())


class TestFailoverFlow:
    def test_primary_serves(self, backends, store, server_set) -> None:
        resp = _handle(backends, store, server_set, _ctx())
        assert resp.status_code == 200
        assert resp.served_by == "primary"
        assert resp.header("X-Served-By") == "primary"
        assert resp.header("X-LB-Mode") == "failover"
        assert backends.hosts == ["primary.test"]

    def test_debug_headers_disabled(self, backends, store, server_set) -> None:
        resp = _handle(backends, store, server_set, _ctx(), debug_headers=False)
        assert resp.header("X-Served-By") is None
        assert resp.header("X-LB-Mode") is None

    def test_fails_over_to_backup(self, backends, store, server_set) -> None:
        backends.set("primary.test", "down")
        ctx = _ctx()
        resp = _handle(backends, store, server_set, ctx, retries=0)
        assert resp.status_code == 200
        assert resp.header("X-Served-By") == "backup"
        assert ctx.metadata["attempted"] == ["primary", "backup"]
        assert store.get("primary").consecutive_failures == 1

    def test_failover_policy_retries_same_server(self, backends, store, server_set) -> None:
        backends.set("primary.test", 500)
        _handle(backends, store, server_set, _ctx(), retries=1)
        assert backends.hosts == ["primary.test", "primary.test", "backup.test"]

    def test_smart_policy_never_retries_same_server(self, backends, store, server_set) -> None:
        backends.set("primary.test", 500)
        _handle(
            backends, store, server_set, _ctx(), policy=SelectionPolicy.SMART, retries=3
        )
        assert backends.hosts == ["primary.test", "backup.test"]

    def test_all_fail_returns_503(self, backends, store, server_set) -> None:
        backends.set("primary.test", "down")
        backends.set("backup.test", 503)
        resp = _handle(backends, store, server_set, _ctx(), retries=0)
        assert resp.status_code == 503
        assert resp.header("Content-Type") == "text/html"
        assert resp.body == UNAVAILABLE_BODY.encode()
        assert resp.header("X-Served-By") is None

    def test_unknown_tenant_returns_404(self, backends, store, server_set) -> None:
        resp = _handle(backends, store, server_set, _ctx(host="nope.test"))
        assert resp.status_code == 404
        assert resp.body == NOT_FOUND_BODY.encode()
        assert backends.calls == []

    def test_empty_server_set_returns_404(self, backends, store) -> None:
        empty = ServerSet(servers=(), tenant="app.test")
        resp = _handle(backends, store, empty, _ctx())
        assert resp.status_code == 404

    def test_unexpected_backend_error_fails_over(self, backends, store, server_set) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("bug")

        backends.set("primary.test", boom)
        resp = _handle(backends, store, server_set, _ctx())
        assert resp.status_code == 200
        assert resp.header("X-Served-By") == "backup"
        assert store.get("primary").consecutive_failures == 1

    def test_unexpected_error_everywhere_becomes_503(self, backends, store, server_set) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("bug")

        backends.set("primary.test", boom)
        backends.set("backup.test", boom)
        resp = _handle(backends, store, server_set, _ctx())
        assert resp.status_code == 503

    def test_selection_bug_becomes_503(self, backends, store, server_set) -> None:
        class BrokenRandom:
            def random(self) -> float:
                raise RuntimeError("bug")

        resp = _handle(
            backends, store, server_set, _ctx(), policy=SelectionPolicy.SMART, rng=BrokenRandom()
        )
        assert resp.status_code == 503
        assert backends.calls == []

    def test_open_circuit_skipped(self, backends, store, server_set) -> None:
        for _ in range(3):
            store.record_failure("primary")
        resp = _handle(backends, store, server_set, _ctx())
        assert resp.header("X-Served-By") == "backup"
        assert backends.hosts == ["backup.test"]


class TestHalfOpenTrial:
    def test_trial_success_closes_circuit(self, backends, store, server_set, clock) -> None:
        for _ in range(3):
            store.record_failure("primary")
        clock.advance(30.0)
        resp = _handle(backends, store, server_set, _ctx())
        assert resp.header("X-Served-By") == "primary"
        assert store.get("primary").consecutive_failures == 0
        assert not store.get("primary").circuit_open

    def test_trial_failure_reopens(self, backends, store, server_set, clock) -> None:
        for _ in range(3):
            store.record_failure("primary")
        clock.advance(30.0)
        backends.set("primary.test", "down")
        resp = _handle(backends, store, server_set, _ctx(), retries=0)
        assert resp.header("X-Served-By") == "backup"
        assert store.get("primary").circuit_open

    def test_non_ascii_header_does_not_strand_trial(
        self, backends, store, server_set, clock
    ) -> None:
        for _ in range(3):
            store.record_failure("primary")
        clock.advance(30.0)
        ctx = RequestContext(
            method="GET",
            path="/",
            headers=[("Host", "app.test"), ("X-Name", "é")],
            host="app.test",
        )
        resp = _handle(backends, store, server_set, ctx)
        assert resp.status_code == 200
        assert resp.header("X-Served-By") == "primary"
        assert not store.get("primary").trial_in_flight
        assert not store.get("primary").circuit_open

    def test_trial_slot_taken_skips_server(self, backends, store, server_set, clock) -> None:
        for _ in range(3):
            store.record_failure("primary")
        clock.advance(30.0)
        assert store.is_available("primary")
        # Another in-flight request already holds the trial slot.
        store.try_acquire("primary")
        resp = _handle(backends, store, server_set, _ctx())
        assert resp.header("X-Served-By") == "backup"
        assert "primary.test" not in backends.hosts


class TestFastFailover:
    def test_marked_down_server_skipped(self, backends, store, server_set) -> None:
        store.mark_down("primary")
        resp = _handle(backends, store, server_set, _ctx(), fast_failover=True)
        assert resp.header("X-Served-By") == "backup"
        assert backends.hosts == ["backup.test"]

    def test_down_cache_ignored_when_disabled(self, backends, store, server_set) -> None:
        store.mark_down("primary")
        resp = _handle(backends, store, server_set, _ctx(), fast_failover=False)
        assert resp.header("X-Served-By") == "primary"

    def test_bypass_attempt_against_primary(self, backends, store, server_set) -> None:
        store.mark_down("primary")
        backends.set("backup.test", "down")
        ctx = _ctx()
        resp = _handle(backends, store, server_set, ctx, fast_failover=True, retries=0)
        assert resp.status_code == 200
        assert resp.header("X-Served-By") == "primary"
        assert backends.hosts == ["backup.test", "primary.test"]
        assert ctx.metadata["attempted"] == ["backup", "primary"]
        assert not store.is_marked_down("primary")

    def test_bypass_failure_returns_503(self, backends, store, server_set) -> None:
        store.mark_down("primary")
        store.mark_down("backup")
        backends.set("primary.test", "down")
        resp = _handle(backends, store, server_set, _ctx(), fast_failover=True, retries=0)
        assert resp.status_code == 503
        assert backends.hosts == ["primary.test"]

    def test_no_bypass_without_fast_failover(self, backends, store, server_set) -> None:
        backends.set("primary.test", "down")
        backends.set("backup.test", "down")
        _handle(backends, store, server_set, _ctx(), retries=0)
        assert backends.hosts == ["primary.test", "backup.test"]


class TestSequentialAttempts:
    def test_attempt_retries_property(self, store) -> None:
        resolver = TenantResolver({})
        selector = ServerSelector(store)
        smart = FailoverOrchestrator(
            resolver, selector, None, store, policy=SelectionPolicy.SMART, retries=2  # type: ignore[arg-type]
        )
        weighted = FailoverOrchestrator(
            resolver, selector, None, store, policy="weighted", retries=2  # type: ignore[arg-type]
        )
        assert smart.attempt_retries == 0
        assert weighted.attempt_retries == 2

    def test_backup_only_after_primary_finishes(self, backends, store) -> None:
        events = []

        async def primary(request: httpx.Request) -> httpx.Response:
            events.append("primary-start")
            await asyncio.sleep(0.02)
            events.append("primary-end")
            return httpx.Response(500)

        def backup(request: httpx.Request) -> httpx.Response:
            events.append("backup-start")
            return httpx.Response(200)

        backends.set("primary.test", primary)
        backends.set("backup.test", backup)
        servers = ServerSet(servers=(PRIMARY, BACKUP), tenant="app.test")
        _handle(backends, store, servers, _ctx(), retries=0)
        assert events == ["primary-start", "primary-end", "backup-start"]
