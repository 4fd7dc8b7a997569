"""Tests for the management API and its bearer-token auth."""

from __future__ import annotations

import logging

import pytest
from conftest import FakeBackends, FixedRandom, make_config
from starlette.testclient import TestClient

from failover_sentinel.display.logging_config import SecretRedactionFilter
from failover_sentinel.server import create_app
from failover_sentinel.server.management.auth import (
    MGMT_TOKEN_ENV_VAR,
    ManagementToken,
    resolve_token,
)

PREFIX = "/_failover/v1"


@pytest.fixture(autouse=True)
def _no_env_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(MGMT_TOKEN_ENV_VAR, raising=False)


def _app(backends: FakeBackends, token: str | None = None):
    config = make_config()
    config.server.management.token = token
    return create_app(config=config, transport=backends.transport, rng=FixedRandom(0.0))


class TestEndpoints:
    def test_health(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends)) as client:
            resp = client.get(f"{PREFIX}/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["servers"] == {"total": 2, "healthy": 2, "open_circuits": 0}
        assert body["uptime_seconds"] >= 0

    def test_health_degraded_when_circuit_open(self, backends: FakeBackends) -> None:
        app = _app(backends)
        with TestClient(app) as client:
            store = app.state.balancer_service.store
            for _ in range(3):
                store.record_failure("primary")
            body = client.get(f"{PREFIX}/health").json()
        assert body["status"] == "degraded"
        assert body["servers"]["open_circuits"] == 1

    def test_status(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends)) as client:
            body = client.get(f"{PREFIX}/status").json()
        assert body["service"]["state"] == "running"
        assert body["balancer"]["mode"] == "smart"
        assert body["balancer"]["retries"] == 1
        assert body["balancer"]["upstream_scheme"] == "http"
        assert body["tenants"] == ["app.test"]
        assert body["default_servers"] is False

    def test_backends_reflect_traffic(self, backends: FakeBackends) -> None:
        backends.set("primary.test", "down")
        app = _app(backends)
        with TestClient(app) as client:
            client.get("/", headers={"Host": "app.test"})
            body = client.get(f"{PREFIX}/backends").json()
        rows = {row["name"]: row for row in body["backends"]}
        assert set(rows) == {"primary", "backup"}
        assert rows["primary"]["consecutive_failures"] >= 1
        assert rows["primary"]["marked_down"] is True
        assert rows["primary"]["weight"] < rows["primary"]["base_weight"]
        assert rows["backup"]["sample_count"] == 1
        assert rows["backup"]["circuit"] == "closed"

    def test_reading_health_does_not_move_circuits(self, backends: FakeBackends) -> None:
        app = _app(backends)
        with TestClient(app) as client:
            store = app.state.balancer_service.store
            for _ in range(3):
                store.record_failure("primary")
            # Make the open circuit old enough for the next request to try it.
            store._records["primary"].last_failure_at -= 3600
            client.get(f"{PREFIX}/health")
            rows = {r["name"]: r for r in client.get(f"{PREFIX}/backends").json()["backends"]}
            stored = store.get("primary")
        assert rows["primary"]["circuit"] == "half-open"
        assert stored.circuit_open
        assert stored.consecutive_failures == 3


class TestAuth:
    def test_no_token_means_open(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends)) as client:
            assert client.get(f"{PREFIX}/backends").status_code == 200

    def test_config_token_required(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends, token="config-token-123")) as client:
            resp = client.get(f"{PREFIX}/backends")
            assert resp.status_code == 401
            assert resp.headers["www-authenticate"].startswith("Bearer")
            assert resp.json()["error"] == "unauthorized"

            resp = client.get(f"{PREFIX}/backends", headers={"Authorization": "Bearer nope"})
            assert resp.status_code == 401

            resp = client.get(
                f"{PREFIX}/backends", headers={"Authorization": "Bearer config-token-123"}
            )
            assert resp.status_code == 200

    def test_health_always_public(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends, token="config-token-123")) as client:
            assert client.get(f"{PREFIX}/health").status_code == 200

    def test_env_token_overrides_config(
        self, backends: FakeBackends, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(MGMT_TOKEN_ENV_VAR, "env-token-456")
        with TestClient(_app(backends, token="config-token-123")) as client:
            bad = client.get(
                f"{PREFIX}/status", headers={"Authorization": "Bearer config-token-123"}
            )
            good = client.get(
                f"{PREFIX}/status", headers={"Authorization": "Bearer env-token-456"}
            )
        assert bad.status_code == 401
        assert good.status_code == 200

    def test_resolve_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        assert resolve_token(None) is None
        assert resolve_token("  ") is None
        assert resolve_token(" cfg-token ") == ManagementToken("cfg-token", "config")
        monkeypatch.setenv(MGMT_TOKEN_ENV_VAR, "env-token")
        assert resolve_token("cfg-token") == ManagementToken("env-token", "env")
        monkeypatch.setenv(MGMT_TOKEN_ENV_VAR, "   ")
        assert resolve_token("cfg-token").source == "config"

    def test_scheme_is_case_insensitive(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends, token="config-token-123")) as client:
            resp = client.get(
                f"{PREFIX}/backends", headers={"Authorization": "bearer config-token-123"}
            )
            assert resp.status_code == 200
            resp = client.get(
                f"{PREFIX}/backends", headers={"Authorization": "Basic config-token-123"}
            )
            assert resp.status_code == 401

    def test_health_public_with_trailing_slash(self, backends: FakeBackends) -> None:
        with TestClient(_app(backends, token="config-token-123")) as client:
            assert client.get(f"{PREFIX}/health/").status_code != 401


class TestSecretRedaction:
    def _record(self, msg: str, *args) -> logging.LogRecord:
        return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)

    def test_redacts_message_and_args(self) -> None:
        flt = SecretRedactionFilter()
        flt.register("super-secret-value")
        record = self._record("token=%s other=%s", "super-secret-value", 5)
        assert flt.filter(record)
        assert record.getMessage() == "token=***REDACTED*** other=5"

    def test_short_values_ignored(self) -> None:
        flt = SecretRedactionFilter()
        flt.register("abc")
        record = self._record("abc stays")
        flt.filter(record)
        assert record.getMessage() == "abc stays"
