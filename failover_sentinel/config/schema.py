"""Pydantic configuration models for Failover Sentinel.

Defines the validated config structure using the versioned v1 format.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from failover_sentinel.constants import (
    DEFAULT_CIRCUIT_RESET_SECONDS,
    DEFAULT_DOWN_TTL_SECONDS,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_HOST,
    DEFAULT_MAX_WEIGHT,
    DEFAULT_MIN_WEIGHT,
    DEFAULT_PORT,
    DEFAULT_RETRIES,
    DEFAULT_SLOW_THRESHOLD_MS,
    DEFAULT_TIMEOUT,
    DEFAULT_UPSTREAM_SCHEME,
)

# ── Backend servers ──────────────────────────────────────────────────────


class ServerConfig(BaseModel):
    """One backend server of a tenant."""

    name: str = Field(..., min_length=1, description="Unique server name (health is keyed by it).")
    host: str = Field(..., min_length=1, description="Backend hostname, optionally with :port.")
    weight: float = Field(
        default=50,
        ge=0,
        le=100,
        description="Static base weight used by weighted and smart selection.",
    )

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Server name must be a non-empty string")
        if v.strip() != v:
            raise ValueError(f"Server name '{v}' has leading/trailing whitespace")
        return v

    @field_validator("host")
    @classmethod
    def _validate_host(cls, v: str) -> str:
        v = v.strip()
        if "://" in v or "/" in v:
            raise ValueError(f"Host '{v}' must be a bare hostname (no scheme or path)")
        return v


class TenantConfig(BaseModel):
    """Ordered backend servers serving one inbound hostname."""

    servers: List[ServerConfig] = Field(..., min_length=1)


# ── Balancer settings ────────────────────────────────────────────────────


class SmartConfig(BaseModel):
    """Circuit breaker and adaptive weight settings."""

    slow_threshold_ms: float = Field(
        default=DEFAULT_SLOW_THRESHOLD_MS,
        gt=0,
        description="Average latency above which a server's weight is reduced.",
    )
    failure_threshold: int = Field(
        default=DEFAULT_FAILURE_THRESHOLD,
        ge=1,
        description="Consecutive failures before the circuit opens.",
    )
    circuit_reset_time: float = Field(
        default=DEFAULT_CIRCUIT_RESET_SECONDS,
        ge=0,
        description="Seconds an open circuit waits before a half-open trial.",
    )
    min_weight: float = Field(default=DEFAULT_MIN_WEIGHT, ge=0)
    max_weight: float = Field(default=DEFAULT_MAX_WEIGHT, ge=0)

    @model_validator(mode="after")
    def _check_weight_range(self) -> "SmartConfig":
        if self.min_weight > self.max_weight:
            raise ValueError(
                f"min_weight ({self.min_weight}) must not exceed max_weight ({self.max_weight})"
            )
        return self


class FastFailoverConfig(BaseModel):
    """Short-TTL "marked down" cache that skips recently failed servers."""

    enabled: bool = False
    down_ttl: float = Field(
        default=DEFAULT_DOWN_TTL_SECONDS,
        gt=0,
        description="Seconds a failed server is skipped without a network attempt.",
    )


class BalancerConfig(BaseModel):
    """Selection policy and dispatch settings."""

    mode: Literal["failover", "weighted", "smart"] = "smart"
    timeout: float = Field(
        default=DEFAULT_TIMEOUT, gt=0, description="Seconds per outbound attempt."
    )
    retries: int = Field(
        default=DEFAULT_RETRIES,
        ge=0,
        description="Same-server retries (failover and weighted modes only).",
    )
    upstream_scheme: Literal["http", "https"] = DEFAULT_UPSTREAM_SCHEME
    verify_tls: bool = True
    debug_headers: bool = Field(
        default=True,
        description="Add X-Served-By / X-LB-Mode to proxied responses.",
    )
    smart: SmartConfig = Field(default_factory=SmartConfig)
    fast_failover: FastFailoverConfig = Field(default_factory=FastFailoverConfig)

    @field_validator("mode", mode="before")
    @classmethod
    def _normalise_mode(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().lower()
        return v


# ── Server settings ─────────────────────────────────────────────────────


class ManagementSettings(BaseModel):
    """Management API configuration."""

    enabled: bool = True
    token: Optional[str] = Field(
        default=None,
        description="Bearer token for management endpoints. Also FAILOVER_MGMT_TOKEN env var.",
    )


class ServerSettings(BaseModel):
    """Listener settings (host, port, management)."""

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    management: ManagementSettings = Field(default_factory=ManagementSettings)


# ── Top-level config ────────────────────────────────────────────────────


class SentinelConfig(BaseModel):
    """Top-level validated configuration for Failover Sentinel.

    Supports version ``"1"`` format::

        {
            "version": "1",
            "server": { ... },
            "balancer": { "mode": "smart", ... },
            "tenants": {
                "app.example.com": { "servers": [ {...}, {...} ] }
            },
            "default_servers": [ ... ]
        }
    """

    version: str = "1"
    server: ServerSettings = Field(default_factory=ServerSettings)
    balancer: BalancerConfig = Field(default_factory=BalancerConfig)
    tenants: Dict[str, TenantConfig] = Field(default_factory=dict)
    default_servers: List[ServerConfig] = Field(
        default_factory=list,
        description="Servers used when the inbound host matches no tenant.",
    )

    @field_validator("tenants")
    @classmethod
    def _normalise_tenant_hosts(cls, v: Dict[str, TenantConfig]) -> Dict[str, TenantConfig]:
        normalised: Dict[str, TenantConfig] = {}
        for host, tenant in v.items():
            key = host.strip().lower()
            if not key:
                raise ValueError("Tenant hostname must be a non-empty string")
            if key in normalised:
                raise ValueError(f"Duplicate tenant hostname '{key}'")
            normalised[key] = tenant
        return normalised

    @model_validator(mode="after")
    def _check_servers(self) -> "SentinelConfig":
        if not self.tenants and not self.default_servers:
            raise ValueError("At least one tenant or a non-empty default_servers list is required")

        hosts_by_name: Dict[str, str] = {}
        groups = [t.servers for t in self.tenants.values()] + [self.default_servers]
        for servers in groups:
            seen: set[str] = set()
            for srv in servers:
                if srv.name in seen:
                    raise ValueError(f"Server '{srv.name}' is listed twice in one server set")
                seen.add(srv.name)
                known = hosts_by_name.setdefault(srv.name, srv.host)
                if known != srv.host:
                    raise ValueError(
                        f"Server name '{srv.name}' refers to two hosts ('{known}' and "
                        f"'{srv.host}'); health is tracked per name"
                    )
        return self
