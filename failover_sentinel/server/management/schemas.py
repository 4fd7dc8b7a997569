"""Pydantic response schemas for the Management API."""

from typing import List, Optional

from pydantic import BaseModel, Field

# ── /_failover/v1/health ─────────────────────────────────────────────────


class HealthServers(BaseModel):
    total: int = 0
    healthy: int = 0
    open_circuits: int = 0


class HealthResponse(BaseModel):
    status: str = Field(description="healthy | degraded | unhealthy")
    uptime_seconds: Optional[float] = None
    version: str = ""
    servers: HealthServers = Field(default_factory=HealthServers)


# ── /_failover/v1/status ────────────────────────────────────────────────


class StatusService(BaseModel):
    name: str
    version: str
    state: str
    uptime_seconds: Optional[float] = None
    started_at: Optional[str] = None  # ISO-8601


class StatusBalancer(BaseModel):
    mode: str
    timeout: float
    retries: int
    upstream_scheme: str
    fast_failover: bool = False
    down_ttl: float = 0.0
    debug_headers: bool = True


class StatusResponse(BaseModel):
    service: StatusService
    balancer: StatusBalancer
    config_path: Optional[str] = None
    tenants: List[str] = Field(default_factory=list)
    default_servers: bool = False


# ── /_failover/v1/backends ──────────────────────────────────────────────


class BackendDetail(BaseModel):
    name: str
    host: str
    base_weight: float
    weight: float
    circuit: str = "closed"  # closed | open | half-open
    marked_down: bool = False
    consecutive_failures: int = 0
    avg_response_time_ms: float = 0.0
    sample_count: int = 0
    last_failure_at: Optional[float] = None
    trial_in_flight: bool = False


class BackendsResponse(BaseModel):
    backends: List[BackendDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
    message: str
