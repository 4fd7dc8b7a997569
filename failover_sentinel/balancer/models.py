"""Value types shared by the selection and dispatch engine."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

Headers = List[Tuple[str, str]]


@dataclass(frozen=True)
class ServerDescriptor:
    """A configured backend server.

    Attributes:
        name: Identity; health records are keyed by it.
        host: Network target substituted into the outbound URL.
        base_weight: Static weight (0-100) for weighted/smart selection.
    """

    name: str
    host: str
    base_weight: float = 50.0


@dataclass(frozen=True)
class ServerSet:
    """Ordered servers eligible for one request. ``servers[0]`` is the primary."""

    servers: Tuple[ServerDescriptor, ...]
    tenant: str = "default"

    def __len__(self) -> int:
        return len(self.servers)

    def __iter__(self):
        return iter(self.servers)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.servers]


@dataclass
class RequestContext:
    """Inbound request, materialized so it can be replayed to several backends.

    Attributes:
        method: HTTP method.
        path: Raw (still percent-encoded) request path.
        query: Raw query string without the leading ``?``.
        headers: Inbound headers as ordered pairs (duplicates preserved).
        body: Fully read request body.
        host: Original inbound ``Host`` (forwarded for multi-tenant routing).
        client_ip: Address of the originating client.
        scheme: Inbound scheme (``http`` / ``https``).
        request_id: Short unique identifier used in log lines.
        start_time: High-resolution monotonic timestamp.
        metadata: Free-form annotations (e.g. the servers attempted).
    """

    method: str
    path: str
    query: str = ""
    headers: Headers = field(default_factory=list)
    body: bytes = b""
    host: str = ""
    client_ip: Optional[str] = None
    scheme: str = "https"
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    start_time: float = field(default_factory=time.monotonic)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since request start."""
        return (time.monotonic() - self.start_time) * 1000.0

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value of header *name* (case-insensitive)."""
        lname = name.lower()
        for key, value in self.headers:
            if key.lower() == lname:
                return value
        return default


@dataclass
class ProxyResponse:
    """Response handed back to the ingestion layer."""

    status_code: int
    headers: Headers = field(default_factory=list)
    body: bytes = b""
    served_by: Optional[str] = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lname = name.lower()
        for key, value in self.headers:
            if key.lower() == lname:
                return value
        return default

    def set_header(self, name: str, value: str) -> None:
        """Replace every occurrence of *name* with a single *value*."""
        lname = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lname]
        self.headers.append((name, value))
