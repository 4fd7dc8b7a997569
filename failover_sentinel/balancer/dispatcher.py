"""Single bounded attempt against one backend server.

The dispatcher rewrites the inbound request onto the server's host,
issues it with a hard timeout, classifies the result, and reports the
outcome into the :class:`HealthStore`. Failover only happens on transport
failure or a 5xx; redirects and 4xx responses are returned untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

import httpx

from failover_sentinel.balancer.health.store import HealthStore
from failover_sentinel.balancer.models import (
    Headers,
    ProxyResponse,
    RequestContext,
    ServerDescriptor,
)
from failover_sentinel.constants import (
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    DEFAULT_UPSTREAM_SCHEME,
    ORIGINAL_HOST_HEADER,
)

logger = logging.getLogger(__name__)

# RFC 7230 §6.1 hop-by-hop headers; never forwarded in either direction.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Set by this proxy; inbound values are replaced.
_FORWARDING_HEADERS = frozenset(
    {
        ORIGINAL_HOST_HEADER.lower(),
        "x-forwarded-host",
        "x-forwarded-proto",
        "x-forwarded-for",
        "x-real-ip",
    }
)

# httpx has already de-chunked and decoded the body we return.
_STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding", "content-length"}


class FailureKind(Enum):
    """Why an attempt did not produce a usable response."""

    UNREACHABLE = "unreachable"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class DispatchFailure:
    kind: FailureKind
    detail: str
    status_code: Optional[int] = None


@dataclass
class AttemptOutcome:
    """Result of :meth:`Dispatcher.attempt`: a response or a failure."""

    server: ServerDescriptor
    response: Optional[ProxyResponse] = None
    failure: Optional[DispatchFailure] = None
    tries: int = 0
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.response is not None


def _connection_tokens(headers: Headers) -> set:
    """Header names listed in ``Connection`` (also hop-by-hop)."""
    tokens = set()
    for key, value in headers:
        if key.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def build_forward_headers(ctx: RequestContext) -> Headers:
    """Copy inbound headers and add the forwarding set.

    Drops hop-by-hop headers, ``Host`` (taken from the target URL) and
    ``Content-Length`` (recomputed from the body), then sets the
    original-host marker and client-IP propagation headers.
    """
    dropped = HOP_BY_HOP_HEADERS | _connection_tokens(ctx.headers) | {"host", "content-length"}
    out: Headers = [
        (k, v)
        for k, v in ctx.headers
        if k.lower() not in dropped and k.lower() not in _FORWARDING_HEADERS
    ]

    prior_chain = [
        v.strip() for k, v in ctx.headers if k.lower() == "x-forwarded-for" and v.strip()
    ]
    if ctx.host:
        out.append((ORIGINAL_HOST_HEADER, ctx.host))
        out.append(("X-Forwarded-Host", ctx.host))
    out.append(("X-Forwarded-Proto", ctx.scheme))
    if ctx.client_ip:
        out.append(("X-Forwarded-For", ", ".join([*prior_chain, ctx.client_ip])))
        out.append(("X-Real-IP", ctx.client_ip))
    elif prior_chain:
        out.append(("X-Forwarded-For", ", ".join(prior_chain)))
    return out


def build_target_url(scheme: str, server: ServerDescriptor, ctx: RequestContext) -> str:
    """``{scheme}://{host}{path}{?query}``."""
    path = ctx.path if ctx.path.startswith("/") else f"/{ctx.path}"
    url = f"{scheme}://{server.host}{path}"
    if ctx.query:
        url += f"?{ctx.query}"
    return url


def encode_headers(headers: Headers) -> List[Tuple[bytes, bytes]]:
    """Byte pairs for httpx; inbound values were decoded as latin-1."""
    return [(k.encode("latin-1"), _encode_value(v)) for k, v in headers]


def _encode_value(value: str) -> bytes:
    try:
        return value.encode("latin-1")
    except UnicodeEncodeError:
        return value.encode("utf-8")


def _filter_response_headers(headers: httpx.Headers, method: str = "GET") -> Headers:
    tokens = {
        t.strip().lower() for t in headers.get("connection", "").split(",") if t.strip()
    }
    # HEAD has no body to decode, so the upstream framing headers stay accurate.
    stripped = HOP_BY_HOP_HEADERS if method == "HEAD" else _STRIPPED_RESPONSE_HEADERS
    return [
        (k, v)
        for k, v in headers.multi_items()
        if k.lower() not in stripped and k.lower() not in tokens
    ]


class Dispatcher:
    """Execute bounded attempts against backend servers.

    Parameters
    ----------
    client:
        Shared :class:`httpx.AsyncClient`. Must not follow redirects.
    store:
        Health store receiving success/failure reports.
    timeout:
        Seconds allowed for one try (request + full response body).
    retries:
        Default number of extra tries against the same server.
    scheme:
        Outbound URL scheme.
    clock:
        Monotonic time source for latency measurement.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: HealthStore,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        scheme: str = DEFAULT_UPSTREAM_SCHEME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self.timeout = timeout
        self.retries = retries
        self.scheme = scheme
        self._clock = clock

    async def attempt(
        self,
        server: ServerDescriptor,
        ctx: RequestContext,
        *,
        retries: Optional[int] = None,
    ) -> AttemptOutcome:
        """Try *server* up to ``1 + retries`` times and report the outcome."""
        max_tries = 1 + (self.retries if retries is None else max(0, retries))
        url = build_target_url(self.scheme, server, ctx)
        headers = build_forward_headers(ctx)
        outcome = AttemptOutcome(server=server)
        started = self._clock()
        resolved = False

        try:
            for try_no in range(1, max_tries + 1):
                outcome.tries = try_no
                failure = await self._try_once(server, ctx, url, headers, outcome)
                if failure is None:
                    outcome.failure = None
                    outcome.latency_ms = (self._clock() - started) * 1000.0
                    self._store.record_success(server.name, outcome.latency_ms)
                    self._store.mark_up(server.name)
                    resolved = True
                    logger.debug(
                        "[%s] %s %s → %s: %d in %.0fms (try %d)",
                        ctx.request_id,
                        ctx.method,
                        ctx.path,
                        server.name,
                        outcome.response.status_code,
                        outcome.latency_ms,
                        try_no,
                    )
                    return outcome
                outcome.failure = failure
                logger.warning(
                    "[%s] %s failed (try %d/%d): %s",
                    ctx.request_id,
                    server.name,
                    try_no,
                    max_tries,
                    failure.detail,
                )

            outcome.latency_ms = (self._clock() - started) * 1000.0
            self._store.record_failure(server.name)
            self._store.mark_down(server.name)
            resolved = True
            return outcome
        except asyncio.CancelledError:
            logger.debug("[%s] Attempt against %s cancelled", ctx.request_id, server.name)
            raise
        finally:
            # An unresolved half-open trial must not pin the slot.
            if not resolved:
                self._store.release(server.name)

    async def _try_once(
        self,
        server: ServerDescriptor,
        ctx: RequestContext,
        url: str,
        headers: Headers,
        outcome: AttemptOutcome,
    ) -> Optional[DispatchFailure]:
        try:
            resp = await asyncio.wait_for(
                self._client.request(
                    ctx.method,
                    url,
                    headers=encode_headers(headers),
                    content=ctx.body or None,
                    follow_redirects=False,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return DispatchFailure(FailureKind.UNREACHABLE, f"timed out after {self.timeout:.1f}s")
        except httpx.TimeoutException as exc:
            return DispatchFailure(FailureKind.UNREACHABLE, f"timeout: {type(exc).__name__}")
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            return DispatchFailure(
                FailureKind.UNREACHABLE, f"{type(exc).__name__}: {exc}"
            )
        except Exception as exc:
            logger.error(
                "[%s] Unexpected error sending to %s: %s",
                ctx.request_id,
                server.name,
                exc,
                exc_info=True,
            )
            return DispatchFailure(
                FailureKind.UNREACHABLE, f"unexpected {type(exc).__name__}: {exc}"
            )

        if resp.status_code >= 500:
            return DispatchFailure(
                FailureKind.SERVER_ERROR,
                f"upstream returned {resp.status_code}",
                status_code=resp.status_code,
            )

        outcome.response = ProxyResponse(
            status_code=resp.status_code,
            headers=_filter_response_headers(resp.headers, ctx.method),
            body=resp.content,
            served_by=server.name,
        )
        return None

    @staticmethod
    def describe_failures(outcomes: List[AttemptOutcome]) -> str:
        """One-line summary of failed outcomes for logging."""
        parts = []
        for o in outcomes:
            if o.failure is not None:
                parts.append(f"{o.server.name}={o.failure.kind.value}({o.failure.detail})")
        return "; ".join(parts)
