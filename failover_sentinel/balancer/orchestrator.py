"""Top-level failover control loop.

resolve tenant → order candidates → try them one at a time → first
success wins. If every candidate fails the caller gets a fixed 503 page;
an unknown tenant gets a fixed 404 page. Nothing raises past
:meth:`FailoverOrchestrator.handle` except cancellation.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from failover_sentinel.balancer.dispatcher import AttemptOutcome, Dispatcher
from failover_sentinel.balancer.health.store import HealthStore
from failover_sentinel.balancer.models import (
    ProxyResponse,
    RequestContext,
    ServerDescriptor,
    ServerSet,
)
from failover_sentinel.balancer.selector import SelectionPolicy, ServerSelector
from failover_sentinel.balancer.tenants import TenantResolver
from failover_sentinel.constants import LB_MODE_HEADER, SERVED_BY_HEADER
from failover_sentinel.errors import (
    ConfigurationError,
    ExhaustedCandidatesError,
    TenantNotFoundError,
)

logger = logging.getLogger(__name__)

UNAVAILABLE_BODY = (
    "<!DOCTYPE html><html><head><title>Service Unavailable</title></head>"
    "<body><h1>Service Temporarily Unavailable</h1>"
    "<p>All servers are currently unavailable. Please try again later.</p></body></html>"
)

NOT_FOUND_BODY = (
    "<!DOCTYPE html><html><head><title>Not Found</title></head>"
    "<body><h1>App Not Configured</h1>"
    "<p>This domain is not configured in the load balancer.</p></body></html>"
)

_HTML = "text/html"


def unavailable_response() -> ProxyResponse:
    return ProxyResponse(
        status_code=503,
        headers=[("Content-Type", _HTML)],
        body=UNAVAILABLE_BODY.encode("utf-8"),
    )


def not_found_response() -> ProxyResponse:
    return ProxyResponse(
        status_code=404,
        headers=[("Content-Type", _HTML)],
        body=NOT_FOUND_BODY.encode("utf-8"),
    )


class FailoverOrchestrator:
    """Walk the selected candidates until one attempt succeeds.

    Parameters
    ----------
    resolver:
        Hostname → server set lookup.
    selector:
        Produces the candidate order for the configured policy.
    dispatcher:
        Executes each attempt and reports health.
    store:
        Health store; consulted for the down cache and the half-open trial slot.
    policy:
        Selection policy for every request.
    retries:
        Same-server retries for the failover and weighted policies. The
        smart policy never retries the same server.
    fast_failover:
        Skip servers in the down cache, then make one bypass attempt
        against the primary if everything else failed.
    debug_headers:
        Add ``X-Served-By`` / ``X-LB-Mode`` to successful responses.
    """

    def __init__(
        self,
        resolver: TenantResolver,
        selector: ServerSelector,
        dispatcher: Dispatcher,
        store: HealthStore,
        *,
        policy: SelectionPolicy = SelectionPolicy.SMART,
        retries: int = 1,
        fast_failover: bool = False,
        debug_headers: bool = True,
    ) -> None:
        self._resolver = resolver
        self._selector = selector
        self._dispatcher = dispatcher
        self._store = store
        self.policy = SelectionPolicy(policy)
        self.retries = retries
        self.fast_failover = fast_failover
        self.debug_headers = debug_headers

    @property
    def attempt_retries(self) -> int:
        return 0 if self.policy is SelectionPolicy.SMART else self.retries

    async def handle(self, ctx: RequestContext) -> ProxyResponse:
        """Serve *ctx*; always returns a well-formed response."""
        try:
            server_set = self._resolver.resolve(ctx.host)
        except TenantNotFoundError:
            return not_found_response()

        try:
            return await self._serve(ctx, server_set)
        except ConfigurationError as exc:
            logger.error("[%s] %s", ctx.request_id, exc)
            return not_found_response()
        except ExhaustedCandidatesError as exc:
            logger.error("[%s] %s", ctx.request_id, exc)
            return unavailable_response()
        except Exception as exc:
            logger.error(
                "[%s] Unexpected error while proxying %s %s: %s",
                ctx.request_id,
                ctx.method,
                ctx.path,
                exc,
                exc_info=True,
            )
            return unavailable_response()

    async def _serve(self, ctx: RequestContext, server_set: ServerSet) -> ProxyResponse:
        candidates = self._selector.select(server_set, self.policy)
        outcomes: List[AttemptOutcome] = []
        ctx.metadata["attempted"] = []

        for server in candidates:
            if self.fast_failover and self._store.is_marked_down(server.name):
                logger.debug("[%s] Skipping %s (marked down)", ctx.request_id, server.name)
                continue
            if not self._store.try_acquire(server.name):
                logger.debug(
                    "[%s] Skipping %s (half-open trial already in flight)",
                    ctx.request_id,
                    server.name,
                )
                continue

            outcome = await self._attempt(ctx, server, outcomes)
            if outcome.response is not None:
                return self._annotate(outcome.server, outcome.response)

        if self.fast_failover:
            primary = server_set.servers[0]
            if self._store.try_acquire(primary.name):
                logger.info(
                    "[%s] All candidates failed; bypass attempt against primary %s",
                    ctx.request_id,
                    primary.name,
                )
                outcome = await self._attempt(ctx, primary, outcomes)
                if outcome.response is not None:
                    return self._annotate(outcome.server, outcome.response)

        last_error: Optional[str] = Dispatcher.describe_failures(outcomes) or None
        raise ExhaustedCandidatesError(server_set.tenant, ctx.metadata["attempted"], last_error)

    async def _attempt(self, ctx, server, outcomes: List[AttemptOutcome]) -> AttemptOutcome:
        ctx.metadata["attempted"].append(server.name)
        outcome = await self._dispatcher.attempt(server, ctx, retries=self.attempt_retries)
        outcomes.append(outcome)
        return outcome

    def _annotate(self, server: ServerDescriptor, response: ProxyResponse) -> ProxyResponse:
        if self.debug_headers:
            response.set_header(SERVED_BY_HEADER, server.name)
            response.set_header(LB_MODE_HEADER, self.policy.value)
        return response
