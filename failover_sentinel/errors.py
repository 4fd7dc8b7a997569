"""Custom exception classes for Failover Sentinel."""

from typing import Optional, Sequence


class FailoverSentinelError(Exception):
    """Base class for all custom exceptions in Failover Sentinel."""

    pass


class ConfigurationError(FailoverSentinelError):
    """Raised when the configuration is invalid or a tenant has no servers."""

    pass


class TenantNotFoundError(FailoverSentinelError):
    """Raised when an inbound hostname has no configured server set."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"No servers configured for host '{host}'")


class ExhaustedCandidatesError(FailoverSentinelError):
    """
    Raised inside the orchestrator when every candidate server failed.

    Never escapes the orchestrator boundary; it is turned into a 503 page.
    """

    def __init__(self, tenant: str, tried: Sequence[str], last_error: Optional[str] = None):
        self.tenant = tenant
        self.tried = list(tried)
        self.last_error = last_error

        full_msg = f"All candidates failed for tenant '{tenant}'"
        if self.tried:
            full_msg += f" (tried: {', '.join(self.tried)})"
        else:
            full_msg += " (no server was attempted)"
        if last_error:
            full_msg += f": {last_error}"
        super().__init__(full_msg)
