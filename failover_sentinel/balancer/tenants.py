"""Hostname → :class:`ServerSet` lookup."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from failover_sentinel.balancer.models import ServerDescriptor, ServerSet
from failover_sentinel.config.schema import SentinelConfig, ServerConfig
from failover_sentinel.errors import TenantNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TENANT = "*"


def normalise_host(host: str) -> str:
    """Lower-case *host* and strip any port (IPv6 literals keep their brackets)."""
    host = host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def _descriptors(servers: Iterable[ServerConfig]) -> tuple:
    return tuple(
        ServerDescriptor(name=s.name, host=s.host, base_weight=s.weight) for s in servers
    )


class TenantResolver:
    """Resolve the inbound hostname to the tenant's server set.

    Parameters
    ----------
    tenants:
        Mapping of normalised hostname to server set.
    default:
        Server set used for hostnames with no tenant entry, or ``None`` to
        treat them as unconfigured.
    """

    def __init__(
        self,
        tenants: Dict[str, ServerSet],
        default: Optional[ServerSet] = None,
    ) -> None:
        self._tenants = {normalise_host(h): s for h, s in tenants.items()}
        self._default = default

    @classmethod
    def from_config(cls, config: SentinelConfig) -> "TenantResolver":
        tenants = {
            host: ServerSet(servers=_descriptors(t.servers), tenant=host)
            for host, t in config.tenants.items()
        }
        default = None
        if config.default_servers:
            default = ServerSet(servers=_descriptors(config.default_servers), tenant=DEFAULT_TENANT)
        return cls(tenants, default)

    @property
    def tenants(self) -> List[str]:
        return sorted(self._tenants)

    def all_servers(self) -> List[ServerDescriptor]:
        """Every distinct configured server, in first-seen order."""
        seen: Dict[str, ServerDescriptor] = {}
        sets = list(self._tenants.values())
        if self._default is not None:
            sets.append(self._default)
        for server_set in sets:
            for srv in server_set:
                seen.setdefault(srv.name, srv)
        return list(seen.values())

    def resolve(self, host: Optional[str]) -> ServerSet:
        key = normalise_host(host or "")
        server_set = self._tenants.get(key)
        if server_set is not None:
            return server_set
        if self._default is not None:
            return self._default
        logger.info("No tenant configured for host '%s'", key)
        raise TenantNotFoundError(key)
