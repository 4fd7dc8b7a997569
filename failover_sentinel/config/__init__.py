"""Configuration loading and validation for Failover Sentinel."""

from failover_sentinel.config.loader import (
    expand_env_vars,
    find_config_file,
    load_sentinel_config,
    validate_config_data,
)
from failover_sentinel.config.schema import (
    BalancerConfig,
    FastFailoverConfig,
    ManagementSettings,
    SentinelConfig,
    ServerConfig,
    ServerSettings,
    SmartConfig,
    TenantConfig,
)

__all__ = [
    "BalancerConfig",
    "FastFailoverConfig",
    "ManagementSettings",
    "SentinelConfig",
    "ServerConfig",
    "ServerSettings",
    "SmartConfig",
    "TenantConfig",
    "expand_env_vars",
    "find_config_file",
    "load_sentinel_config",
    "validate_config_data",
]
