"""Configuration file loading and validation.

Loads a YAML configuration file, expands ``${ENV_VAR}`` placeholders,
and validates against Pydantic models defined in :mod:`schema`.

The public API is :func:`load_sentinel_config`, which returns the
validated :class:`SentinelConfig`.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Set

import yaml
from pydantic import ValidationError

from failover_sentinel.config.schema import SentinelConfig
from failover_sentinel.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})

# Config file search order (first match wins)
CONFIG_SEARCH_ORDER = ("config.yaml", "config.yml")

CONFIG_ENV_VAR = "FAILOVER_CONFIG"

# ${VAR_NAME} placeholders inside string values
_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")


def expand_env_vars(node: Any, missing: Optional[Set[str]] = None) -> Any:
    """Substitute ``${VAR}`` in every string leaf of *node*.

    Unset variables stay as literal placeholders; their names are added to
    *missing* when a set is passed in.
    """
    if isinstance(node, dict):
        return {key: expand_env_vars(value, missing) for key, value in node.items()}
    if isinstance(node, list):
        return [expand_env_vars(item, missing) for item in node]
    if not isinstance(node, str):
        return node

    def _lookup(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in os.environ:
            return os.environ[name]
        if missing is not None:
            missing.add(name)
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_lookup, node)


def find_config_file(explicit_path: Optional[str] = None) -> str:
    """Resolve the config path: explicit flag → env var → CWD auto-detect.

    Falls back to ``CWD/config.yaml`` if nothing exists (loader will error).
    """
    if explicit_path:
        return explicit_path
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return env_path
    for name in CONFIG_SEARCH_ORDER:
        candidate = os.path.join(os.getcwd(), name)
        if os.path.isfile(candidate):
            return candidate
    return os.path.join(os.getcwd(), CONFIG_SEARCH_ORDER[0])


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"]) or "(root)"
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


def validate_config_data(raw_data: Dict[str, Any]) -> SentinelConfig:
    """Expand env vars in *raw_data* and validate it into a :class:`SentinelConfig`.

    Raises:
        ConfigurationError: On validation failures (all errors reported at once).
    """
    missing: Set[str] = set()
    raw_data = expand_env_vars(raw_data, missing)
    if missing:
        logger.warning(
            "Config references unset environment variable(s): %s", ", ".join(sorted(missing))
        )
    try:
        config = SentinelConfig.model_validate(raw_data)
    except ValidationError as exc:
        error_summary = _format_validation_errors(exc)
        raise ConfigurationError(
            f"Configuration validation failed ({len(exc.errors())} error(s)):\n{error_summary}"
        ) from exc

    token = config.server.management.token
    if token is not None and _PLACEHOLDER_RE.search(token):
        logger.warning("Management token placeholder '%s' is unresolved; ignoring it.", token)
        config.server.management.token = None
    return config


# ── Public API ───────────────────────────────────────────────────────────


def load_sentinel_config(cfg_fpath: str) -> SentinelConfig:
    """Load, expand, validate, and return the full configuration.

    Steps:
        1. Read YAML file
        2. Expand ``${VAR}`` environment variable references
        3. Validate against :class:`SentinelConfig` (Pydantic)

    Raises:
        ConfigurationError: On file I/O errors, parse errors, or
            validation failures.
    """
    logger.debug("Loading configuration file: %s", cfg_fpath)

    if not os.path.exists(cfg_fpath):
        raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")

    raw_data = _read_config_file(cfg_fpath)
    config = validate_config_data(raw_data)

    server_total = sum(len(t.servers) for t in config.tenants.values())
    logger.info(
        "Configuration '%s' loaded (v%s). %d tenant(s), %d server entr%s, mode=%s.",
        cfg_fpath,
        config.version,
        len(config.tenants),
        server_total + len(config.default_servers),
        "y" if server_total + len(config.default_servers) == 1 else "ies",
        config.balancer.mode,
    )
    return config
