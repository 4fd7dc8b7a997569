"""Logging configuration setup."""

import copy
import logging
import logging.config
import os
import re
import sys
from datetime import datetime
from typing import Set, Tuple  # noqa: UP035

from failover_sentinel.constants import LOG_DIR

# ── Secret redaction filter ──────────────────────────────────────────────

_REDACTED = "***REDACTED***"


class SecretRedactionFilter(logging.Filter):
    """Logging filter that replaces registered secret values with a placeholder.

    Call :meth:`register` to add values that should be scrubbed (e.g. the
    management API token).
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: re.Pattern[str] | None = None

    def register(self, value: str) -> None:
        """Register a secret value for redaction."""
        if value and len(value) >= 4:  # skip trivially short values
            self._secrets.add(value)
            # Longest first so overlapping secrets are fully masked
            escaped = sorted((re.escape(s) for s in self._secrets), key=len, reverse=True)
            self._pattern = re.compile("|".join(escaped))

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is not None:
            if isinstance(record.msg, str):
                record.msg = self._pattern.sub(_REDACTED, record.msg)
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {
                        k: self._pattern.sub(_REDACTED, v) if isinstance(v, str) else v
                        for k, v in record.args.items()
                    }
                elif isinstance(record.args, tuple):
                    record.args = tuple(
                        self._pattern.sub(_REDACTED, a) if isinstance(a, str) else a
                        for a in record.args
                    )
        return True


# Module-level singleton so the server can register the token at start-up.
secret_redaction_filter = SecretRedactionFilter()

_APP_LOGGERS = (
    "failover_sentinel",
    "failover_sentinel.balancer",
    "failover_sentinel.server",
    "failover_sentinel.config",
    "uvicorn",
    "uvicorn.error",
    "starlette",
)

# Chatty third-party loggers kept at WARNING unless running in DEBUG.
_QUIET_LOGGERS = ("httpx", "httpcore", "websockets")

BASE_LOG_CFG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple_file": {
            "format": ("%(asctime)s - %(name)30s:%(lineno)-4d - " "%(levelname)-7s - %(message)s"),
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "file_handler": {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "simple_file",
            "filename": "temp_log_name.log",
            "encoding": "utf-8",
        },
    },
    "loggers": {
        "uvicorn.access": {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": "WARNING",
        },
    },
    "root": {
        "handlers": ["file_handler"],
        "level": "WARNING",
    },
}


def build_log_config(log_fpath: str, log_lvl: str) -> dict:
    """Return a ``dictConfig`` mapping writing to *log_fpath* at *log_lvl*."""
    log_cfg: dict = copy.deepcopy(BASE_LOG_CFG)
    log_cfg["handlers"]["file_handler"]["filename"] = log_fpath

    for name in _APP_LOGGERS:
        log_cfg["loggers"][name] = {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": log_lvl,
        }
    for name in _QUIET_LOGGERS:
        log_cfg["loggers"][name] = {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": "DEBUG" if log_lvl == "DEBUG" else "WARNING",
        }

    log_cfg["loggers"]["uvicorn.access"]["level"] = "INFO" if log_lvl == "DEBUG" else "WARNING"
    log_cfg["root"]["level"] = log_lvl if log_lvl == "DEBUG" else "WARNING"
    return log_cfg


def setup_logging(log_lvl_str: str, *, quiet: bool = False) -> Tuple[str, str]:
    """
    Set up the logging system.

    Uses a timestamped dynamic filename under ``logs/`` and applies the
    requested level to the application and server loggers.

    Args:
        log_lvl_str: The desired log level string (e.g., 'debug', 'info').
        quiet: If *True*, suppress ``print()`` output.

    Returns:
        A tuple of (log_file_path, validated_log_level).
    """
    log_lvl_valid = log_lvl_str.upper()
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if log_lvl_valid not in valid_levels:
        if not quiet:
            print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.")
        log_lvl_valid = "INFO"

    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    os.makedirs(LOG_DIR, exist_ok=True)
    log_fpath = os.path.join(LOG_DIR, f"failover_{ts}_{log_lvl_valid}.log")

    log_cfg = build_log_config(log_fpath, log_lvl_valid)

    try:
        logging.config.dictConfig(log_cfg)
        for handler in logging.root.handlers:
            handler.addFilter(secret_redaction_filter)
        for name in (*_APP_LOGGERS, *_QUIET_LOGGERS, "uvicorn.access"):
            for handler in logging.getLogger(name).handlers:
                handler.addFilter(secret_redaction_filter)
        if not quiet:
            print(f"Logging initialized. File log level: {log_lvl_valid}, log file: {log_fpath}")
    except (ValueError, TypeError, AttributeError, ImportError, OSError) as e_log_cfg:
        if not quiet:
            print(
                f"Error applying logging configuration: {e_log_cfg}",
                file=sys.stderr,
            )

    return log_fpath, log_lvl_valid
