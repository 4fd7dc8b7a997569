"""Console status display and log-file status writing."""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from failover_sentinel.constants import (
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    MANAGEMENT_API_PREFIX,
    SERVER_NAME,
    SERVER_VERSION,
)

logger = logging.getLogger(__name__)


def gen_status_info(
    app_state: Optional[object],
    status_msg: str,
    mode: Optional[str] = None,
    tenants: Optional[List[str]] = None,
    servers: Optional[List[Dict[str, Any]]] = None,
    err_msg: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate a structured dictionary of status information."""
    host = getattr(app_state, "host", "N/A") if app_state else "N/A"
    port = getattr(app_state, "port", 0) if app_state else 0

    info: Dict[str, Any] = {
        "ts": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "status_msg": status_msg,
        "host": host,
        "port": port,
        "log_fpath": (
            getattr(app_state, "actual_log_file", DEFAULT_LOG_FILE)
            if app_state
            else DEFAULT_LOG_FILE
        ),
        "log_lvl_cfg": (
            getattr(app_state, "file_log_level_configured", DEFAULT_LOG_LEVEL)
            if app_state
            else DEFAULT_LOG_LEVEL
        ),
        "listen_url": f"http://{host}:{port}/" if port > 0 else "N/A",
        "mgmt_url": f"http://{host}:{port}{MANAGEMENT_API_PREFIX}" if port > 0 else "N/A",
        "cfg_fpath": (getattr(app_state, "config_file_path", "N/A") if app_state else "N/A") or "N/A",
        "err_msg": err_msg,
        "servers": servers or [],
    }
    if mode is not None:
        info["mode"] = mode
    if tenants is not None:
        info["tenants"] = tenants
        info["tenants_count"] = len(tenants)
    if servers is not None:
        info["servers_count"] = len(servers)
    return info


def disp_console_status(stage: str, status_info: Dict[str, Any], is_final: bool = False) -> None:
    """Print formatted status information to the console."""
    header = f" {SERVER_NAME} v{SERVER_VERSION} "
    sep_char = "="
    line_len = 70

    if not hasattr(disp_console_status, "header_printed") or is_final:
        print(f"\n{sep_char * line_len}")
        print(f"{header:-^{line_len}}")
        print(f"{sep_char * line_len}")
        if not is_final:
            disp_console_status.header_printed = True  # type: ignore[attr-defined]
        else:
            if hasattr(disp_console_status, "header_printed"):
                delattr(disp_console_status, "header_printed")

    print(f"[{status_info['ts']}] {stage} Status: {status_info['status_msg']}")

    if not is_final and stage == "Initialization":
        print(f"    Listening On: {status_info['listen_url']}")
        print(f"    Management API: {status_info['mgmt_url']}")
        print(f"    Config File: {os.path.basename(str(status_info['cfg_fpath']))}")
        print(f"    Log File: {status_info['log_fpath']} " f"(level: {status_info['log_lvl_cfg']})")

    if "mode" in status_info:
        print(f"    Balancing Mode: {status_info['mode']}")
    if "tenants_count" in status_info:
        print(f"    Tenants: {status_info['tenants_count']} configured")
    if "servers_count" in status_info:
        print(f"    Backend Servers: {status_info['servers_count']} configured")

    if status_info.get("err_msg"):
        print(f"    !! Error: {status_info['err_msg']}")

    if not is_final:
        print("-" * line_len)

    if is_final:
        print(f"    Log File: {status_info['log_fpath']}")
        print(f"{sep_char * line_len}\n")


def log_file_status(status_info: Dict[str, Any], log_lvl: int = logging.INFO) -> None:
    """Write detailed status information to the log file."""
    log_lines = [
        f"Server Status Update: {status_info['status_msg']}",
        f"  Listen URL: {status_info['listen_url']}",
        f"  Management URL: {status_info['mgmt_url']}",
        f"  Config File Used: {status_info['cfg_fpath']}",
        f"  Configured File Log Level: {status_info['log_lvl_cfg']}",
        f"  Actual Log File: {status_info['log_fpath']}",
    ]
    if "mode" in status_info:
        log_lines.append(f"  Balancing Mode: {status_info['mode']}")
    if status_info.get("err_msg"):
        log_lines.append(f"  Error Details: {status_info['err_msg']}")

    if "tenants" in status_info:
        log_lines.append(f"  Tenants ({status_info['tenants_count']}):")
        for tenant in status_info["tenants"]:
            log_lines.append(f"    - {tenant}")
    if "servers_count" in status_info:
        log_lines.append(f"  Backend Servers ({status_info['servers_count']}):")
        if status_info["servers"]:
            for srv in status_info["servers"]:
                log_lines.append(
                    f"    - {srv.get('name')} -> {srv.get('host')} "
                    f"(weight {srv.get('base_weight')}, circuit {srv.get('circuit', 'closed')})"
                )
        else:
            log_lines.append("    No servers configured.")

    logger.log(log_lvl, "\n".join(log_lines))
