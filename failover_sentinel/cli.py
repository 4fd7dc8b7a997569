"""CLI argument parsing and main entry point.

Provides two subcommands:

* ``failover-sentinel server`` : run the balancer under Uvicorn.
* ``failover-sentinel check``  : validate a config file and print a summary.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import uvicorn

from failover_sentinel.constants import SERVER_NAME, SERVER_VERSION
from failover_sentinel.display.logging_config import setup_logging
from failover_sentinel.errors import ConfigurationError

module_logger = logging.getLogger(__name__)

uvicorn_svr_inst: Optional[uvicorn.Server] = None


# ── ``failover-sentinel server`` ─────────────────────────────────────────


async def _run_server(
    host: Optional[str],
    port: Optional[int],
    log_lvl_cli: str,
    config_path: str | None = None,
) -> None:
    """Async main for the server subcommand."""
    global uvicorn_svr_inst

    log_fpath, cfg_log_lvl = setup_logging(log_lvl_cli)

    module_logger.info(
        "---- %s v%s starting (file log level: %s) ----",
        SERVER_NAME,
        SERVER_VERSION,
        cfg_log_lvl,
    )

    from failover_sentinel.config.loader import find_config_file
    from failover_sentinel.server.app import create_app

    cfg_abs_path = os.path.abspath(find_config_file(config_path))
    module_logger.info("Configuration file path resolved to: %s", cfg_abs_path)

    try:
        app = create_app(config_path=cfg_abs_path)
    except ConfigurationError as e_cfg:
        module_logger.error("Configuration error: %s", e_cfg)
        print(f"\nError: {e_cfg}\n", file=sys.stderr)
        raise SystemExit(1) from e_cfg

    app_s = app.state
    if host is not None:
        app_s.host = host
    if port is not None:
        app_s.port = port
    app_s.actual_log_file = log_fpath
    app_s.file_log_level_configured = cfg_log_lvl

    uvicorn_cfg = uvicorn.Config(
        app=app,
        host=app_s.host,
        port=app_s.port,
        log_config=None,
        log_level=cfg_log_lvl.lower() if cfg_log_lvl == "DEBUG" else "warning",
    )
    uvicorn_svr_inst = uvicorn.Server(uvicorn_cfg)

    module_logger.info("Preparing to start Uvicorn server: http://%s:%s", app_s.host, app_s.port)
    try:
        await uvicorn_svr_inst.serve()
    except (KeyboardInterrupt, SystemExit) as e_exit:
        module_logger.info("Server stopped due to '%s'.", type(e_exit).__name__)
    except Exception as e_serve:
        module_logger.exception("Unexpected error while running Uvicorn server: %s", e_serve)
        raise
    finally:
        module_logger.info("%s has shut down or is shutting down.", SERVER_NAME)


def _cmd_server(args: argparse.Namespace) -> None:
    """Entry-point for ``failover-sentinel server``."""
    _force_exit_count = 0

    def _sigint_handler(sig: int, frame: object) -> None:
        nonlocal _force_exit_count
        _force_exit_count += 1
        if _force_exit_count >= 2:
            module_logger.info("Force exit requested (double Ctrl+C).")
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            os._exit(1)
        module_logger.info("Ctrl+C received, shutting down.")
        print("\n[Ctrl+C] Shutting down gracefully... (press again to force)")
        if uvicorn_svr_inst is not None:
            uvicorn_svr_inst.should_exit = True

    def _sigterm_handler(sig: int, frame: object) -> None:
        module_logger.info("SIGTERM received, shutting down gracefully.")
        if uvicorn_svr_inst is not None:
            uvicorn_svr_inst.should_exit = True

    signal.signal(signal.SIGINT, _sigint_handler)
    signal.signal(signal.SIGTERM, _sigterm_handler)

    try:
        asyncio.run(
            _run_server(
                host=args.host,
                port=args.port,
                log_lvl_cli=args.log_level,
                config_path=args.config,
            )
        )
    except KeyboardInterrupt:
        module_logger.info("%s main program interrupted by KeyboardInterrupt.", SERVER_NAME)
    except SystemExit as e_sys_exit:
        if e_sys_exit.code is None or e_sys_exit.code == 0:
            module_logger.info("%s main program exited normally.", SERVER_NAME)
        else:
            module_logger.error(
                "%s main program exited with SystemExit (code: %s).",
                SERVER_NAME,
                e_sys_exit.code,
            )
            raise
    except Exception as e_fatal:
        module_logger.exception(
            "%s main program encountered an uncaught fatal error: %s",
            SERVER_NAME,
            e_fatal,
        )
        sys.exit(1)
    finally:
        module_logger.info("%s application finished.", SERVER_NAME)


# ── ``failover-sentinel check`` ──────────────────────────────────────────


def _cmd_check(args: argparse.Namespace) -> None:
    """Validate the config file and print a tenant/server summary."""
    from failover_sentinel.balancer.tenants import DEFAULT_TENANT
    from failover_sentinel.config.loader import find_config_file, load_sentinel_config

    cfg_path = find_config_file(args.config)
    try:
        config = load_sentinel_config(cfg_path)
    except ConfigurationError as e_cfg:
        print(f"Invalid configuration ({cfg_path}):\n{e_cfg}", file=sys.stderr)
        sys.exit(1)

    bal = config.balancer
    print(f"Configuration OK: {cfg_path}")
    print(
        f"  mode={bal.mode} timeout={bal.timeout}s retries={bal.retries} "
        f"scheme={bal.upstream_scheme} fast_failover={bal.fast_failover.enabled}"
    )
    sets = [(host, t.servers) for host, t in sorted(config.tenants.items())]
    if config.default_servers:
        sets.append((DEFAULT_TENANT, config.default_servers))
    for host, servers in sets:
        print(f"  {host}:")
        for srv in servers:
            print(f"    - {srv.name} -> {srv.host} (weight {srv.weight:g})")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with server/check subcommands."""
    parser = argparse.ArgumentParser(
        prog="failover-sentinel",
        description=f"{SERVER_NAME} v{SERVER_VERSION}",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {SERVER_VERSION}")

    subparsers = parser.add_subparsers(dest="command")

    config_help = (
        "Path to configuration file (YAML). "
        "Default: $FAILOVER_CONFIG, then config.yaml/config.yml in CWD"
    )

    # ── server ──────────────────────────────────────────────────
    sp_server = subparsers.add_parser("server", help="Run the load balancer (Uvicorn)")
    sp_server.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address (default: server.host from config)",
    )
    sp_server.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port (default: server.port from config)",
    )
    sp_server.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Set file logging level (default: info)",
    )
    sp_server.add_argument("--config", type=str, default=None, metavar="PATH", help=config_help)
    sp_server.set_defaults(func=_cmd_server)

    # ── check ───────────────────────────────────────────────────
    sp_check = subparsers.add_parser("check", help="Validate the configuration and exit")
    sp_check.add_argument("--config", type=str, default=None, metavar="PATH", help=config_help)
    sp_check.set_defaults(func=_cmd_check)

    return parser


def main(argv: Optional[list] = None) -> None:
    """Program entry point: parse arguments and dispatch to subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    else:
        args.func(args)
