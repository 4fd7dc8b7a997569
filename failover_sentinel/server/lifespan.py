"""Application lifespan management: startup and shutdown sequences.

The lifespan builds a :class:`~failover_sentinel.runtime.BalancerService`
from the config that :func:`create_app` put on ``app.state``, drives its
lifecycle, and prints console status updates around each phase.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from starlette.applications import Starlette

from failover_sentinel.config.schema import SentinelConfig
from failover_sentinel.constants import SERVER_NAME, SERVER_VERSION
from failover_sentinel.display.console import (
    disp_console_status,
    gen_status_info,
    log_file_status,
)
from failover_sentinel.errors import ConfigurationError
from failover_sentinel.runtime.service import BalancerService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: Starlette) -> AsyncIterator[None]:
    """Create the balancer service, run it, and shut it down."""
    app_s = app.state
    logger.info("Server '%s' v%s startup sequence started...", SERVER_NAME, SERVER_VERSION)

    service: Optional[BalancerService] = None
    startup_ok = False
    err_detail_msg: Optional[str] = None

    try:
        status_info_init = gen_status_info(app_s, "Server is starting...")
        disp_console_status("Initialization", status_info_init)
        log_file_status(status_info_init)

        config: SentinelConfig = app_s.sentinel_config
        service = BalancerService(
            config,
            transport=getattr(app_s, "transport", None),
            rng=getattr(app_s, "rng", None),
            ws_connect=getattr(app_s, "ws_connect", None),
        )
        await service.start()
        app_s.balancer_service = service

        # The management sub-app has its own State object.
        mgmt_app = getattr(app_s, "mgmt_app", None)
        if mgmt_app is not None:
            mgmt_app.state.balancer_service = service
            mgmt_app.state.config_file_path = getattr(app_s, "config_file_path", None)

        logger.info("Lifespan startup phase completed successfully.")
        startup_ok = True

        status_info_ready = gen_status_info(
            app_s,
            "Server started successfully and is ready.",
            mode=service.policy.value,
            tenants=service.resolver.tenants,
            servers=service.backend_health(),
        )
        disp_console_status("Service Ready", status_info_ready)
        log_file_status(status_info_ready)
        yield

    except ConfigurationError as e_cfg:
        logger.exception("Configuration error: %s", e_cfg)
        err_detail_msg = f"Configuration error: {e_cfg}"
        status_info_fail = gen_status_info(app_s, "Server startup failed.", err_msg=err_detail_msg)
        disp_console_status("Startup Failed", status_info_fail)
        log_file_status(status_info_fail, log_lvl=logging.ERROR)
        raise
    except Exception as e_exc:
        if startup_ok:
            raise
        logger.exception("Unexpected error during lifespan startup: %s", e_exc)
        err_detail_msg = f"Unexpected error: {type(e_exc).__name__} - {e_exc}"
        status_info_fail = gen_status_info(app_s, "Server startup failed.", err_msg=err_detail_msg)
        disp_console_status("Startup Failed", status_info_fail)
        log_file_status(status_info_fail, log_lvl=logging.ERROR)
        raise
    finally:
        logger.info("Server '%s' shutdown sequence started...", SERVER_NAME)
        status_info_shutdown = gen_status_info(app_s, "Server is shutting down...")
        disp_console_status("Shutting Down", status_info_shutdown)
        log_file_status(status_info_shutdown, log_lvl=logging.WARNING)

        if service is not None:
            await service.stop()

        final_msg_short = (
            "Server shut down normally."
            if startup_ok
            else (
                "Server exited abnormally"
                f"{(f' - Error: {err_detail_msg}' if err_detail_msg else '')}"
            )
        )
        status_info_final = gen_status_info(
            app_s,
            final_msg_short,
            err_msg=err_detail_msg if not startup_ok else None,
        )
        disp_console_status("Final Status", status_info_final, is_final=True)
        log_file_status(status_info_final, log_lvl=logging.INFO if startup_ok else logging.ERROR)
        logger.info("Server '%s' shutdown sequence completed.", SERVER_NAME)
