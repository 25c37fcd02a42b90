"""Main entrypoint and lifecycle management for the Loxone Controller service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from functools import partial
from pathlib import Path
from typing import Protocol, cast, runtime_checkable

import dotenv
import uvloop

from loxone_controller.bridge import LoxoneBridge
from loxone_controller.const import (
    LOXONE_CONFIG_FILE_PATH,
    LOXONE_DEBUG,
    LOXONE_VERSION,
    MQTT_CLIENT_START_TASK_NAME,
    PERSISTENT_BASE_DIR,
    STATUS_SRV_START_TASK_NAME,
    SUPERVISOR_START_TASK_NAME,
)
from loxone_controller.correlation import correlation_context, ensure_correlation_id
from loxone_controller.logging_abstraction import get_logger, set_package_level
from loxone_controller.metrics import start_metrics_server
from loxone_controller.mqtt_client import MQTTClient
from loxone_controller.state_store import StateStore
from loxone_controller.status_server import StatusServer
from loxone_controller.structs import GlobalObject, load_config
from loxone_controller.transport import GatewayTransport
from loxone_controller.utils import check_python_version, ensure_persistent_dir, send_sigterm, signal_handler

logger = get_logger(__name__)

# Keep uvicorn and mqtt library output terse
uv_handler = logging.StreamHandler(sys.stdout)
uv_handler.setLevel(logging.INFO)
uv_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s.%(msecs)d %(levelname)s (%(name)s) > %(message)s",
        "%m/%d/%y %H:%M:%S",
    ),
)
for _ul in (logging.getLogger("uvicorn"), logging.getLogger("uvicorn.error"), logging.getLogger("uvicorn.access")):
    _ul.setLevel(logging.INFO)
    _ul.propagate = False
    _ul.addHandler(uv_handler)

mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False

g = GlobalObject()


@runtime_checkable
class _CLIArgs(Protocol):
    status_server: bool
    debug: bool
    env: Path | None
    config: Path | None


class LoxoneController:
    """Orchestrates the bridge, the MQTT front end and the status server."""

    lp: str = "LoxoneController:"

    def __init__(self) -> None:
        self.loop: asyncio.AbstractEventLoop = uvloop.new_event_loop()
        g.loop = loop = self.loop
        asyncio.set_event_loop(loop)

        logger.info(" Initializing Loxone Controller", extra={"version": LOXONE_VERSION})

        loop.add_signal_handler(signal.SIGINT, partial(signal_handler, signal.SIGINT))
        loop.add_signal_handler(signal.SIGTERM, partial(signal_handler, signal.SIGTERM))
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    async def start(self) -> None:
        """Load configuration and state, then run every service until cancelled."""
        _ = ensure_correlation_id()
        lp = f"{self.lp}start:"

        _ = ensure_persistent_dir(PERSISTENT_BASE_DIR)
        cli_args = cast("_CLIArgs | None", g.cli_args)
        cfg_file = (cli_args.config if cli_args and cli_args.config else Path(LOXONE_CONFIG_FILE_PATH)).expanduser()
        g.env = env = load_config(cfg_file.resolve(), g.env)

        store = StateStore(sync_names=env.sync_names)
        _ = store.load_snapshot(Path(env.snapshot_path).expanduser())

        bridge = LoxoneBridge(
            GatewayTransport(env.gateway_path),
            store,
            endpoint=env.endpoint,
            username=env.username,
            password=env.password,
            ack_timeout_ms=env.ack_timeout_ms,
            reconnect_delay_ms=env.reconnect_delay_ms,
            flush_interval_ms=env.flush_interval_ms,
            sync_rooms=env.sync_rooms,
            sync_functions=env.sync_functions,
        )
        g.bridge = bridge

        if env.metrics_enabled:
            logger.info("%s Starting metrics server on port %s", lp, env.metrics_port)
            start_metrics_server(env.metrics_port)

        mqtt_client = MQTTClient(bridge, env)
        g.mqtt_client = mqtt_client
        mqtt_client.start_task = asyncio.Task(mqtt_client.start(), name=MQTT_CLIENT_START_TASK_NAME)
        g.tasks.append(mqtt_client.start_task)
        g.tasks.append(asyncio.Task(bridge.start(), name=SUPERVISOR_START_TASK_NAME))

        if cli_args and cli_args.status_server:
            status_server = StatusServer(env.status_srv_host, env.status_srv_port)
            g.status_server = status_server
            status_server.start_task = asyncio.Task(status_server.start(), name=STATUS_SRV_START_TASK_NAME)
            g.tasks.append(status_server.start_task)

        logger.info("%s Services started", lp, extra={"endpoint": env.endpoint, "task_count": len(g.tasks)})
        try:
            _ = await asyncio.gather(*g.tasks, return_exceptions=True)
        except Exception:
            logger.exception("%s Service startup failed", lp)
            await self.stop()
            raise

    async def stop(self) -> None:
        logger.info(" Shutting down Loxone Controller...")
        send_sigterm()


def parse_cli() -> None:
    """Parse CLI arguments for the controller process."""
    parser = argparse.ArgumentParser(description="Loxone Controller")
    _ = parser.add_argument(
        "--status-server",
        action="store_true",
        dest="status_server",
        help="Enable the HTTP status server",
    )
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("--config", help="Path to the YAML config file", default=None, type=Path)
    parsed_args = parser.parse_args()
    g.cli_args = parsed_args
    args = cast("_CLIArgs", cast("object", parsed_args))

    if args.debug:
        set_package_level(logging.DEBUG)
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info(" Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    g.reload_env()


def main() -> None:
    """Run the Loxone Controller entry point."""
    with correlation_context():
        logger.info("Starting Loxone Controller", extra={"version": LOXONE_VERSION})

        parse_cli()

        if LOXONE_DEBUG:
            logger.info("Debug logging enabled via configuration")
            set_package_level(logging.DEBUG)

        check_python_version()
        controller = LoxoneController()

        try:
            controller.loop.run_until_complete(controller.start())
        except asyncio.CancelledError:
            logger.info("Loxone Controller cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception:
            logger.exception(" Fatal error in main loop")
        else:
            logger.info(" Loxone Controller stopped gracefully")
        finally:
            if g.loop is not None and not g.loop.is_closed():
                g.loop.close()
            logger.info("Loxone Controller shutdown complete")


if __name__ == "__main__":
    main()
