"""Signal handling, shutdown and startup helpers."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from pathlib import Path

from loxone_controller.logging_abstraction import get_logger
from loxone_controller.structs import GlobalObject

logger = get_logger(__name__)
g = GlobalObject()

MIN_PY_VERSION = (3, 12)
_cleanup_tasks: set[asyncio.Task[None]] = set()


def send_signal(signal_num: int) -> None:
    """Send a signal to the current process."""
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm() -> None:
    """Request termination of the application."""
    send_signal(signal.SIGTERM)


async def _async_signal_cleanup() -> None:
    logger.info("Loxone Controller: Starting signal cleanup...")
    if g.status_server:
        logger.debug("Stopping status_server...")
        await g.status_server.stop()
    if g.mqtt_client:
        logger.debug("Stopping mqtt_client...")
        await g.mqtt_client.stop()
    if g.bridge:
        logger.debug("Stopping bridge...")
        await g.bridge.stop()
        _ = g.bridge.store.save_snapshot(g.env.snapshot_path)
    for task in g.tasks:
        if not task.done():
            logger.debug("Loxone Controller: Cancelling task: %s", task.get_name())
            _ = task.cancel()
    logger.info("Loxone Controller: Signal cleanup completed")


def signal_handler(signum: int) -> None:
    """Handle incoming POSIX signals by scheduling async cleanup."""
    logger.info("Loxone Controller: Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    loop = g.loop or asyncio.get_event_loop()
    task = loop.create_task(_async_signal_cleanup())
    _cleanup_tasks.add(task)
    task.add_done_callback(_cleanup_tasks.discard)


def check_python_version() -> None:
    """Ensure the running interpreter meets the minimum supported version."""
    if sys.version_info < MIN_PY_VERSION:
        version_message = (
            f"Loxone Controller requires Python {MIN_PY_VERSION[0]}.{MIN_PY_VERSION[1]} or newer; "
            f"detected {sys.version_info.major}.{sys.version_info.minor}"
        )
        raise RuntimeError(version_message)


def ensure_persistent_dir(path: str) -> Path:
    """Create the directory holding the config file and state snapshot if needed."""
    lp = "ensure_persistent_dir:"
    persistent_dir = Path(path).expanduser().resolve()
    if not persistent_dir.exists():
        try:
            persistent_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception("%s Failed to create persistent directory: %s - Exiting...", lp, persistent_dir)
            sys.exit(1)
        logger.info("%s Created persistent directory: %s", lp, persistent_dir.as_posix())
    return persistent_dir
