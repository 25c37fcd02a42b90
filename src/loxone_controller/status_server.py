"""Read-only HTTP status API (FastAPI served by uvicorn)."""

from __future__ import annotations

import asyncio
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException

from loxone_controller import __version__
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.structs import GlobalObject

g = GlobalObject()
logger = get_logger(__name__)

app = FastAPI(title="Loxone Controller", version=__version__)


@app.get("/api/status")
async def get_status() -> dict[str, Any]:
    """Connection state, supervisor state, queue length and info counters."""
    if g.bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not initialized")
    status = g.bridge.status()
    status["version"] = __version__
    return status


@app.get("/api/states/{item_id}")
async def get_state(item_id: str) -> dict[str, Any]:
    if g.bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not initialized")
    state = g.bridge.store.get_state(item_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown state: {item_id}")
    obj = g.bridge.store.get_object(item_id)
    return {
        "id": item_id,
        "state": state.model_dump(),
        "common": obj.common if obj else None,
    }


class StatusServer:
    """Manages the uvicorn server lifecycle for the status API."""

    lp = "StatusServer:"
    running: bool = False
    start_task: asyncio.Task[None] | None = None

    def __init__(self, host: str, port: int) -> None:
        self.app = app
        self.host: str = host
        self.port: int = port
        self.uvi_server = uvicorn.Server(
            config=uvicorn.Config(
                app,
                host=host,
                port=port,
                log_config={
                    "version": 1,
                    "disable_existing_loggers": False,
                },
                log_level="info",
            )
        )

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        logger.info("%s Starting status server on %s:%s", lp, self.host, self.port)
        self.running = True
        try:
            await self.uvi_server.serve()
        except asyncio.CancelledError:
            logger.info("%s Status server stopped", lp)
            raise
        except Exception:
            logger.exception("%s Error running status server", lp)
        finally:
            self.running = False

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        logger.info("%s Stopping status server...", lp)
        self.uvi_server.should_exit = True
        if self.start_task and not self.start_task.done():
            try:
                _ = await asyncio.wait_for(asyncio.shield(self.start_task), timeout=5)
            except TimeoutError:
                logger.debug("%s FINISHING: Cancelling start task", lp)
                _ = self.start_task.cancel()
            except asyncio.CancelledError:
                logger.debug("%s Start task cancelled", lp)
        self.running = False
