"""
Dashboard - Server.

Runs the read API under uvicorn as one of the process workers.
Signals are handled by the runtime; the server only watches the
shared shutdown event and drains in-flight requests within the
configured deadline.
"""

import asyncio
import logging

import uvicorn
from fastapi import FastAPI

from core.config import ApiConfig

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass


class ApiServer:
    """Read-serving worker."""

    def __init__(self, app: FastAPI, config: ApiConfig):
        self._config = config
        uvicorn_config = uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_level="info",
            access_log=False,
            timeout_graceful_shutdown=int(config.shutdown_deadline_seconds),
        )
        self._server = _EmbeddedServer(uvicorn_config)

    @property
    def started(self) -> bool:
        return self._server.started

    async def serve(self, shutdown: asyncio.Event) -> None:
        """Serve until shutdown is set, then drain with a deadline."""
        logger.info(f"Backend starting on {self._config.host}:{self._config.port}")
        serve_task = asyncio.create_task(self._server.serve())
        shutdown_task = asyncio.create_task(shutdown.wait())

        done, _ = await asyncio.wait({serve_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        if serve_task in done:
            shutdown_task.cancel()
            # Surfaces bind failures and other startup errors
            serve_task.result()
            return

        logger.info("Shutting down the backend server...")
        self._server.should_exit = True
        try:
            await asyncio.wait_for(serve_task, timeout=self._config.shutdown_deadline_seconds + 1)
            logger.info("Backend server gracefully stopped")
        except asyncio.TimeoutError:
            self._server.force_exit = True
            logger.warning("Backend server did not stop within the deadline")
