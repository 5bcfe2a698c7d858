"""
MusaedServer: assembles backend, registry, sessions, Socket.IO gateway and
HTTP API into one ASGI application.

The outer Socket.IO app owns the ASGI lifespan: startup does the first
registry refresh and starts the background loops, shutdown drains sessions.
"""

import logging
from typing import Optional

import uvicorn

from musaed.api import create_api
from musaed.backend import Backend, BackendClient
from musaed.config import Settings
from musaed.errors import MusaedError
from musaed.registry import ModelRegistry
from musaed.sessions import SessionManager
from musaed.transport.socketio import SocketIOGateway

logger = logging.getLogger(__name__)


class MusaedServer:
    def __init__(self, settings: Optional[Settings] = None, backend: Optional[Backend] = None):
        self.settings = settings or Settings()
        self.backend = backend or BackendClient.from_settings(self.settings)
        self.registry = ModelRegistry(self.backend)
        self.sessions = SessionManager.from_settings(self.settings, self.registry, self.backend)
        self.gateway = SocketIOGateway(
            self.sessions,
            max_payload_bytes=self.settings.max_payload_bytes,
            cors_origins=self.settings.cors_origins,
        )
        self.api = create_api(self.registry, self.sessions, cors_origins=self.settings.cors_origins)
        self.app = self.gateway.asgi_app(self.api, on_startup=self.start, on_shutdown=self.stop)

    async def start(self) -> None:
        try:
            await self.registry.refresh()
        except MusaedError as e:
            # Keep serving; the periodic refresh will retry
            logger.warning(f"Initial registry refresh failed: {e.message}")
        self.registry.start(self.settings.refresh_interval)
        self.sessions.start()

    async def stop(self) -> None:
        await self.sessions.stop()
        await self.registry.stop()
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()

    def run(self) -> None:
        """Serve until interrupted (blocking)."""
        host, port = self.settings.host, self.settings.port
        logger.info(f"Musaed server starting on {host}:{port}, backend {self.settings.backend_url}")
        logger.info(f"Health check: http://localhost:{port}/api/health")
        uvicorn.run(self.app, host=host, port=port, log_config=None)
