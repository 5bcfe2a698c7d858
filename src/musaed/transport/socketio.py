"""
Socket.IO gateway: maps client connection events onto the session manager.

  connect      → create_session (server emits `ready` with the session id)
  voice-data   → dispatch_inbound; ack is {"sequence": n} or {"error": ...}
  voice-end    → close_session(drain=True), then disconnect
  disconnect   → close_session(drain=False)
"""

import base64
import binascii
import logging
from typing import Any, Awaitable, Callable, Optional

import socketio

from musaed.errors import InvalidPayload, MusaedError
from musaed.models.events import C2SEvent, S2CEvent
from musaed.sessions import SessionManager

logger = logging.getLogger(__name__)

SOCKETIO_PATH = "socket.io"


def parse_voice_data(data: Any, max_bytes: int) -> tuple[bytes, Optional[str]]:
    """Accept raw bytes or {"data": bytes | base64 str, "encoding": str}."""
    encoding = None
    if isinstance(data, dict):
        encoding = data.get("encoding")
        if encoding is not None and not isinstance(encoding, str):
            raise InvalidPayload("encoding must be a string")
        data = data.get("data", data.get("audio"))
    if isinstance(data, str):
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidPayload("voice data is not valid base64")
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise InvalidPayload("voice data must be bytes or base64 text")
    raw = bytes(data)
    if not raw:
        raise InvalidPayload("voice data is empty")
    if len(raw) > max_bytes:
        raise InvalidPayload(f"voice data exceeds {max_bytes} bytes")
    return raw, encoding


class SocketConnection:
    """Connection handle for one Socket.IO client."""

    def __init__(self, sio: socketio.AsyncServer, sid: str):
        self._sio = sio
        self.sid = sid
        self.closed = False

    async def emit(self, event: str, data: Any) -> None:
        if self.closed:
            raise RuntimeError(f"Socket.IO client {self.sid} disconnected")
        await self._sio.emit(event, data, to=self.sid)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._sio.disconnect(self.sid)


class SocketIOGateway:
    def __init__(
        self,
        sessions: SessionManager,
        max_payload_bytes: int = 50 * 1024 * 1024,
        cors_origins: Optional[list[str]] = None,
    ):
        self._sessions = sessions
        self._max_payload_bytes = max_payload_bytes
        # sid → (connection, session id)
        self._connections: dict[str, tuple[SocketConnection, str]] = {}
        self.sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=cors_origins or [],
            # base64 framing on polling transports adds a third
            max_http_buffer_size=max_payload_bytes * 4 // 3 + 1024,
            always_connect=True,
        )
        self._register_handlers()

    def session_for(self, sid: str) -> Optional[str]:
        entry = self._connections.get(sid)
        return entry[1] if entry else None

    def asgi_app(
        self,
        other_asgi_app: Any = None,
        on_startup: Optional[Callable[[], Awaitable[None]]] = None,
        on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> socketio.ASGIApp:
        """ASGI app serving Socket.IO and forwarding every other request to ``other_asgi_app``."""
        return socketio.ASGIApp(
            self.sio,
            other_asgi_app=other_asgi_app,
            socketio_path=SOCKETIO_PATH,
            on_startup=on_startup,
            on_shutdown=on_shutdown,
        )

    def _register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on(C2SEvent.VOICE_DATA, self.on_voice_data)
        self.sio.on(C2SEvent.VOICE_END, self.on_voice_end)

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> Optional[bool]:
        connection = SocketConnection(self.sio, sid)
        try:
            session_id = await self._sessions.create_session(connection)
        except MusaedError as e:
            logger.warning(f"Rejecting client {sid}: {e.message}")
            return False
        self._connections[sid] = (connection, session_id)
        logger.info(f"Client connected: {sid} (session {session_id})")
        return None

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        entry = self._connections.pop(sid, None)
        if entry is None:
            return
        connection, session_id = entry
        connection.closed = True
        logger.info(f"Client disconnected: {sid} (session {session_id})")
        await self._sessions.close_session(session_id, drain=False)

    async def on_voice_data(self, sid: str, data: Any = None) -> dict[str, Any]:
        session_id = self.session_for(sid)
        try:
            if session_id is None:
                raise InvalidPayload("no session for this connection")
            raw, encoding = parse_voice_data(data, self._max_payload_bytes)
            sequence = self._sessions.dispatch_inbound(session_id, raw, encoding)
        except MusaedError as e:
            logger.info(f"Refused voice data from {sid}: {e.code}")
            await self.sio.emit(S2CEvent.ERROR, {"message": e.message, "code": e.code, "sequence": None}, to=sid)
            return {"error": e.message, "code": e.code}
        return {"sequence": sequence}

    async def on_voice_end(self, sid: str, data: Any = None) -> None:
        session_id = self.session_for(sid)
        if session_id is None:
            return
        logger.info(f"Client {sid} ended its stream")
        await self._sessions.close_session(session_id, drain=True)
