"""
Session manager: owns live client connections and their state machine.

  connecting → active → draining → closed

A session drains on an explicit end signal or idle timeout: new payloads are
refused while in-flight dispatches finish, bounded by the drain grace period.
Transport errors and abrupt disconnects close immediately. In-flight
inferences are never cancelled; results for a closed session are dropped.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Protocol

from musaed.backend import Backend
from musaed.config import Settings
from musaed.dispatcher import RequestDispatcher
from musaed.errors import SessionNotActive
from musaed.models.events import S2CEvent
from musaed.models.model import VOICE
from musaed.models.payload import DEFAULT_ENCODING, InferenceResult, VoicePayload
from musaed.models.session import SessionInfo, SessionState
from musaed.registry import ModelRegistry

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Transport handle for one client."""

    async def emit(self, event: str, data: Any) -> None: ...

    async def close(self) -> None: ...


class Session:
    __slots__ = (
        "id", "connection", "state", "created_at", "last_activity",
        "last_seen", "in_flight", "lock", "_next_sequence",
    )

    def __init__(self, id: str, connection: Connection, now: float):
        self.id = id
        self.connection = connection
        self.state = SessionState.CONNECTING
        self.created_at = datetime.now(timezone.utc)
        self.last_activity = self.created_at
        self.last_seen = now
        self.in_flight: set[asyncio.Future] = set()
        self.lock = asyncio.Lock()
        self._next_sequence = 1

    def next_sequence(self) -> int:
        sequence = self._next_sequence
        self._next_sequence += 1
        return sequence

    def touch(self, now: float) -> None:
        self.last_seen = now
        self.last_activity = datetime.now(timezone.utc)

    def info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            state=self.state,
            created_at=self.created_at,
            last_activity=self.last_activity,
            next_sequence=self._next_sequence,
            in_flight=len(self.in_flight),
        )

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, state={self.state.value!r})"


class SessionManager:
    def __init__(
        self,
        registry: ModelRegistry,
        backend: Backend,
        idle_timeout: float = 300.0,
        drain_grace: float = 10.0,
        sweep_interval: float = 15.0,
        required_capabilities: Iterable[str] = (VOICE,),
        max_concurrency: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sessions: dict[str, Session] = {}
        self._idle_timeout = idle_timeout
        self._drain_grace = drain_grace
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None
        self.dispatcher = RequestDispatcher(
            registry,
            backend,
            deliver=self.deliver_result,
            required_capabilities=required_capabilities,
            max_concurrency=max_concurrency,
        )

    @classmethod
    def from_settings(cls, settings: Settings, registry: ModelRegistry, backend: Backend) -> "SessionManager":
        return cls(
            registry,
            backend,
            idle_timeout=settings.idle_timeout,
            drain_grace=settings.drain_grace,
            sweep_interval=settings.sweep_interval,
            required_capabilities=settings.required_capabilities,
            max_concurrency=settings.max_concurrency,
        )

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.state is SessionState.ACTIVE)

    def get(self, session_id: str) -> Optional[SessionInfo]:
        session = self._sessions.get(session_id)
        return session.info() if session else None

    def sessions(self) -> list[SessionInfo]:
        return [s.info() for s in self._sessions.values()]

    async def create_session(self, connection: Connection) -> str:
        """Register a connection and complete the handshake (emit ``ready``)."""
        session_id = uuid.uuid4().hex
        session = Session(session_id, connection, self._clock())
        self._sessions[session_id] = session
        try:
            await connection.emit(S2CEvent.READY, {"session_id": session_id})
        except Exception as e:
            logger.warning(f"Handshake failed for session {session_id}: {e}")
            await self._close(session, drain=False)
            raise SessionNotActive(session_id, SessionState.CLOSED.value) from e
        session.state = SessionState.ACTIVE
        logger.info(f"Session {session_id} active")
        return session_id

    def dispatch_inbound(self, session_id: str, raw: bytes, encoding: Optional[str] = None) -> int:
        """Accept one payload and hand it to the dispatcher. Returns its sequence number."""
        session = self._sessions.get(session_id)
        if session is None or session.state is not SessionState.ACTIVE:
            raise SessionNotActive(session_id, session.state.value if session else None)

        payload = VoicePayload(
            session_id=session_id,
            sequence=session.next_sequence(),
            content=bytes(raw),
            encoding=encoding or DEFAULT_ENCODING,
        )
        session.touch(self._clock())
        future = self.dispatcher.dispatch(session, payload)
        session.in_flight.add(future)
        future.add_done_callback(session.in_flight.discard)
        logger.debug(f"Session {session_id} dispatched #{payload.sequence} ({payload.size} bytes)")
        return payload.sequence

    async def deliver_result(self, session_id: str, result: InferenceResult) -> None:
        """Send a result to the client; a no-op once the session is closed."""
        session = self._sessions.get(session_id)
        if session is None or session.state is SessionState.CLOSED:
            logger.debug(f"Dropping result #{result.sequence} for closed session {session_id}")
            return
        event, data = result.to_event()
        try:
            await session.connection.emit(event, data)
        except Exception as e:
            logger.warning(f"Transport error on session {session_id}: {e}")
            await self._close(session, drain=False)
            return
        session.touch(self._clock())

    async def close_session(self, session_id: str, drain: bool = True) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        await self._close(session, drain)

    async def _close(self, session: Session, drain: bool) -> None:
        if drain:
            async with session.lock:
                if session.state is SessionState.ACTIVE:
                    session.state = SessionState.DRAINING
                    pending = set(session.in_flight)
                    logger.info(f"Session {session.id} draining ({len(pending)} in flight)")
                    if pending:
                        _, pending = await asyncio.wait(pending, timeout=self._drain_grace)
                        if pending:
                            logger.warning(
                                f"Session {session.id}: grace period elapsed, "
                                f"dropping {len(pending)} pending results"
                            )
        if session.state is SessionState.CLOSED:
            return
        session.state = SessionState.CLOSED
        self._sessions.pop(session.id, None)
        try:
            await session.connection.close()
        except Exception as e:
            logger.debug(f"Closing transport for session {session.id} failed: {e}")
        logger.info(f"Session {session.id} closed")

    async def expire_idle(self) -> list[str]:
        """Drain active sessions idle for longer than the idle timeout."""
        now = self._clock()
        expired = [
            s for s in self._sessions.values()
            if s.state is SessionState.ACTIVE
            and not s.in_flight
            and now - s.last_seen >= self._idle_timeout
        ]
        for session in expired:
            logger.info(f"Session {session.id} idle for {now - session.last_seen:.0f}s")
        await asyncio.gather(*(self._close(s, drain=True) for s in expired))
        return [s.id for s in expired]

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await asyncio.gather(*(self._close(s, drain=True) for s in list(self._sessions.values())))

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.expire_idle()
            except Exception:
                logger.exception("Idle sweep failed")
