"""Shared fakes: an in-memory model backend and a recording client connection."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from musaed.errors import ModelNotFound
from musaed.models.model import ModelDescriptor
from musaed.models.payload import InferenceResult, VoicePayload


class FakeBackend:
    def __init__(self, models: Optional[dict[str, set[str]]] = None):
        self.models: dict[str, set[str]] = dict(models or {})
        self.catalog_error: Optional[Exception] = None
        self.probe_errors: dict[str, Exception] = {}
        self.infer_error: Optional[Exception] = None
        self.delays: dict[int, float] = {}  # sequence → seconds
        self.hold: Optional[asyncio.Event] = None
        self.calls: list[tuple[str, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.probes = 0

    async def list_models(self) -> list[str]:
        if self.catalog_error:
            raise self.catalog_error
        return list(self.models)

    async def analyze_model(self, name: str) -> ModelDescriptor:
        self.probes += 1
        if name in self.probe_errors:
            raise self.probe_errors[name]
        if name not in self.models:
            raise ModelNotFound(name)
        return ModelDescriptor(
            name=name,
            capabilities=frozenset(self.models[name]),
            # strictly later on every probe
            last_probed=datetime.now(timezone.utc) + timedelta(seconds=self.probes),
            available=True,
        )

    async def infer(self, model: str, payload: VoicePayload) -> InferenceResult:
        self.calls.append((model, payload.sequence))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.hold is not None:
                await self.hold.wait()
            await asyncio.sleep(self.delays.get(payload.sequence, 0))
            if self.infer_error:
                raise self.infer_error
            return InferenceResult.ok(
                payload.sequence, text=f"heard {payload.content.decode()}", confidence=0.9, model=model,
            )
        finally:
            self.in_flight -= 1


class FakeConnection:
    def __init__(self, fail_emit: bool = False):
        self.events: list[tuple[str, Any]] = []
        self.closed = False
        self.fail_emit = fail_emit

    async def emit(self, event: str, data: Any) -> None:
        if self.fail_emit:
            raise ConnectionResetError("client went away")
        self.events.append((event, data))

    async def close(self) -> None:
        self.closed = True

    def of(self, event: str) -> list[Any]:
        return [data for name, data in self.events if name == event]


async def wait_for_events(conn: FakeConnection, event: str, count: int, timeout: float = 2.0) -> list[Any]:
    """Poll until ``count`` events of a kind have arrived."""
    async def _poll() -> None:
        while len(conn.of(event)) < count:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)
    return conn.of(event)
