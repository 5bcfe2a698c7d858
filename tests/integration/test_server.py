"""
Integration tests against a running musaed server and its model backend.

Requires environment variables:
  MUSAED_URL       : (optional) server base URL, defaults to http://localhost:3000
  MUSAED_AUDIO_FILE: (optional) audio file to stream; a short silent chunk otherwise

Run: MUSAED_INTEGRATION=1 pytest tests/integration/ -v
"""

import asyncio
import os
from pathlib import Path

import httpx
import pytest
import socketio

from musaed import C2SEvent, S2CEvent

SKIP = not os.environ.get("MUSAED_INTEGRATION")
BASE_URL = os.environ.get("MUSAED_URL", "http://localhost:3000")
AUDIO_FILE = os.environ.get("MUSAED_AUDIO_FILE", "")

pytestmark = pytest.mark.skipif(SKIP, reason="MUSAED_INTEGRATION not set")


def audio_chunk() -> bytes:
    if AUDIO_FILE:
        return Path(AUDIO_FILE).read_bytes()
    return b"\x00" * 3200


async def connect() -> tuple[socketio.AsyncClient, str, asyncio.Queue]:
    client = socketio.AsyncClient()
    ready: asyncio.Future = asyncio.get_running_loop().create_future()
    events: asyncio.Queue = asyncio.Queue()

    @client.on(S2CEvent.READY)
    async def on_ready(data):
        if not ready.done():
            ready.set_result(data["session_id"])

    @client.on(S2CEvent.VOICE_RESULT)
    async def on_result(data):
        await events.put((S2CEvent.VOICE_RESULT, data))

    @client.on(S2CEvent.ERROR)
    async def on_error(data):
        await events.put((S2CEvent.ERROR, data))

    await client.connect(BASE_URL, transports=["websocket"])
    session_id = await asyncio.wait_for(ready, timeout=10)
    return client, session_id, events


class TestHttp:
    @pytest.mark.asyncio
    async def test_health(self):
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            resp = await http.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_models_available(self):
        async with httpx.AsyncClient(base_url=BASE_URL, timeout=60) as http:
            resp = await http.get("/api/models/available", params={"refresh": "true"})
        assert resp.status_code == 200
        models = resp.json()["models"]
        print(f"  {len(models)} models: {[m['name'] for m in models]}")


class TestVoiceSession:
    @pytest.mark.asyncio
    async def test_every_payload_gets_an_answer(self):
        client, session_id, events = await connect()
        assert session_id
        try:
            acks = [await client.call(C2SEvent.VOICE_DATA, audio_chunk(), timeout=10) for _ in range(3)]
            assert [a["sequence"] for a in acks] == [1, 2, 3]

            answers = [await asyncio.wait_for(events.get(), timeout=120) for _ in range(3)]
            assert sorted(data["sequence"] for _, data in answers) == [1, 2, 3]
            for event, data in answers:
                print(f"  {event}: {data}")
        finally:
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_voice_end_drains_then_disconnects(self):
        client, _, events = await connect()
        await client.call(C2SEvent.VOICE_DATA, audio_chunk(), timeout=10)
        await client.emit(C2SEvent.VOICE_END)
        event, data = await asyncio.wait_for(events.get(), timeout=120)
        assert data["sequence"] == 1
        await asyncio.sleep(0.5)
        assert not client.connected
