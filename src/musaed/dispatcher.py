"""
Request dispatcher: routes one payload to a model and delivers the result.

Each payload runs in its own task, bounded by a global concurrency limit.
When the selected model has the ``ordered-stream`` capability the payload is
queued per session instead, so that session has one inference in flight and
results arrive in sequence order.

dispatch() never raises: every payload ends in exactly one delivered
InferenceResult, success or failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from musaed.backend import Backend
from musaed.errors import MusaedError
from musaed.models.model import ORDERED_STREAM, VOICE
from musaed.models.payload import InferenceResult, VoicePayload
from musaed.registry import ModelRegistry

logger = logging.getLogger(__name__)

Deliver = Callable[[str, InferenceResult], Awaitable[None]]
RequirementsPolicy = Callable[[VoicePayload], Iterable[str]]


class OrderedQueue:
    """FIFO of payloads for one session, drained by a single worker task."""

    def __init__(self, run: Callable[[str, VoicePayload], Awaitable[None]], on_idle: Callable[[], None]):
        self._run = run
        self._on_idle = on_idle
        self._queue: asyncio.Queue[tuple[str, VoicePayload, asyncio.Future]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return self._queue.qsize()

    def put(self, model: str, payload: VoicePayload) -> asyncio.Future:
        done = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((model, payload, done))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return done

    async def _drain(self) -> None:
        while not self._queue.empty():
            model, payload, done = self._queue.get_nowait()
            try:
                await self._run(model, payload)
            finally:
                if not done.done():
                    done.set_result(None)
        self._on_idle()


class RequestDispatcher:
    def __init__(
        self,
        registry: ModelRegistry,
        backend: Backend,
        deliver: Deliver,
        required_capabilities: Iterable[str] = (VOICE,),
        max_concurrency: int = 8,
        requirements_policy: Optional[RequirementsPolicy] = None,
    ):
        self._registry = registry
        self._backend = backend
        self._deliver = deliver
        self._required = frozenset(required_capabilities)
        self._policy = requirements_policy
        self._slots = asyncio.Semaphore(max_concurrency)
        self._queues: dict[str, OrderedQueue] = {}

    def requirements_for(self, payload: VoicePayload) -> frozenset[str]:
        if self._policy is not None:
            return frozenset(self._policy(payload))
        return self._required

    def queued(self, session_id: str) -> int:
        queue = self._queues.get(session_id)
        return len(queue) if queue else 0

    def dispatch(self, session: Any, payload: VoicePayload) -> asyncio.Future:
        """Schedule one payload. The returned future resolves once its result is delivered."""
        session_id = session.id
        try:
            model = self._registry.select(self.requirements_for(payload))
        except Exception as e:
            if not isinstance(e, MusaedError):
                logger.exception(f"Model selection failed for {session_id}#{payload.sequence}")
            failure = InferenceResult.failure(payload.sequence, e)
            return asyncio.ensure_future(self._deliver_safely(session_id, failure))

        # A session with queued work keeps queueing until its queue drains
        if ORDERED_STREAM in model.capabilities or session_id in self._queues:
            return self._ordered(session_id).put(model.name, payload)
        return asyncio.create_task(self._process(session_id, model.name, payload))

    def _ordered(self, session_id: str) -> OrderedQueue:
        queue = self._queues.get(session_id)
        if queue is None:

            async def run(model: str, payload: VoicePayload) -> None:
                await self._process(session_id, model, payload)

            def on_idle() -> None:
                if self._queues.get(session_id) is queue and not len(queue):
                    del self._queues[session_id]

            queue = OrderedQueue(run, on_idle)
            self._queues[session_id] = queue
        return queue

    async def _process(self, session_id: str, model: str, payload: VoicePayload) -> None:
        async with self._slots:
            try:
                result = await self._backend.infer(model, payload)
            except MusaedError as e:
                logger.info(f"Dispatch {session_id}#{payload.sequence} on {model} failed: {e.code}")
                result = InferenceResult.failure(payload.sequence, e, model=model)
            except Exception as e:
                logger.exception(f"Dispatch {session_id}#{payload.sequence} on {model} crashed")
                result = InferenceResult.failure(payload.sequence, e, model=model)
        if result.sequence != payload.sequence:
            result = result.model_copy(update={"sequence": payload.sequence})
        await self._deliver_safely(session_id, result)

    async def _deliver_safely(self, session_id: str, result: InferenceResult) -> None:
        try:
            await self._deliver(session_id, result)
        except Exception:
            logger.exception(f"Delivery of {session_id}#{result.sequence} failed")
