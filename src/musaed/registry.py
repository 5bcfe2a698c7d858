"""
Model registry: known models and routing selection.

The descriptor table is an immutable snapshot: refresh() and analyze() build a
new dict and swap the reference, so select()/get() never see a half-updated
entry and take no lock. Refreshes are serialised among themselves.

Models that disappear from the catalog or fail a probe are kept and marked
unavailable rather than removed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from musaed.backend import Backend
from musaed.errors import ModelNotFound, MusaedError, NoCapableModel
from musaed.models.model import ModelDescriptor

logger = logging.getLogger(__name__)


class ModelRegistry:
    def __init__(self, backend: Backend):
        self._backend = backend
        self._models: dict[str, ModelDescriptor] = {}
        self._refresh_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.last_refresh: Optional[datetime] = None

    def snapshot(self) -> Mapping[str, ModelDescriptor]:
        return MappingProxyType(self._models)

    def models(self) -> list[ModelDescriptor]:
        """All known descriptors in registration order."""
        return list(self._models.values())

    def get(self, name: str) -> ModelDescriptor:
        try:
            return self._models[name]
        except KeyError:
            raise ModelNotFound(name) from None

    def select(self, requirements: Iterable[str], min_context: Optional[int] = None) -> ModelDescriptor:
        """Best available model supporting every requirement.

        Most recently probed wins; ties go to the first registered.
        """
        required = frozenset(requirements)
        candidates = [
            (index, descriptor)
            for index, descriptor in enumerate(self._models.values())
            if descriptor.available and descriptor.supports(required, min_context)
        ]
        if not candidates:
            raise NoCapableModel(required)

        def rank(item: tuple[int, ModelDescriptor]) -> tuple[float, int]:
            index, descriptor = item
            probed = descriptor.last_probed.timestamp() if descriptor.last_probed else float("-inf")
            return (-probed, index)

        return min(candidates, key=rank)[1]

    async def refresh(self) -> list[ModelDescriptor]:
        """Re-read the catalog and re-probe every model.

        Raises BackendUnreachable only when the catalog itself cannot be read.
        """
        async with self._refresh_lock:
            names = list(dict.fromkeys(await self._backend.list_models()))
            probed_at = datetime.now(timezone.utc)
            probes = await asyncio.gather(*(self._probe(name) for name in names))
            fresh = dict(zip(names, probes))

            current = self._models
            updated: dict[str, ModelDescriptor] = {}
            for name, previous in current.items():
                if name in fresh:
                    updated[name] = self._merge(name, fresh[name], previous, probed_at)
                elif previous.available:
                    logger.info(f"Model {name} left the catalog, marking unavailable")
                    updated[name] = previous.model_copy(update={"available": False})
                else:
                    updated[name] = previous
            for name in names:
                if name not in updated:
                    updated[name] = self._merge(name, fresh[name], None, probed_at)

            self._models = updated
            self.last_refresh = probed_at

        available = sum(1 for d in updated.values() if d.available)
        logger.info(f"Registry refreshed: {available}/{len(updated)} models available")
        return list(updated.values())

    async def _probe(self, name: str) -> Optional[ModelDescriptor]:
        try:
            return await self._backend.analyze_model(name)
        except MusaedError as e:
            logger.warning(f"Probe failed for {name}: {e.message}")
        except Exception:
            logger.exception(f"Probe failed for {name}")
        return None

    @staticmethod
    def _merge(
        name: str,
        probed: Optional[ModelDescriptor],
        previous: Optional[ModelDescriptor],
        probed_at: datetime,
    ) -> ModelDescriptor:
        if probed is not None:
            # One stamp per refresh keeps the tie-break on registration order
            return probed.model_copy(update={"last_probed": probed_at, "available": True})
        if previous is not None:
            return previous.model_copy(update={"available": False})
        return ModelDescriptor(name=name, available=False)

    async def analyze(self, name: str) -> ModelDescriptor:
        """Probe a single model now and record the outcome."""
        try:
            descriptor = await self._backend.analyze_model(name)
        except MusaedError:
            async with self._refresh_lock:
                previous = self._models.get(name)
                if previous is not None and previous.available:
                    self._swap(name, previous.model_copy(update={"available": False}))
            raise
        async with self._refresh_lock:
            self._swap(name, descriptor)
        return descriptor

    def _swap(self, name: str, descriptor: ModelDescriptor) -> None:
        models = dict(self._models)
        models[name] = descriptor
        self._models = models

    def start(self, interval: float) -> None:
        """Refresh every ``interval`` seconds in the background (0 disables)."""
        if interval <= 0 or self._task is not None:
            return
        self._task = asyncio.create_task(self._refresh_loop(interval))

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh()
            except MusaedError as e:
                logger.warning(f"Registry refresh failed: {e.message}")
            except Exception:
                logger.exception("Registry refresh crashed")
