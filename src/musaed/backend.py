"""
Model backend client for an Ollama-compatible API.

Endpoints used:
  GET  /api/tags      catalog
  POST /api/show      capabilities of one model
  POST /api/generate  inference (audio sent base64-encoded, non-streaming)

Every call is bounded by the configured timeout. Only BackendUnreachable is
retried, at most ``max_retries`` times with linear backoff.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

import httpx

from musaed.config import Settings
from musaed.errors import BackendUnreachable, InferenceRejected, InferenceTimeout, ModelNotFound
from musaed.models.model import STREAMING, TEXT, VOICE, ModelDescriptor
from musaed.models.payload import InferenceResult, VoicePayload
from musaed.transport.http import BackendHTTPError, HttpClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Gateway-style statuses mean the backend is down, not that it refused the request
UNREACHABLE_STATUS = {502, 503, 504}

# Backend capability names → ours; unknown names pass through unchanged
CAPABILITY_MAP = {
    "completion": TEXT,
    "audio": VOICE,
}

DETAIL_KEYS = ("family", "parameter_size", "quantization_level", "format")


def _confidence(value: Any) -> float:
    """Backends rarely report confidence; anything non-numeric counts as 0.0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


class Backend(Protocol):
    async def list_models(self) -> list[str]: ...

    async def analyze_model(self, name: str) -> ModelDescriptor: ...

    async def infer(self, model: str, payload: VoicePayload) -> InferenceResult: ...


class BackendClient:
    def __init__(
        self,
        http: HttpClient,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        prompt: str = "",
        capability_overrides: Optional[dict[str, list[str]]] = None,
    ):
        self._http = http
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._prompt = prompt
        self._overrides = {name: frozenset(caps) for name, caps in (capability_overrides or {}).items()}

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BackendClient":
        http = HttpClient(settings.backend_url, timeout=settings.backend_timeout, transport=transport)
        return cls(
            http,
            timeout=settings.backend_timeout,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
            prompt=settings.prompt,
            capability_overrides=settings.capability_overrides,
        )

    @property
    def url(self) -> str:
        return self._http.base_url

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(func(), timeout=self._timeout)
            except asyncio.TimeoutError:
                raise InferenceTimeout(self._timeout, operation=operation)
            except BackendUnreachable as e:
                if attempt >= self._max_retries:
                    raise
                attempt += 1
                logger.warning(f"{operation}: {e.message} (retry {attempt}/{self._max_retries})")
                await asyncio.sleep(self._retry_backoff * attempt)

    async def list_models(self) -> list[str]:
        """Current catalog, as model names."""

        async def _list() -> list[str]:
            try:
                body = await self._http.get("/api/tags")
            except BackendHTTPError as e:
                raise BackendUnreachable(f"Catalog query failed: {e}")
            models = body.get("models") if isinstance(body, dict) else None
            return [m["name"] for m in models or [] if isinstance(m, dict) and m.get("name")]

        try:
            return await self._call("list_models", _list)
        except InferenceTimeout as e:
            raise BackendUnreachable(f"Catalog query failed: {e.message}")

    async def analyze_model(self, name: str) -> ModelDescriptor:
        """Probe one model. The descriptor comes back available and stamped now."""

        async def _show() -> dict[str, Any]:
            try:
                return await self._http.post("/api/show", {"model": name})
            except BackendHTTPError as e:
                if e.status_code == 404:
                    raise ModelNotFound(name)
                raise BackendUnreachable(f"Probe of {name!r} failed: {e}")

        body = await self._call("analyze_model", _show)
        return self._describe(name, body if isinstance(body, dict) else {})

    def _describe(self, name: str, body: dict[str, Any]) -> ModelDescriptor:
        reported = body.get("capabilities")
        if reported is None:
            # Older servers do not report capabilities; every model can complete text
            reported = ["completion"]
        capabilities = {CAPABILITY_MAP.get(c, c) for c in reported}
        capabilities.add(STREAMING)
        capabilities |= self._overrides.get(name, frozenset())

        context_length = None
        for key, value in (body.get("model_info") or {}).items():
            if key.endswith(".context_length") and isinstance(value, int):
                context_length = value
                break

        raw_details = body.get("details") or {}
        details = {k: raw_details[k] for k in DETAIL_KEYS if raw_details.get(k)}
        return ModelDescriptor(
            name=name,
            capabilities=frozenset(capabilities),
            context_length=context_length,
            details=details,
            last_probed=datetime.now(timezone.utc),
            available=True,
        )

    async def infer(self, model: str, payload: VoicePayload) -> InferenceResult:
        """Submit one payload; the result is tagged with the payload's sequence number."""
        request = {
            "model": model,
            "prompt": self._prompt,
            "audio": [payload.b64()],
            "audio_encoding": payload.encoding,
            "stream": False,
        }

        async def _generate() -> dict[str, Any]:
            try:
                return await self._http.post("/api/generate", request)
            except BackendHTTPError as e:
                if e.status_code in UNREACHABLE_STATUS:
                    raise BackendUnreachable(f"Inference on {model!r} failed: {e}")
                raise InferenceRejected(e.reason, status_code=e.status_code)

        body = await self._call("infer", _generate)
        if not isinstance(body, dict):
            raise InferenceRejected("Backend returned an unexpected response")
        if body.get("error"):
            raise InferenceRejected(str(body["error"]))

        data = {k: body[k] for k in ("total_duration", "eval_count") if k in body}
        return InferenceResult.ok(
            payload.sequence,
            text=str(body.get("response", "")).strip(),
            confidence=_confidence(body.get("confidence")),
            model=model,
            data=data or None,
        )

    async def close(self) -> None:
        await self._http.close()
