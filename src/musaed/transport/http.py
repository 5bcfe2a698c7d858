"""
HTTP client for the model backend (Ollama-compatible JSON API).

Request failures and connect timeouts surface as BackendUnreachable, other
httpx timeouts as InferenceTimeout. Non-2xx answers raise BackendHTTPError
carrying the status so callers can map them per operation.
"""

from typing import Any, Optional

import httpx

from musaed.config import DEFAULT_BACKEND_URL
from musaed.errors import BackendUnreachable, InferenceTimeout, MusaedError


class BackendHTTPError(MusaedError):
    def __init__(self, status_code: int, message: str):
        super().__init__("http_error", f"HTTP {status_code}: {message}", {"status_code": status_code})
        self.status_code = status_code
        self.reason = message


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": "musaed-server/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        """Ollama reports failures as { "error": "<message>" }."""
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200]
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return resp.text[:200]

    async def _send(self, method: str, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.request(method, path, json=body)
        except httpx.ConnectTimeout as e:
            raise BackendUnreachable(f"{method} {self._base_url}{path} failed: connect timeout ({e})")
        except httpx.TimeoutException:
            raise InferenceTimeout(self._timeout, operation=f"{method} {path}")
        except httpx.RequestError as e:
            # Includes undecodable bodies and redirect loops
            raise BackendUnreachable(f"{method} {self._base_url}{path} failed: {e!r}")
        if resp.status_code >= 400:
            raise BackendHTTPError(resp.status_code, self._error_message(resp))
        try:
            return resp.json()
        except ValueError:
            raise BackendUnreachable(f"{method} {path} returned a non-JSON body")

    async def get(self, path: str) -> Any:
        return await self._send("GET", path)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self._send("POST", path, body)

    async def close(self) -> None:
        await self._client.aclose()
