"""Backend client against a mocked Ollama-compatible API."""

import asyncio

import httpx
import pytest

from musaed.backend import BackendClient
from musaed.config import Settings
from musaed.errors import BackendUnreachable, InferenceRejected, InferenceTimeout, ModelNotFound
from musaed.models.model import ORDERED_STREAM, STREAMING, TEXT, VOICE
from musaed.models.payload import VoicePayload
from musaed.transport.http import HttpClient

PAYLOAD = VoicePayload(session_id="s1", sequence=7, content=b"voice", encoding="audio/webm")


def make_client(handler, **kwargs) -> BackendClient:
    http = HttpClient("http://backend.test", transport=httpx.MockTransport(handler))
    kwargs.setdefault("timeout", 1.0)
    kwargs.setdefault("retry_backoff", 0.0)
    return BackendClient(http, **kwargs)


class TestCatalog:
    @pytest.mark.asyncio
    async def test_list_models(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "whisper:small"}, {"name": "llama3:8b"}, {}]})

        client = make_client(handler)
        assert await client.list_models() == ["whisper:small", "llama3:8b"]

    @pytest.mark.asyncio
    async def test_unreachable_is_retried_then_raised(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=2)
        with pytest.raises(BackendUnreachable):
            await client.list_models()
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_catalog_timeout_is_unreachable(self):
        async def handler(request):
            await asyncio.sleep(1.0)
            return httpx.Response(200, json={"models": []})

        client = make_client(handler, timeout=0.02, max_retries=0)
        with pytest.raises(BackendUnreachable):
            await client.list_models()

    @pytest.mark.asyncio
    async def test_undecodable_response_is_unreachable(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.DecodingError("corrupt gzip stream", request=request)

        client = make_client(handler, max_retries=1)
        with pytest.raises(BackendUnreachable):
            await client.list_models()
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_redirect_loop_is_unreachable(self):
        def handler(request):
            raise httpx.TooManyRedirects("redirect loop", request=request)

        client = make_client(handler, max_retries=0)
        with pytest.raises(BackendUnreachable):
            await client.list_models()


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_capabilities_are_mapped(self):
        def handler(request):
            assert request.url.path == "/api/show"
            return httpx.Response(200, json={
                "capabilities": ["completion", "audio", "tools"],
                "model_info": {"general.architecture": "llama", "llama.context_length": 8192},
                "details": {"family": "llama", "parameter_size": "8B", "quantization_level": "Q4_0"},
            })

        client = make_client(handler, capability_overrides={"m": [ORDERED_STREAM]})
        descriptor = await client.analyze_model("m")
        assert descriptor.capabilities == frozenset({TEXT, VOICE, STREAMING, "tools", ORDERED_STREAM})
        assert descriptor.context_length == 8192
        assert descriptor.details == {"family": "llama", "parameter_size": "8B", "quantization_level": "Q4_0"}
        assert descriptor.available
        assert descriptor.last_probed is not None

    @pytest.mark.asyncio
    async def test_missing_capabilities_default_to_text(self):
        client = make_client(lambda request: httpx.Response(200, json={"details": {}}))
        descriptor = await client.analyze_model("old")
        assert descriptor.capabilities == frozenset({TEXT, STREAMING})

    @pytest.mark.asyncio
    async def test_unknown_model(self):
        client = make_client(lambda request: httpx.Response(404, json={"error": "model 'x' not found"}))
        with pytest.raises(ModelNotFound):
            await client.analyze_model("x")

    @pytest.mark.asyncio
    async def test_server_error_is_unreachable(self):
        client = make_client(lambda request: httpx.Response(500, text="oops"), max_retries=0)
        with pytest.raises(BackendUnreachable):
            await client.analyze_model("x")


class TestInfer:
    @pytest.mark.asyncio
    async def test_result_is_tagged_with_sequence(self):
        client = make_client(lambda request: httpx.Response(200, json={"response": "salam", "eval_count": 4}))
        result = await client.infer("whisper", PAYLOAD)
        assert result.success
        assert result.sequence == 7
        assert result.text == "salam"
        assert result.model == "whisper"
        assert result.data == {"eval_count": 4}

    @pytest.mark.asyncio
    async def test_gateway_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503, json={"error": "loading"})
            return httpx.Response(200, json={"response": "ok"})

        client = make_client(handler, max_retries=2)
        result = await client.infer("whisper", PAYLOAD)
        assert result.text == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(413, json={"error": "payload too large"})

        client = make_client(handler, max_retries=3)
        with pytest.raises(InferenceRejected) as exc:
            await client.infer("whisper", PAYLOAD)
        assert exc.value.message == "payload too large"
        assert exc.value.details == {"status_code": 413}
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_error_in_body_is_rejection(self):
        client = make_client(lambda request: httpx.Response(200, json={"error": "model does not accept audio"}))
        with pytest.raises(InferenceRejected):
            await client.infer("whisper", PAYLOAD)

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        attempts = []

        async def handler(request):
            attempts.append(request)
            await asyncio.sleep(1.0)
            return httpx.Response(200, json={"response": "late"})

        client = make_client(handler, timeout=0.02, max_retries=3)
        with pytest.raises(InferenceTimeout):
            await client.infer("whisper", PAYLOAD)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_connect_timeout_is_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectTimeout("connect timed out", request=request)
            return httpx.Response(200, json={"response": "ok"})

        client = make_client(handler, max_retries=1)
        result = await client.infer("whisper", PAYLOAD)
        assert result.text == "ok"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_missing_or_bogus_confidence_is_zero(self):
        for confidence in (None, "high", [0.9]):
            client = make_client(
                lambda request, c=confidence: httpx.Response(200, json={"response": "salam", "confidence": c})
            )
            result = await client.infer("whisper", PAYLOAD)
            assert result.success
            assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_reported_confidence_is_kept(self):
        client = make_client(lambda request: httpx.Response(200, json={"response": "salam", "confidence": 0.75}))
        result = await client.infer("whisper", PAYLOAD)
        assert result.confidence == 0.75


def test_from_settings():
    settings = Settings(backend_url="http://ollama:11434/", backend_timeout=5.0, max_retries=1)
    client = BackendClient.from_settings(settings)
    assert client.url == "http://ollama:11434"
