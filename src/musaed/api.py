"""
HTTP API: health, model listing and model analysis.

  GET /api/health
  GET /api/models/available[?refresh=true]
  GET /api/models/test/{model}
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from musaed.errors import MusaedError
from musaed.registry import ModelRegistry
from musaed.sessions import SessionManager

logger = logging.getLogger(__name__)

# Error code → HTTP status
STATUS_CODES = {
    "model_not_found": 404,
    "invalid_payload": 400,
    "session_not_active": 409,
    "inference_rejected": 422,
    "no_capable_model": 503,
    "backend_unreachable": 502,
    "inference_timeout": 504,
}


def create_api(
    registry: ModelRegistry,
    sessions: SessionManager,
    cors_origins: Optional[list[str]] = None,
) -> FastAPI:
    from musaed import __version__

    app = FastAPI(title="Musaed voice session server", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(MusaedError)
    async def musaed_error(request: Request, exc: MusaedError) -> JSONResponse:
        status = STATUS_CODES.get(exc.code, 500)
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content={"error": exc.message, "code": exc.code})

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "sessions": sessions.active_count,
            "models": sum(1 for d in registry.models() if d.available),
        }

    @app.get("/api/models/available")
    async def list_models(refresh: bool = False) -> dict[str, Any]:
        if refresh:
            await registry.refresh()
        return {"models": [d.to_public() for d in registry.models()]}

    # Model names carry ':' and '/' (e.g. "library/llama3:8b")
    @app.get("/api/models/test/{model:path}")
    async def test_model(model: str) -> dict[str, Any]:
        descriptor = await registry.analyze(model)
        return {
            "model": model,
            "capabilities": sorted(descriptor.capabilities),
            "context_length": descriptor.context_length,
            "details": descriptor.details,
        }

    return app
