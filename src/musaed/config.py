"""
Server configuration.

Sources, lowest precedence first: field defaults, an optional JSON config
file, then ``MUSAED_*`` environment variables (a ``.env`` file in the working
directory is loaded first). A few unprefixed variables from the original
deployment are honoured as fallbacks: PORT, OLLAMA_HOST, FRONTEND_URL.
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "MUSAED_"
DEFAULT_BACKEND_URL = "http://localhost:11434"

# Unprefixed variables used when the MUSAED_ one is not set
_FALLBACK_ENV = {
    "port": "PORT",
    "backend_url": "OLLAMA_HOST",
    "cors_origins": "FRONTEND_URL",
}


class Settings(BaseModel):
    # ----- Server -----
    host: str = "0.0.0.0"
    port: int = Field(3000, ge=0, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ----- Backend -----
    backend_url: str = DEFAULT_BACKEND_URL
    backend_timeout: float = Field(30.0, gt=0)
    max_retries: int = Field(2, ge=0)
    retry_backoff: float = Field(0.5, ge=0)
    prompt: str = "Transcribe the attached audio. Reply with the transcript only."

    # ----- Registry -----
    refresh_interval: float = Field(60.0, ge=0)  # 0 disables periodic refresh
    capability_overrides: dict[str, list[str]] = Field(default_factory=dict)

    # ----- Sessions / dispatch -----
    idle_timeout: float = Field(300.0, gt=0)
    sweep_interval: float = Field(15.0, gt=0)
    drain_grace: float = Field(10.0, ge=0)
    max_concurrency: int = Field(8, ge=1)
    max_payload_bytes: int = Field(50 * 1024 * 1024, gt=0)
    required_capabilities: list[str] = Field(default_factory=lambda: ["voice"])

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Build settings from an optional JSON file plus the environment."""
        data: dict[str, Any] = {}
        if path:
            data.update(json.loads(Path(path).read_text()))
        if env is None:
            load_dotenv()
            env = os.environ
        data.update(_from_env(env))
        return cls.model_validate(data)


def _from_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, field in Settings.model_fields.items():
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is None and name in _FALLBACK_ENV:
            raw = env.get(_FALLBACK_ENV[name])
        if raw is None:
            continue
        if field.annotation == list[str]:
            values[name] = [item.strip() for item in raw.split(",") if item.strip()]
        elif field.annotation == dict[str, list[str]]:
            values[name] = json.loads(raw)
        else:
            values[name] = raw
    if "backend_url" in values and "://" not in values["backend_url"]:
        # OLLAMA_HOST is commonly given as host:port
        values["backend_url"] = f"http://{values['backend_url']}"
    return values
