"""
musaed: real-time voice session server.

Socket.IO sessions stream voice payloads; each payload is routed to a
capable model on an Ollama-compatible backend and the result is sent back
on the same connection.
"""

from musaed.backend import BackendClient
from musaed.config import Settings
from musaed.dispatcher import RequestDispatcher
from musaed.errors import (
    BackendUnreachable,
    InferenceRejected,
    InferenceTimeout,
    InvalidPayload,
    ModelNotFound,
    MusaedError,
    NoCapableModel,
    SessionNotActive,
)
from musaed.models.events import C2SEvent, S2CEvent
from musaed.models.model import ModelDescriptor
from musaed.models.payload import InferenceResult, VoicePayload
from musaed.registry import ModelRegistry
from musaed.server import MusaedServer
from musaed.sessions import SessionManager

__version__ = "0.1.0"
__all__ = [
    "MusaedServer",
    "Settings",
    "BackendClient",
    "ModelRegistry",
    "SessionManager",
    "RequestDispatcher",
    "ModelDescriptor",
    "VoicePayload",
    "InferenceResult",
    "MusaedError",
    "SessionNotActive",
    "NoCapableModel",
    "ModelNotFound",
    "BackendUnreachable",
    "InferenceTimeout",
    "InferenceRejected",
    "InvalidPayload",
    "C2SEvent",
    "S2CEvent",
]
