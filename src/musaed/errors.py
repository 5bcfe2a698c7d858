"""
Musaed error types: session, routing and backend failures.

Every error carries a stable ``code`` that is sent to clients on the wire.
"""

from typing import Any, Optional


class MusaedError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class SessionNotActive(MusaedError):
    def __init__(self, session_id: str, state: Optional[str] = None):
        message = f"Session {session_id} is not active"
        if state:
            message += f" (state: {state})"
        super().__init__("session_not_active", message, {"session_id": session_id, "state": state})


class NoCapableModel(MusaedError):
    def __init__(self, requirements: Any):
        required = sorted(requirements)
        super().__init__(
            "no_capable_model",
            f"No available model supports: {', '.join(required) or '(none)'}",
            {"requirements": required},
        )


class ModelNotFound(MusaedError):
    def __init__(self, name: str):
        super().__init__("model_not_found", f"Model {name!r} not found", {"model": name})


class BackendUnreachable(MusaedError):
    def __init__(self, message: str):
        super().__init__("backend_unreachable", message)


class InferenceTimeout(MusaedError):
    def __init__(self, timeout: float, operation: str = "inference"):
        super().__init__(
            "inference_timeout",
            f"Backend {operation} timed out after {timeout}s",
            {"timeout": timeout, "operation": operation},
        )


class InferenceRejected(MusaedError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("inference_rejected", message, {"status_code": status_code})


class InvalidPayload(MusaedError):
    def __init__(self, message: str):
        super().__init__("invalid_payload", message)
