"""
Voice payloads and inference results.

A dispatch turns one VoicePayload into exactly one InferenceResult,
either the success variant or the failure variant.
"""

import base64
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from musaed.errors import MusaedError
from musaed.models.events import S2CEvent

DEFAULT_ENCODING = "audio/webm"


class VoicePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    sequence: int
    content: bytes
    encoding: str = DEFAULT_ENCODING

    @property
    def size(self) -> int:
        return len(self.content)

    def b64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


class ErrorDetail(BaseModel):
    code: str
    message: str


class InferenceResult(BaseModel):
    sequence: int
    success: bool
    text: str = ""
    confidence: float = 0.0
    model: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    error: Optional[ErrorDetail] = None

    @classmethod
    def ok(
        cls,
        sequence: int,
        text: str,
        confidence: float = 0.0,
        model: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> "InferenceResult":
        return cls(sequence=sequence, success=True, text=text, confidence=confidence, model=model, data=data)

    @classmethod
    def failure(cls, sequence: int, exc: Exception, model: Optional[str] = None) -> "InferenceResult":
        if isinstance(exc, MusaedError):
            detail = ErrorDetail(code=exc.code, message=exc.message)
        else:
            detail = ErrorDetail(code="internal_error", message="Voice processing failed")
        return cls(sequence=sequence, success=False, model=model, error=detail)

    def to_event(self) -> tuple[str, dict[str, Any]]:
        """Map to the outbound (event, data) pair sent to the client."""
        if self.success:
            body: dict[str, Any] = {
                "text": self.text,
                "confidence": self.confidence,
                "sequence": self.sequence,
                "model": self.model,
            }
            if self.data:
                body["data"] = self.data
            return S2CEvent.VOICE_RESULT, body
        assert self.error is not None
        return S2CEvent.ERROR, {
            "message": self.error.message,
            "code": self.error.code,
            "sequence": self.sequence,
        }
