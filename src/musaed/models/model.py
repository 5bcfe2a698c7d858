"""
Model registry entries and capability names.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

VOICE = "voice"
TEXT = "text"
STREAMING = "streaming"
ORDERED_STREAM = "ordered-stream"


class ModelDescriptor(BaseModel):
    """One model known to the registry. Frozen: a re-probe replaces the whole entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    capabilities: frozenset[str] = frozenset()
    context_length: Optional[int] = None
    details: dict[str, Any] = Field(default_factory=dict)
    last_probed: Optional[datetime] = None
    available: bool = False

    def supports(self, requirements: frozenset[str], min_context: Optional[int] = None) -> bool:
        if not requirements <= self.capabilities:
            return False
        if min_context is not None:
            return self.context_length is not None and self.context_length >= min_context
        return True

    def to_public(self) -> dict[str, Any]:
        """JSON-friendly dict for the listing endpoint."""
        data = self.model_dump(mode="json")
        data["capabilities"] = sorted(self.capabilities)
        return data
