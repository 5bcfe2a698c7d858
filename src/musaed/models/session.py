"""
Session state and the read-only view of a live session.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


class SessionInfo(BaseModel):
    id: str
    state: SessionState
    created_at: datetime
    last_activity: datetime
    next_sequence: int
    in_flight: int
