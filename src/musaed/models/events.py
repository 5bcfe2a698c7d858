"""
Socket.IO event names exchanged with voice clients.
"""


class C2SEvent:
    """Client → server."""
    VOICE_DATA = "voice-data"
    VOICE_END = "voice-end"


class S2CEvent:
    """Server → client."""
    READY = "ready"
    VOICE_RESULT = "voice-result"
    ERROR = "error"
