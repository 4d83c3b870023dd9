"""Real-time voice sessions over the Gemini Live WebSocket API."""

from .session import VoiceConnection, VoiceOptions, VoiceSessionManager, VoiceState
from .transport import GeminiLiveConnector, VoiceConnectionClosed, WebSocketTransport

__all__ = [
    "VoiceConnection",
    "VoiceOptions",
    "VoiceSessionManager",
    "VoiceState",
    "GeminiLiveConnector",
    "VoiceConnectionClosed",
    "WebSocketTransport",
]
