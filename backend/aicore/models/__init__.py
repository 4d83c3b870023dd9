"""Pydantic models for generation, chat and API payloads."""

from .chat import ChatMessage, ChatResponse, ConversationSession
from .generation import (
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    GenerationRequest,
    GenerationResult,
    StatusEvent,
    StreamEvent,
)

__all__ = [
    "ChatMessage",
    "ChatResponse",
    "ConversationSession",
    "ChunkEvent",
    "CompleteEvent",
    "ErrorEvent",
    "GenerationRequest",
    "GenerationResult",
    "StatusEvent",
    "StreamEvent",
]
