"""
Conversation models shared by the memory store, chat and voice services.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .generation import utcnow

Role = Literal["user", "assistant", "system"]
VALID_ROLES = ("user", "assistant", "system")


class ChatMessage(BaseModel):
    """One entry of a session log."""
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class ConversationSession(BaseModel):
    """Summary view of an in-memory conversation."""
    session_id: str
    created_at: datetime
    last_activity: datetime
    message_count: int
    messages: List[ChatMessage] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Reply produced by the chat service."""
    content: str
    session_id: str
    provider: str
    template: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
