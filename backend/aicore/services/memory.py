"""
In-memory conversation history keyed by session id.

Sessions are created lazily on the first message and dropped on explicit
clear; the next write after a clear starts a fresh session. Each log keeps
at most `max_messages` entries, evicting the oldest first.
"""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from aicore.core.logging import get_logger
from aicore.models.chat import VALID_ROLES, ChatMessage, ConversationSession
from aicore.models.generation import utcnow

logger = get_logger(__name__)

DEFAULT_MAX_MESSAGES = 50


@dataclass
class _SessionLog:
    messages: Deque[ChatMessage]
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)


class ConversationMemoryStore:
    """Per-session append-only message logs with FIFO retention."""

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.max_messages = max_messages
        self._sessions: Dict[str, _SessionLog] = {}

    def add_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        """
        Append a message, creating the session if needed.

        Raises:
            ValueError: if `role` is not user, assistant or system
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid role {role!r}; expected one of {VALID_ROLES}")

        log = self._sessions.get(session_id)
        if log is None:
            log = _SessionLog(messages=deque(maxlen=self.max_messages))
            self._sessions[session_id] = log
            logger.debug("conversation_created", session_id=session_id)

        message = ChatMessage(role=role, content=content)
        log.messages.append(message)
        log.last_activity = message.timestamp
        return message

    def get_history(self, session_id: str) -> List[ChatMessage]:
        """Messages in insertion order; empty for an unknown session."""
        log = self._sessions.get(session_id)
        if log is None:
            return []
        return list(log.messages)

    def to_provider_messages(self, session_id: str) -> List[Dict[str, Any]]:
        """History as role/content dicts ready for a provider call."""
        return [
            {"role": m.role, "content": m.content}
            for m in self.get_history(session_id)
        ]

    def clear(self, session_id: str) -> bool:
        """Drop a session's log. Returns True if it existed."""
        existed = self._sessions.pop(session_id, None) is not None
        if existed:
            logger.info("conversation_cleared", session_id=session_id)
        return existed

    def clear_all(self) -> int:
        count = len(self._sessions)
        self._sessions = {}
        logger.info("conversations_cleared", count=count)
        return count

    def get_session(self, session_id: str) -> Optional[ConversationSession]:
        log = self._sessions.get(session_id)
        if log is None:
            return None
        return ConversationSession(
            session_id=session_id,
            created_at=log.created_at,
            last_activity=log.last_activity,
            message_count=len(log.messages),
            messages=list(log.messages),
        )

    def list_sessions(self) -> List[ConversationSession]:
        """Summaries of every live session (messages omitted)."""
        return [
            ConversationSession(
                session_id=session_id,
                created_at=log.created_at,
                last_activity=log.last_activity,
                message_count=len(log.messages),
            )
            for session_id, log in list(self._sessions.items())
        ]

    def stats(self) -> Dict[str, Any]:
        total = sum(len(log.messages) for log in self._sessions.values())
        return {
            "active_sessions": len(self._sessions),
            "total_messages": total,
            "max_messages_per_session": self.max_messages,
        }

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
