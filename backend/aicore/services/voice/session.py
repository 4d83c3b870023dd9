"""
Voice session lifecycle over a persistent bidirectional connection.

State machine per session:

    CONNECTING -> OPEN -> READY -> CLOSED_CLEAN        (close code 1000 / stop)
                                -> CLOSED_ERROR -> RECONNECTING -> OPEN -> READY
                                                              \\-> FAILED (attempts exhausted)

A session becomes usable only after the handshake (setup message, then the
`setupComplete` ack) finishes. While live, any non-normal close or transport
error schedules a reconnection with exponential backoff
(`base_delay * 2**attempt`). At most one reconnection runs per session.
The attempt counter tracks consecutive drops: it resets only when a session
that stayed READY for `reconnect_stable_seconds` drops, so a server that
accepts the handshake and then immediately closes still exhausts the bound.

Events go to subscribed listeners as dicts with `type` and `sessionId`:
voice-text, voice-audio, session-connected, session-ready,
session-disconnected, session-failed, tool-call.
"""
import asyncio
import inspect
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from aicore.core.errors import ReconnectionExhausted, SessionNotActive
from aicore.core.logging import get_logger
from aicore.core.metrics import (
    record_voice_reconnect,
    record_voice_session_failed,
    set_voice_sessions_active,
)
from aicore.models.chat import ChatMessage
from aicore.models.generation import utcnow
from aicore.services.generation.templates import (
    DEFAULT_CHAT_TEMPLATE,
    DEFAULT_VOICE_SYSTEM_PROMPT,
    PromptTemplateResolver,
)
from aicore.services.memory import ConversationMemoryStore

from .transport import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    VoiceConnectionClosed,
    VoiceConnector,
    VoiceTransport,
    audio_turn,
    build_setup_message,
    text_turn,
)

logger = get_logger(__name__)

DEFAULT_VOICE_MODEL = "models/gemini-2.0-flash-exp"

VoiceEvent = Dict[str, Any]
VoiceListener = Callable[[VoiceEvent], Union[None, Awaitable[None]]]


class VoiceState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED_CLEAN = "closed_clean"
    CLOSED_ERROR = "closed_error"
    FAILED = "failed"


@dataclass
class VoiceOptions:
    template: str = DEFAULT_CHAT_TEMPLATE
    voice: str = "Chime"
    language: str = "en-US"
    system_prompt: Optional[str] = None


class VoiceConnection:
    """Handle for one live voice conversation."""

    def __init__(self, session_id: str, options: VoiceOptions, system_prompt: str):
        self.session_id = session_id
        self.options = options
        self.system_prompt = system_prompt
        self.transport: Optional[VoiceTransport] = None
        self.state = VoiceState.CONNECTING
        self.retry_count = 0
        self._ready_at: Optional[float] = None
        self.start_time: datetime = utcnow()
        self._started_monotonic = time.monotonic()
        self._reader_task: Optional["asyncio.Task[None]"] = None
        self._reconnect_task: Optional["asyncio.Task[None]"] = None
        self._stopping = False
        self._closed = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self.state is VoiceState.READY

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def wait_closed(self) -> None:
        """Wait until the session reaches a terminal state."""
        await self._closed.wait()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "status": self.state.value,
            "template": self.options.template,
            "voice": self.options.voice,
            "language": self.options.language,
            "isActive": self.is_ready,
            "retryCount": self.retry_count,
            "startTime": self.start_time.isoformat(),
            "duration": int((time.monotonic() - self._started_monotonic) * 1000),
        }


class VoiceSessionManager:
    """Owns every voice connection and its reconnection policy."""

    def __init__(
        self,
        connector: VoiceConnector,
        memory: ConversationMemoryStore,
        resolver: Optional[PromptTemplateResolver] = None,
        model: str = DEFAULT_VOICE_MODEL,
        max_reconnect_attempts: int = 3,
        reconnect_base_delay: float = 1.0,
        reconnect_stable_seconds: float = 30.0,
        handshake_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._connector = connector
        self.memory = memory
        self.resolver = resolver
        self.model = model
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_stable_seconds = reconnect_stable_seconds
        self.handshake_timeout = handshake_timeout
        self._sleep = sleep
        self._connections: Dict[str, VoiceConnection] = {}
        self._listeners: List[VoiceListener] = []

    # ------------------------------------------------------------------
    # events
    # ------------------------------------------------------------------

    def subscribe(self, listener: VoiceListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: VoiceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event_type: str, session_id: str, **data: Any) -> None:
        event: VoiceEvent = {"type": event_type, "sessionId": session_id, **data}
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "voice_listener_failed",
                    session_id=session_id,
                    event_type=event_type,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def _resolve_system_prompt(self, options: VoiceOptions) -> str:
        if options.system_prompt:
            return options.system_prompt
        if self.resolver is None:
            return DEFAULT_VOICE_SYSTEM_PROMPT
        return await self.resolver.system_prompt(options.template, DEFAULT_VOICE_SYSTEM_PROMPT)

    def _register(self, connection: VoiceConnection) -> None:
        self._connections[connection.session_id] = connection
        set_voice_sessions_active(len(self._connections))

    def _remove(self, connection: VoiceConnection) -> None:
        if self._connections.get(connection.session_id) is connection:
            del self._connections[connection.session_id]
        set_voice_sessions_active(len(self._connections))

    async def start_session(
        self,
        session_id: str,
        options: Optional[VoiceOptions] = None,
    ) -> VoiceConnection:
        """
        Open a connection and complete the handshake.

        Failures here are raised to the caller and the session is cleaned up;
        there is no automatic reconnect for an initial start.
        """
        options = options or VoiceOptions()
        if session_id in self._connections:
            logger.info("voice_session_replaced", session_id=session_id)
            await self.stop_session(session_id)

        logger.info(
            "voice_session_starting",
            session_id=session_id,
            template=options.template,
            voice=options.voice,
            language=options.language,
        )
        system_prompt = await self._resolve_system_prompt(options)
        connection = VoiceConnection(session_id, options, system_prompt)
        self._register(connection)

        try:
            await self._open(connection)
        except Exception as e:
            connection.state = VoiceState.CLOSED_ERROR
            self._remove(connection)
            connection._closed.set()
            logger.error(
                "voice_session_start_failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        connection._reader_task = asyncio.create_task(
            self._read_loop(connection, connection.transport)
        )
        logger.info("voice_session_started", session_id=session_id)
        return connection

    async def _open(self, connection: VoiceConnection) -> None:
        """Connect and handshake. Leaves the connection READY or raises."""
        connection.state = VoiceState.CONNECTING
        transport = await asyncio.wait_for(self._connector(), timeout=self.handshake_timeout)
        connection.transport = transport
        connection.state = VoiceState.OPEN
        await self._emit("session-connected", connection.session_id)

        try:
            await transport.send(
                build_setup_message(self.model, connection.options.voice, connection.system_prompt)
            )
            await asyncio.wait_for(
                self._await_setup_complete(transport),
                timeout=self.handshake_timeout,
            )
        except BaseException:
            await self._close_transport(transport, ABNORMAL_CLOSURE, "Handshake failed")
            raise

        connection.state = VoiceState.READY
        connection._ready_at = time.monotonic()
        await self._emit("session-ready", connection.session_id)

    @staticmethod
    async def _await_setup_complete(transport: VoiceTransport) -> None:
        while True:
            message = await transport.recv()
            if "setupComplete" in message:
                return
            logger.debug("voice_message_before_setup", keys=list(message))

    @staticmethod
    async def _close_transport(transport: VoiceTransport, code: int, reason: str) -> None:
        try:
            await transport.close(code, reason)
        except Exception as e:
            logger.debug("voice_transport_close_failed", error=str(e), error_type=type(e).__name__)

    async def _read_loop(self, connection: VoiceConnection, transport: VoiceTransport) -> None:
        try:
            while True:
                message = await transport.recv()
                await self._handle_message(connection, message)
        except VoiceConnectionClosed as e:
            if connection._stopping or connection.transport is not transport:
                return
            await self._emit(
                "session-disconnected",
                connection.session_id,
                code=e.code,
                reason=e.reason,
            )
            if e.clean:
                connection.state = VoiceState.CLOSED_CLEAN
                self._remove(connection)
                connection._closed.set()
                logger.info("voice_session_closed", session_id=connection.session_id, code=e.code)
                return
            logger.warning(
                "voice_connection_lost",
                session_id=connection.session_id,
                code=e.code,
                reason=e.reason,
            )
            connection.state = VoiceState.CLOSED_ERROR
            self._schedule_reconnect(connection)
        except Exception as e:
            if connection._stopping or connection.transport is not transport:
                return
            logger.error(
                "voice_transport_error",
                session_id=connection.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._close_transport(transport, ABNORMAL_CLOSURE, "Transport error")
            await self._emit(
                "session-disconnected",
                connection.session_id,
                code=ABNORMAL_CLOSURE,
                reason=str(e),
            )
            connection.state = VoiceState.CLOSED_ERROR
            self._schedule_reconnect(connection)

    def _schedule_reconnect(self, connection: VoiceConnection) -> "asyncio.Task[None]":
        """Start a reconnection unless one is already in flight for this session."""
        ready_at, connection._ready_at = connection._ready_at, None
        if (
            ready_at is not None
            and connection.retry_count
            and time.monotonic() - ready_at >= self.reconnect_stable_seconds
        ):
            logger.info(
                "voice_reconnect_counter_reset",
                session_id=connection.session_id,
                previous_attempts=connection.retry_count,
            )
            connection.retry_count = 0

        task = connection._reconnect_task
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._reconnect(connection))
        connection._reconnect_task = task
        return task

    async def _reconnect(self, connection: VoiceConnection) -> None:
        session_id = connection.session_id
        last_error: Optional[BaseException] = None

        while connection.retry_count < self.max_reconnect_attempts:
            if connection._stopping:
                return
            delay = self.reconnect_base_delay * (2 ** connection.retry_count)
            connection.retry_count += 1
            connection.state = VoiceState.RECONNECTING
            logger.info(
                "voice_reconnect_scheduled",
                session_id=session_id,
                attempt=connection.retry_count,
                max_attempts=self.max_reconnect_attempts,
                delay_seconds=delay,
            )
            await self._sleep(delay)
            if connection._stopping:
                return

            try:
                await self._open(connection)
            except Exception as e:
                last_error = e
                record_voice_reconnect("failure")
                logger.warning(
                    "voice_reconnect_failed",
                    session_id=session_id,
                    attempt=connection.retry_count,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            record_voice_reconnect("success")
            logger.info(
                "voice_reconnected",
                session_id=session_id,
                attempts=connection.retry_count,
            )
            connection._reader_task = asyncio.create_task(
                self._read_loop(connection, connection.transport)
            )
            return

        failure = ReconnectionExhausted(session_id, connection.retry_count)
        connection.state = VoiceState.FAILED
        self._remove(connection)
        record_voice_session_failed()
        logger.error(
            "voice_session_failed",
            session_id=session_id,
            attempts=connection.retry_count,
            last_error=str(last_error) if last_error else None,
        )
        await self._emit("session-failed", session_id, error=str(failure))
        connection._closed.set()

    async def stop_session(self, session_id: str) -> bool:
        """Close a session cleanly (code 1000). Returns False for an unknown session."""
        connection = self._connections.get(session_id)
        if connection is None:
            return False

        connection._stopping = True
        current = asyncio.current_task()
        for task in (connection._reconnect_task, connection._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if connection.transport is not None:
            await self._close_transport(connection.transport, NORMAL_CLOSURE, "Session ended")
        connection.state = VoiceState.CLOSED_CLEAN
        self._remove(connection)
        await self._emit(
            "session-disconnected",
            session_id,
            code=NORMAL_CLOSURE,
            reason="Session ended",
        )
        connection._closed.set()
        logger.info("voice_session_stopped", session_id=session_id)
        return True

    async def shutdown(self) -> None:
        for session_id in list(self._connections):
            await self.stop_session(session_id)
        logger.info("voice_manager_shutdown")

    # ------------------------------------------------------------------
    # messaging
    # ------------------------------------------------------------------

    def _ready_connection(self, session_id: str) -> VoiceConnection:
        connection = self._connections.get(session_id)
        if connection is None:
            raise SessionNotActive(session_id)
        if not connection.is_ready or connection.transport is None:
            raise SessionNotActive(session_id, connection.state.value)
        return connection

    async def _send(self, session_id: str, message: Dict[str, Any]) -> None:
        connection = self._ready_connection(session_id)
        try:
            await connection.transport.send(message)
        except VoiceConnectionClosed as e:
            # the read loop sees the same close and owns reconnection
            logger.warning(
                "voice_send_on_closed_connection",
                session_id=session_id,
                code=e.code,
                reason=e.reason,
            )
            raise SessionNotActive(session_id, "closed") from e

    async def send_text(self, session_id: str, text: str) -> None:
        """
        Raises:
            SessionNotActive: unless the session is READY
        """
        await self._send(session_id, text_turn(text))
        self.memory.add_message(session_id, "user", text)

    async def send_audio(
        self,
        session_id: str,
        audio: Union[bytes, str],
        mime_type: str = "audio/pcm",
    ) -> None:
        """
        Raises:
            SessionNotActive: unless the session is READY
        """
        await self._send(session_id, audio_turn(audio, mime_type))

    async def _handle_message(self, connection: VoiceConnection, message: Dict[str, Any]) -> None:
        session_id = connection.session_id
        if "setupComplete" in message:
            return

        server_content = message.get("serverContent") or {}
        parts = (server_content.get("modelTurn") or {}).get("parts") or []
        for part in parts:
            text = part.get("text")
            if text:
                self.memory.add_message(session_id, "assistant", text)
                await self._emit(
                    "voice-text",
                    session_id,
                    text=text,
                    timestamp=utcnow().isoformat(),
                )
            inline = part.get("inlineData") or {}
            mime_type = inline.get("mimeType") or ""
            if mime_type.startswith("audio/"):
                await self._emit(
                    "voice-audio",
                    session_id,
                    audioData=inline.get("data"),
                    mimeType=mime_type,
                    timestamp=utcnow().isoformat(),
                )

        if "toolCall" in message:
            await self._emit("tool-call", session_id, toolCall=message["toolCall"])

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[VoiceConnection]:
        return self._connections.get(session_id)

    def get_active_sessions(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in list(self._connections.values())]

    def get_conversation_history(self, session_id: str) -> List[ChatMessage]:
        return self.memory.get_history(session_id)
