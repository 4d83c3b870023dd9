"""
Voice transport over the Gemini Live bidirectional WebSocket API.

The session manager only depends on the small `VoiceTransport` protocol
(send a JSON message, receive a JSON message, close); `WebSocketTransport`
implements it on top of the `websockets` client.

Wire messages:
- setup:          {"setup": {"model", "generation_config", "system_instruction", "tools"}}
- setup ack:      {"setupComplete": {}}
- user turn:      {"clientContent": {"turns": [{"role": "user", "parts": [...]}], "turnComplete": true}}
- model output:   {"serverContent": {"modelTurn": {"parts": [{"text"} | {"inlineData"}]}}}
"""
import base64
import json
from typing import Any, Dict, Optional, Protocol, Union

import websockets
from websockets.exceptions import ConnectionClosed

from aicore.core.logging import get_logger

logger = get_logger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class VoiceConnectionClosed(Exception):
    """The remote end closed the connection (or it dropped)."""

    def __init__(self, code: int = ABNORMAL_CLOSURE, reason: str = ""):
        super().__init__(f"Voice connection closed ({code}): {reason}")
        self.code = code
        self.reason = reason

    @property
    def clean(self) -> bool:
        return self.code == NORMAL_CLOSURE


class VoiceTransport(Protocol):
    async def send(self, message: Dict[str, Any]) -> None:
        ...

    async def recv(self) -> Dict[str, Any]:
        """Next decoded message; raises VoiceConnectionClosed when the connection ends."""
        ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        ...


class VoiceConnector(Protocol):
    async def __call__(self) -> VoiceTransport:
        ...


def build_setup_message(model: str, voice: str, system_prompt: str) -> Dict[str, Any]:
    return {
        "setup": {
            "model": model,
            "generation_config": {
                "response_modalities": ["AUDIO"],
                "speech_config": {
                    "voice_config": {"prebuilt_voice_config": {"voice_name": voice}}
                },
            },
            "system_instruction": {"parts": [{"text": system_prompt}]},
            "tools": [],
        }
    }


def text_turn(text: str) -> Dict[str, Any]:
    return {
        "clientContent": {
            "turns": [{"role": "user", "parts": [{"text": text}]}],
            "turnComplete": True,
        }
    }


def audio_turn(audio: Union[bytes, str], mime_type: str = "audio/pcm") -> Dict[str, Any]:
    """User audio turn. Raw bytes are base64-encoded; strings are taken as base64 already."""
    if isinstance(audio, (bytes, bytearray)):
        data = base64.b64encode(audio).decode("ascii")
    else:
        data = audio
    return {
        "clientContent": {
            "turns": [{"role": "user", "parts": [{"inlineData": {"mimeType": mime_type, "data": data}}]}],
            "turnComplete": True,
        }
    }


class WebSocketTransport:
    """`VoiceTransport` backed by a `websockets` client connection."""

    def __init__(self, websocket: Any):
        self._ws = websocket

    async def send(self, message: Dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise _closed_from(e) from e

    async def recv(self) -> Dict[str, Any]:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise _closed_from(e) from e
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)


def _closed_from(exc: ConnectionClosed) -> VoiceConnectionClosed:
    if exc.rcvd is not None:
        return VoiceConnectionClosed(exc.rcvd.code, exc.rcvd.reason)
    return VoiceConnectionClosed(ABNORMAL_CLOSURE, "connection lost")


class GeminiLiveConnector:
    """Opens a Gemini Live WebSocket for each (re)connection."""

    def __init__(self, url: str, api_key: Optional[str], open_timeout: float = 10.0):
        self.url = url
        self.api_key = api_key
        self.open_timeout = open_timeout

    async def __call__(self) -> WebSocketTransport:
        url = f"{self.url}?key={self.api_key}" if self.api_key else self.url
        websocket = await websockets.connect(
            url,
            open_timeout=self.open_timeout,
            max_size=None,
        )
        logger.debug("voice_websocket_opened", url=self.url)
        return WebSocketTransport(websocket)
