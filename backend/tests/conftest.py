"""
Shared fakes for provider, template store and voice transport tests.

Nothing here performs network I/O.
"""
import asyncio
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from aicore.services.providers.base import Provider
from aicore.services.voice.transport import NORMAL_CLOSURE, VoiceConnectionClosed


class FakeProvider(Provider):
    """
    In-memory provider.

    `response` is returned by invoke (or raised if it is an exception).
    `chunks` are yielded by stream; an exception entry is raised at that point.
    """

    def __init__(
        self,
        name: str,
        priority: int,
        response: Union[str, Exception] = "ok",
        chunks: Optional[Sequence[Union[str, Exception]]] = None,
        supports_vision: bool = False,
    ):
        super().__init__(name, priority, supports_vision)
        self.response = response
        self.chunks = list(chunks) if chunks is not None else None
        self.calls: List[List[Dict[str, Any]]] = []
        self.stream_closed = False

    async def invoke(self, messages):
        self.calls.append(messages)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def stream(self, messages):
        self.calls.append(messages)
        chunks = self.chunks if self.chunks is not None else [self.response]
        try:
            for chunk in chunks:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk
        finally:
            self.stream_closed = True


class ScriptedProvider(FakeProvider):
    """Returns `responses` in order, one per invoke call."""

    def __init__(self, name: str, priority: int, responses: Sequence[Union[str, Exception]]):
        super().__init__(name, priority)
        self.responses = list(responses)

    async def invoke(self, messages):
        self.calls.append(messages)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class HangingProvider(FakeProvider):
    """Streams one chunk, then blocks until cancelled."""

    async def stream(self, messages):
        self.calls.append(messages)
        try:
            yield "partial"
            await asyncio.Event().wait()
        finally:
            self.stream_closed = True


class FakeVoiceTransport:
    """
    Scripted voice transport.

    `incoming` is consumed by recv(); a VoiceConnectionClosed entry is raised.
    When the script runs out, recv() blocks until close() is called.
    """

    def __init__(self, incoming: Optional[List[Any]] = None, ack: bool = True):
        self.incoming: "asyncio.Queue[Any]" = asyncio.Queue()
        if ack:
            self.incoming.put_nowait({"setupComplete": {}})
        for item in incoming or []:
            self.incoming.put_nowait(item)
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[tuple] = None

    def push(self, item: Any) -> None:
        self.incoming.put_nowait(item)

    async def send(self, message):
        if self.closed_with is not None:
            raise VoiceConnectionClosed(*self.closed_with)
        self.sent.append(message)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = ""):
        if self.closed_with is None:
            self.closed_with = (code, reason)
            self.incoming.put_nowait(VoiceConnectionClosed(code, reason))


class FakeConnector:
    """Hands out pre-built transports (or raises queued exceptions) in order."""

    def __init__(self, transports: Sequence[Union[FakeVoiceTransport, Exception]]):
        self._transports = list(transports)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        item = self._transports.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_for_condition(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until `predicate()` holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
