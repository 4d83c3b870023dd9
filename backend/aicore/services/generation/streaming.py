"""
Stream relay between a provider's fragment iterator and a push transport.

State machine:
    INIT -> STREAMING -> COMPLETE | ERRORED
    any non-terminal state -> CANCELLED (transport disconnected)

Guarantees:
- events reach the sink in emission order
- exactly one terminal event (`complete` or `error`) and nothing after it
- the sink is closed exactly once, when the relay reaches a terminal state
- empty fragments are dropped
"""
import asyncio
import inspect
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol, Union

from aicore.core.errors import StreamCancelled
from aicore.core.logging import get_logger
from aicore.core.metrics import record_stream_cancelled, record_stream_event
from aicore.models.generation import (
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    StatusEvent,
    StreamEvent,
)

logger = get_logger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def encode_ndjson(event: StreamEvent) -> str:
    """One line of line-delimited JSON for `event`."""
    return event.model_dump_json(exclude_none=True) + "\n"


class StreamState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({StreamState.COMPLETE, StreamState.ERRORED, StreamState.CANCELLED})


class StreamSink(Protocol):
    async def send(self, event: StreamEvent) -> None:
        ...

    async def close(self) -> None:
        ...


_CLOSED = object()


class QueueSink:
    """
    Buffers events in an asyncio queue for an HTTP streaming response.

    Iterate `events()` or `ndjson()` from the response body; iteration ends
    when the relay closes the sink.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()

    async def send(self, event: StreamEvent) -> None:
        await self._queue.put(event)

    async def close(self) -> None:
        await self._queue.put(_CLOSED)

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def ndjson(self) -> AsyncIterator[str]:
        async for event in self.events():
            yield encode_ndjson(event)


class CallbackSink:
    """Adapts a plain (sync or async) callback to the sink protocol."""

    def __init__(
        self,
        callback: Callable[[StreamEvent], Union[None, Awaitable[None]]],
        on_close: Optional[Callable[[], Union[None, Awaitable[None]]]] = None,
    ):
        self._callback = callback
        self._on_close = on_close

    async def send(self, event: StreamEvent) -> None:
        result = self._callback(event)
        if inspect.isawaitable(result):
            await result

    async def close(self) -> None:
        if self._on_close is None:
            return
        result = self._on_close()
        if inspect.isawaitable(result):
            await result


class StreamRelay:
    """Ordered, cancellable forwarding of stream events to a sink."""

    def __init__(self, sink: StreamSink):
        self.sink = sink
        self.state = StreamState.INIT
        self._cancelled = asyncio.Event()
        self._sink_closed = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def cancelled(self) -> bool:
        return self.state is StreamState.CANCELLED

    async def _emit(self, event: StreamEvent) -> bool:
        if self.is_terminal:
            logger.debug("stream_emit_after_terminal", event_type=event.type, state=self.state.value)
            return False
        if self.state is StreamState.INIT:
            self.state = StreamState.STREAMING
        await self.sink.send(event)
        record_stream_event(event.type)
        return True

    async def _close_sink(self) -> None:
        if self._sink_closed:
            return
        self._sink_closed = True
        await self.sink.close()

    async def status(self, message: str, provider: Optional[str] = None, reset: bool = False) -> None:
        await self._emit(StatusEvent(message=message, provider=provider, reset=reset or None))

    async def chunk(self, content: str) -> None:
        if not content:
            return
        await self._emit(ChunkEvent(content=content))

    async def complete(self, response: str, provider: str, parsed: Any = None) -> None:
        if await self._emit(CompleteEvent(response=response, provider=provider, parsed=parsed)):
            self.state = StreamState.COMPLETE
            await self._close_sink()

    async def error(self, error: str, context: Optional[str] = None) -> None:
        if await self._emit(ErrorEvent(error=error, context=context)):
            self.state = StreamState.ERRORED
            await self._close_sink()

    def cancel(self) -> None:
        """Called by the transport when the caller disconnects."""
        if self.is_terminal:
            return
        self.state = StreamState.CANCELLED
        self._cancelled.set()
        record_stream_cancelled()
        logger.info("stream_cancelled")

    async def close(self) -> None:
        """Close the sink if a terminal event has not already done so."""
        await self._close_sink()

    async def read(self, iterator: AsyncIterator[str]) -> Optional[str]:
        """
        Await the next fragment from `iterator`, racing it against cancellation.

        Returns:
            The next fragment, or None once the iterator is exhausted

        Raises:
            StreamCancelled: if the relay is cancelled first
        """
        if self.cancelled:
            raise StreamCancelled("Stream cancelled by caller")

        next_fragment = asyncio.ensure_future(_next_or_none(iterator))
        cancel_wait = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {next_fragment, cancel_wait},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            next_fragment.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if next_fragment in done:
            return next_fragment.result()

        next_fragment.cancel()
        await asyncio.gather(next_fragment, return_exceptions=True)
        raise StreamCancelled("Stream cancelled by caller")


async def _next_or_none(iterator: AsyncIterator[str]) -> Optional[str]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None
