"""
Shared helpers for routers: app-state accessors and the NDJSON stream bridge.
"""
import asyncio
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import StreamingResponse

from aicore.core.errors import AICoreError
from aicore.core.logging import get_logger
from aicore.services.chat import ChatService
from aicore.services.generation.orchestrator import GenerationOrchestrator
from aicore.services.generation.streaming import NDJSON_MEDIA_TYPE, QueueSink, StreamRelay
from aicore.services.generation.templates import PromptTemplateResolver
from aicore.services.providers.registry import ProviderRegistry
from aicore.services.voice.session import VoiceSessionManager

logger = get_logger(__name__)


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


def get_resolver(request: Request) -> PromptTemplateResolver:
    return request.app.state.resolver


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_voice_manager(request: Request) -> VoiceSessionManager:
    return request.app.state.voice_manager


def ndjson_response(run: Callable[[StreamRelay], Awaitable[object]]) -> StreamingResponse:
    """
    Run `run(relay)` in the background and stream its events as NDJSON.

    When the client disconnects before a terminal event the relay is
    cancelled, which stops the provider stream.
    """
    sink = QueueSink()
    relay = StreamRelay(sink)

    async def produce() -> None:
        try:
            await run(relay)
        except AICoreError as e:
            logger.info("stream_request_ended", error=str(e), error_type=type(e).__name__)
        except Exception as e:
            logger.error(
                "stream_request_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await relay.error("Internal server error", context="internal")
        finally:
            await relay.close()

    task = asyncio.create_task(produce())

    async def body():
        try:
            async for line in sink.ndjson():
                yield line
        finally:
            if not relay.is_terminal:
                relay.cancel()
            if not task.done():
                await asyncio.gather(task, return_exceptions=True)

    return StreamingResponse(body(), media_type=NDJSON_MEDIA_TYPE)
