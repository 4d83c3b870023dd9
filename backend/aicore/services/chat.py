"""
Multi-turn chat on top of the generation orchestrator.

System prompt precedence: explicit `system_prompt` > `template` >
CHAT_GENERIC template > built-in default. History is replayed to the
provider on every turn and the user/assistant pair is appended to memory
only after a successful generation.
"""
from typing import Any, Dict, List, Optional, Union

from aicore.core.logging import get_logger
from aicore.models.chat import ChatMessage, ChatResponse
from aicore.models.generation import GenerationRequest, GenerationResult
from aicore.services.generation.orchestrator import GenerationOrchestrator
from aicore.services.generation.streaming import StreamRelay, StreamSink
from aicore.services.generation.templates import DEFAULT_CHAT_TEMPLATE, PromptTemplateResolver
from aicore.services.memory import ConversationMemoryStore

logger = get_logger(__name__)


class ChatService:
    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        memory: ConversationMemoryStore,
        resolver: PromptTemplateResolver,
    ):
        self.orchestrator = orchestrator
        self.memory = memory
        self.resolver = resolver

    async def _system_prompt(self, template: Optional[str], system_prompt: Optional[str]) -> str:
        if system_prompt:
            return system_prompt
        if template and template != DEFAULT_CHAT_TEMPLATE:
            resolved = await self.resolver.system_prompt(template, default="")
            if resolved:
                return resolved
        return await self.resolver.system_prompt(DEFAULT_CHAT_TEMPLATE)

    async def _request(
        self,
        session_id: str,
        message: str,
        template: Optional[str],
        system_prompt: Optional[str],
        images: Optional[List[str]],
        streaming: bool,
    ) -> GenerationRequest:
        return GenerationRequest(
            rendered_prompt=message,
            images=images or [],
            wants_streaming=streaming,
            history=self.memory.to_provider_messages(session_id),
            system_prompt=await self._system_prompt(template, system_prompt),
        )

    def _record_turn(self, session_id: str, message: str, result: GenerationResult) -> None:
        self.memory.add_message(session_id, "user", message)
        self.memory.add_message(session_id, "assistant", result.content)

    async def generate_chat_response(
        self,
        session_id: str,
        message: str,
        template: Optional[str] = None,
        system_prompt: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> ChatResponse:
        logger.info("chat_response_requested", session_id=session_id, template=template)
        request = await self._request(
            session_id, message, template, system_prompt, images, streaming=False
        )
        result = await self.orchestrator.generate(request)
        self._record_turn(session_id, message, result)

        logger.info("chat_response_generated", session_id=session_id, provider=result.provider_name)
        return ChatResponse(
            content=result.content,
            session_id=session_id,
            provider=result.provider_name,
            template=template or DEFAULT_CHAT_TEMPLATE,
        )

    async def generate_streaming_chat_response(
        self,
        session_id: str,
        message: str,
        sink: Union[StreamSink, StreamRelay],
        template: Optional[str] = None,
        system_prompt: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> ChatResponse:
        logger.info("chat_stream_requested", session_id=session_id, template=template)
        request = await self._request(
            session_id, message, template, system_prompt, images, streaming=True
        )
        result = await self.orchestrator.generate_streaming(request, sink)
        self._record_turn(session_id, message, result)

        logger.info("chat_stream_generated", session_id=session_id, provider=result.provider_name)
        return ChatResponse(
            content=result.content,
            session_id=session_id,
            provider=result.provider_name,
            template=template or DEFAULT_CHAT_TEMPLATE,
        )

    def clear_conversation(self, session_id: str) -> bool:
        return self.memory.clear(session_id)

    def get_conversation_history(self, session_id: str) -> List[ChatMessage]:
        return self.memory.get_history(session_id)

    def get_active_sessions(self) -> List[str]:
        return [s.session_id for s in self.memory.list_sessions()]

    def get_stats(self) -> Dict[str, Any]:
        stats = self.memory.stats()
        stats["available_providers"] = [p.name for p in self.orchestrator.registry.list()]
        return stats
