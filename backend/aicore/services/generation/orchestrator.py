"""
Generation orchestrator: priority-ordered provider fallback.

Flow per request:
1. Take the registry snapshot (fail fast with ConfigurationError if empty)
2. Try providers in ascending priority; images degrade to a text-only
   prompt with a note for providers without vision
3. Any exception or empty/whitespace content is a provider failure:
   log + metric + ProviderError, then the next provider
4. If every provider fails, raise AllProvidersFailed
5. With an output schema, the winning content goes through the
   structured parser with one repair attempt

Streaming follows the same chain. A provider that fails mid-stream has its
partial output discarded; a `status` event with `reset: true` tells the
caller to drop what it has rendered before the next provider starts.
"""
import time
from typing import List, Optional, Sequence, Union

from aicore.core.errors import (
    AllProvidersFailed,
    ConfigurationError,
    ProviderError,
    StreamCancelled,
)
from aicore.core.logging import get_logger
from aicore.core.metrics import (
    record_llm_all_failed,
    record_llm_attempt,
    record_llm_provider_error,
)
from aicore.core.tracing import (
    StatusCode,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)
from aicore.models.generation import GenerationRequest, GenerationResult, utcnow
from aicore.services.providers.base import Provider, build_messages
from aicore.services.providers.registry import ProviderRegistry

from .streaming import StreamRelay, StreamSink
from .structured import AutoFixer, StructuredOutputParser

logger = get_logger(__name__)

EMPTY_RESPONSE_MESSAGE = "Empty response from provider"


class GenerationOrchestrator:
    """Routes generation requests through the provider fallback chain."""

    def __init__(
        self,
        registry: ProviderRegistry,
        parser: Optional[StructuredOutputParser] = None,
    ):
        self.registry = registry
        self.parser = parser or StructuredOutputParser()
        self.fixer = AutoFixer(self.generate, self.parser)

    def _providers(self) -> Sequence[Provider]:
        providers = self.registry.list()
        if not providers:
            raise ConfigurationError(
                "No AI providers are configured. Please check your environment configuration."
            )
        return providers

    def _provider_failed(
        self,
        provider: Provider,
        exc: Optional[BaseException],
        mode: str,
        errors: List[ProviderError],
    ) -> ProviderError:
        message = str(exc) if exc is not None else EMPTY_RESPONSE_MESSAGE
        error_type = type(exc).__name__ if exc is not None else "EmptyResponse"
        error = ProviderError(provider.name, message or error_type)
        error.__cause__ = exc
        errors.append(error)

        record_llm_provider_error(provider.name, error_type)
        logger.warning(
            "provider_attempt_failed",
            provider=provider.name,
            priority=provider.priority,
            mode=mode,
            error=message,
            error_type=error_type,
        )
        return error

    def _all_failed(self, errors: List[ProviderError], mode: str) -> AllProvidersFailed:
        record_llm_all_failed(mode)
        failure = AllProvidersFailed(errors)
        logger.error(
            "all_providers_failed",
            mode=mode,
            providers=[e.provider_name for e in errors],
            error=str(failure),
        )
        return failure

    async def _parse(self, request: GenerationRequest, content: str):
        if request.output_schema is None:
            return None
        return await self.fixer.parse_with_repair(content, request.output_schema)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate a complete response.

        Raises:
            ConfigurationError: no providers registered
            AllProvidersFailed: every provider failed
            StructuredParseFailure: schema requested and repair did not help
        """
        providers = self._providers()
        started_at = utcnow()
        errors: List[ProviderError] = []
        attempts: List[str] = []
        tracer = get_tracer()

        for provider in providers:
            attempts.append(provider.name)
            messages = build_messages(request, provider.supports_vision)
            if request.has_images and not provider.supports_vision:
                logger.info("provider_vision_degraded", provider=provider.name)

            with tracer.start_as_current_span("llm.provider_attempt"):
                set_span_attribute("llm.provider", provider.name)
                set_span_attribute("llm.priority", provider.priority)
                set_span_attribute("llm.mode", "invoke")
                start = time.time()
                try:
                    content = await provider.invoke(messages)
                except Exception as e:
                    record_llm_attempt(provider.name, "invoke", "error", time.time() - start)
                    record_exception(e)
                    self._provider_failed(provider, e, "invoke", errors)
                    continue

                if not content or not content.strip():
                    record_llm_attempt(provider.name, "invoke", "empty", time.time() - start)
                    set_span_attribute("llm.empty_response", True)
                    set_span_status(StatusCode.ERROR, EMPTY_RESPONSE_MESSAGE)
                    self._provider_failed(provider, None, "invoke", errors)
                    continue

                record_llm_attempt(provider.name, "invoke", "success", time.time() - start)
                set_span_status(StatusCode.OK)

            logger.info(
                "generation_succeeded",
                provider=provider.name,
                attempts=len(attempts),
                content_length=len(content),
            )
            parsed = await self._parse(request, content)
            return GenerationResult(
                content=content,
                provider_name=provider.name,
                started_at=started_at,
                completed_at=utcnow(),
                parsed=parsed,
                attempts=attempts,
            )

        raise self._all_failed(errors, "invoke")

    async def generate_streaming(
        self,
        request: GenerationRequest,
        sink: Union[StreamSink, StreamRelay],
    ) -> GenerationResult:
        """
        Generate a response, relaying fragments as they arrive.

        `sink` may be a bare sink or a StreamRelay; pass a relay when the
        transport needs to `cancel()` on disconnect.

        Raises:
            ConfigurationError: no providers registered
            AllProvidersFailed: every provider failed (after an `error` event)
            StreamCancelled: the relay was cancelled
            StructuredParseFailure: schema requested and repair did not help
        """
        relay = sink if isinstance(sink, StreamRelay) else StreamRelay(sink)
        try:
            providers = self._providers()
        except ConfigurationError as e:
            await relay.error(str(e), context="configuration")
            raise

        started_at = utcnow()
        errors: List[ProviderError] = []
        attempts: List[str] = []
        tracer = get_tracer()

        try:
            for index, provider in enumerate(providers):
                attempts.append(provider.name)
                messages = build_messages(request, provider.supports_vision)
                await relay.status(f"Generating with {provider.name}...", provider=provider.name)

                with tracer.start_as_current_span("llm.provider_attempt"):
                    set_span_attribute("llm.provider", provider.name)
                    set_span_attribute("llm.priority", provider.priority)
                    set_span_attribute("llm.mode", "stream")
                    start = time.time()
                    fragments: List[str] = []
                    iterator = provider.stream(messages)
                    try:
                        while True:
                            fragment = await relay.read(iterator)
                            if fragment is None:
                                break
                            if not fragment:
                                continue
                            fragments.append(fragment)
                            await relay.chunk(fragment)
                    except StreamCancelled:
                        record_llm_attempt(provider.name, "stream", "cancelled", time.time() - start)
                        raise
                    except Exception as e:
                        record_llm_attempt(provider.name, "stream", "error", time.time() - start)
                        record_exception(e)
                        self._provider_failed(provider, e, "stream", errors)
                        if index < len(providers) - 1:
                            await relay.status(
                                f"{provider.name} failed, retrying with next provider...",
                                provider=provider.name,
                                reset=True,
                            )
                        continue
                    finally:
                        await _close_iterator(iterator)

                    content = "".join(fragments)
                    if not content.strip():
                        record_llm_attempt(provider.name, "stream", "empty", time.time() - start)
                        set_span_attribute("llm.empty_response", True)
                        set_span_status(StatusCode.ERROR, EMPTY_RESPONSE_MESSAGE)
                        self._provider_failed(provider, None, "stream", errors)
                        if fragments and index < len(providers) - 1:
                            await relay.status(
                                f"{provider.name} returned no content, retrying with next provider...",
                                provider=provider.name,
                                reset=True,
                            )
                        continue

                    record_llm_attempt(provider.name, "stream", "success", time.time() - start)
                    set_span_status(StatusCode.OK)

                parsed = await self._parse(request, content)
                if relay.cancelled:
                    raise StreamCancelled("Stream cancelled by caller")
                await relay.complete(
                    content,
                    provider.name,
                    parsed=parsed.model_dump() if parsed is not None else None,
                )
                logger.info(
                    "streaming_generation_succeeded",
                    provider=provider.name,
                    attempts=len(attempts),
                    content_length=len(content),
                )
                return GenerationResult(
                    content=content,
                    provider_name=provider.name,
                    started_at=started_at,
                    completed_at=utcnow(),
                    parsed=parsed,
                    attempts=attempts,
                )

            failure = self._all_failed(errors, "stream")
            await relay.error(str(failure), context="generation")
            raise failure

        except StreamCancelled:
            logger.info("streaming_generation_cancelled", attempts=attempts)
            await relay.close()
            raise
        except Exception as e:
            # no-op when the relay already reached a terminal state
            await relay.error(str(e), context="generation")
            raise


async def _close_iterator(iterator) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("provider_stream_close_failed", error=str(e), error_type=type(e).__name__)
