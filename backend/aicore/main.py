import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import Settings
from .core.errors import (
    AICoreError,
    AllProvidersFailed,
    ConfigurationError,
    SessionNotActive,
    StructuredParseFailure,
)
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    get_tracer,
    instrument_fastapi,
    shutdown_tracing,
    get_trace_id_from_context,
    record_exception,
)
from .routes import chat, generate, health, metrics, voice
from .services.chat import ChatService
from .services.generation.orchestrator import GenerationOrchestrator
from .services.generation.templates import PromptTemplateResolver, TemplateStore
from .services.memory import ConversationMemoryStore
from .services.providers.registry import ProviderRegistry
from .services.voice.session import VoiceSessionManager
from .services.voice.transport import GeminiLiveConnector, VoiceConnector

logger = get_logger(__name__)

ERROR_STATUS_CODES = {
    ConfigurationError: 503,
    AllProvidersFailed: 502,
    StructuredParseFailure: 422,
    SessionNotActive: 409,
}


def _status_for(exc: AICoreError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def _error_response(status_code: int, detail, extra: Optional[dict] = None) -> JSONResponse:
    trace_id = get_trace_id() or get_trace_id_from_context()
    content = {
        "detail": detail,
        "status_code": status_code,
        "trace_id": trace_id,
    }
    if extra:
        content.update(extra)
    response = JSONResponse(status_code=status_code, content=content)
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ProviderRegistry] = None,
    template_store: Optional[TemplateStore] = None,
    voice_connector: Optional[VoiceConnector] = None,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the API application.

    Components are created in the lifespan and kept on `app.state`; tests
    pass their own registry, template store or voice connector.
    """
    settings = settings or Settings.from_env()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)
    get_tracer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_startup_started")
        app_registry = registry
        if app_registry is None:
            app_registry = ProviderRegistry()
            app_registry.rebuild(settings, transport=provider_transport)
        if not app_registry.list():
            logger.warning(
                "app_startup_no_providers",
                message="No AI providers are configured. Generation requests will fail with 503.",
            )

        memory = ConversationMemoryStore(max_messages=settings.history_max_messages)
        resolver = PromptTemplateResolver(template_store)
        orchestrator = GenerationOrchestrator(app_registry)
        connector = voice_connector or GeminiLiveConnector(
            settings.voice_live_url,
            settings.google_api_key,
            open_timeout=settings.voice_handshake_timeout_seconds,
        )
        voice_manager = VoiceSessionManager(
            connector,
            memory,
            resolver=resolver,
            model=settings.voice_model,
            max_reconnect_attempts=settings.voice_max_reconnect_attempts,
            reconnect_base_delay=settings.voice_reconnect_base_delay_seconds,
            reconnect_stable_seconds=settings.voice_reconnect_stable_seconds,
            handshake_timeout=settings.voice_handshake_timeout_seconds,
        )

        app.state.settings = settings
        app.state.registry = app_registry
        app.state.memory = memory
        app.state.resolver = resolver
        app.state.orchestrator = orchestrator
        app.state.chat_service = ChatService(orchestrator, memory, resolver)
        app.state.voice_manager = voice_manager
        logger.info("app_startup_completed", providers=[p.name for p in app_registry.list()])

        yield

        logger.info("app_shutdown_started")
        await voice_manager.shutdown()
        shutdown_tracing()
        logger.info("app_shutdown_completed")

    app = FastAPI(
        title="AI Provider Orchestration API",
        description="Provider fallback, streaming, structured output, chat and voice sessions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS for local dev; restrict in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TraceIDMiddleware)
    instrument_fastapi(app)

    @app.exception_handler(AICoreError)
    async def aicore_exception_handler(request: Request, exc: AICoreError):
        status_code = _status_for(exc)
        logger.warning(
            "aicore_error",
            status_code=status_code,
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
        )
        extra = None
        if isinstance(exc, AllProvidersFailed):
            extra = {"errors": [e.to_dict() for e in exc.errors]}
        return _error_response(status_code, str(exc), extra)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        start_time = getattr(request.state, "start_time", time.time())
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return _error_response(exc.status_code, exc.detail)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        record_exception(exc)
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return _error_response(500, "Internal server error")

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(generate.router, prefix="/generate", tags=["Generation"])
    app.include_router(chat.router, prefix="/chat", tags=["Chat"])
    app.include_router(voice.router, prefix="/voice", tags=["Voice"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])

    return app


app = create_app()
