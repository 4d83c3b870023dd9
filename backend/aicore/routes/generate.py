"""
One-shot generation endpoints.

POST /generate          -> JSON result
POST /generate/stream   -> NDJSON stream of status/chunk/complete/error events
"""
from fastapi import APIRouter, Depends

from aicore.core.logging import get_logger
from aicore.models.generation import GenerationRequest
from aicore.models.requests import GenerateBody
from aicore.services.generation.orchestrator import GenerationOrchestrator
from aicore.services.generation.templates import PromptTemplateResolver

from .deps import get_orchestrator, get_resolver, ndjson_response

logger = get_logger(__name__)
router = APIRouter()


async def _build_request(
    body: GenerateBody,
    resolver: PromptTemplateResolver,
    streaming: bool,
) -> GenerationRequest:
    if body.template_id:
        variables = {"prompt": body.prompt or "", **body.variables}
        rendered = await resolver.resolve(body.template_id, bool(body.images), variables)
    else:
        rendered = body.prompt
    return GenerationRequest(
        rendered_prompt=rendered,
        images=body.images,
        wants_streaming=streaming,
    )


@router.post("")
async def generate(
    body: GenerateBody,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    resolver: PromptTemplateResolver = Depends(get_resolver),
):
    """Generate a complete response through the provider fallback chain."""
    request = await _build_request(body, resolver, streaming=False)
    result = await orchestrator.generate(request)
    return {
        "content": result.content,
        "provider": result.provider_name,
        "attempts": result.attempts,
        "started_at": result.started_at.isoformat(),
        "completed_at": result.completed_at.isoformat(),
    }


@router.post("/stream")
async def generate_stream(
    body: GenerateBody,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    resolver: PromptTemplateResolver = Depends(get_resolver),
):
    """Stream a response as line-delimited JSON events."""
    request = await _build_request(body, resolver, streaming=True)
    return ndjson_response(lambda relay: orchestrator.generate_streaming(request, relay))
