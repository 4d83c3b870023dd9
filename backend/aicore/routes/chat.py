"""
Chat endpoints with per-session conversation memory.
"""
from fastapi import APIRouter, Depends

from aicore.core.logging import get_logger, set_session_id
from aicore.models.chat import ChatResponse
from aicore.models.requests import ChatBody
from aicore.services.chat import ChatService

from .deps import get_chat_service, ndjson_response

logger = get_logger(__name__)
router = APIRouter()


@router.post("", response_model=ChatResponse)
async def chat(body: ChatBody, service: ChatService = Depends(get_chat_service)):
    set_session_id(body.session_id)
    return await service.generate_chat_response(
        body.session_id,
        body.message,
        template=body.template,
        system_prompt=body.system_prompt,
    )


@router.post("/stream")
async def chat_stream(body: ChatBody, service: ChatService = Depends(get_chat_service)):
    """Stream a chat reply; memory is updated only when the reply completes."""
    set_session_id(body.session_id)
    return ndjson_response(
        lambda relay: service.generate_streaming_chat_response(
            body.session_id,
            body.message,
            relay,
            template=body.template,
            system_prompt=body.system_prompt,
        )
    )


@router.get("/sessions")
async def list_sessions(service: ChatService = Depends(get_chat_service)):
    return {
        "sessions": service.get_active_sessions(),
        "stats": service.get_stats(),
    }


@router.get("/{session_id}/history")
async def history(session_id: str, service: ChatService = Depends(get_chat_service)):
    messages = service.get_conversation_history(session_id)
    return {
        "session_id": session_id,
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.delete("/{session_id}")
async def clear(session_id: str, service: ChatService = Depends(get_chat_service)):
    cleared = service.clear_conversation(session_id)
    logger.info("chat_session_clear_requested", session_id=session_id, cleared=cleared)
    return {"session_id": session_id, "cleared": cleared}
