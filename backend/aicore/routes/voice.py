"""
Voice session endpoints.

HTTP controls the session lifecycle and sends input; the WebSocket at
/voice/ws/{session_id} relays the session's events (voice-text,
voice-audio, session-*) to the client and accepts text/audio input.
"""
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from aicore.core.errors import SessionNotActive
from aicore.core.logging import get_logger
from aicore.models.requests import VoiceAudioBody, VoiceStartBody, VoiceTextBody
from aicore.services.voice.session import VoiceOptions, VoiceSessionManager

from .deps import get_voice_manager

logger = get_logger(__name__)
router = APIRouter()


def _require_session(manager: VoiceSessionManager, session_id: str) -> None:
    if manager.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Voice session not found: {session_id}")


@router.post("/sessions")
async def start_session(
    body: VoiceStartBody,
    manager: VoiceSessionManager = Depends(get_voice_manager),
):
    options = VoiceOptions(
        template=body.template,
        voice=body.voice,
        language=body.language,
        system_prompt=body.system_prompt,
    )
    try:
        connection = await manager.start_session(body.session_id, options)
    except Exception as e:
        logger.error(
            "voice_session_start_request_failed",
            session_id=body.session_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=502,
            detail=f"Failed to start voice session: {e}",
        ) from e
    return connection.to_dict()


@router.get("/sessions")
async def list_sessions(manager: VoiceSessionManager = Depends(get_voice_manager)):
    return {"sessions": manager.get_active_sessions()}


@router.delete("/sessions/{session_id}")
async def stop_session(session_id: str, manager: VoiceSessionManager = Depends(get_voice_manager)):
    if not await manager.stop_session(session_id):
        raise HTTPException(status_code=404, detail=f"Voice session not found: {session_id}")
    return {"sessionId": session_id, "status": "ended"}


@router.post("/sessions/{session_id}/text")
async def send_text(
    session_id: str,
    body: VoiceTextBody,
    manager: VoiceSessionManager = Depends(get_voice_manager),
):
    _require_session(manager, session_id)
    await manager.send_text(session_id, body.text)
    return {"sessionId": session_id, "sent": True}


@router.post("/sessions/{session_id}/audio")
async def send_audio(
    session_id: str,
    body: VoiceAudioBody,
    manager: VoiceSessionManager = Depends(get_voice_manager),
):
    _require_session(manager, session_id)
    await manager.send_audio(session_id, body.audio, body.mime_type)
    return {"sessionId": session_id, "sent": True}


@router.get("/sessions/{session_id}/history")
async def history(session_id: str, manager: VoiceSessionManager = Depends(get_voice_manager)):
    messages = manager.get_conversation_history(session_id)
    return {
        "sessionId": session_id,
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.websocket("/ws/{session_id}")
async def voice_events(websocket: WebSocket, session_id: str):
    """
    Relay a session's events and accept input.

    Client messages:
        {"type": "text", "text": "..."}
        {"type": "audio", "audio": "<base64>", "mimeType": "audio/pcm"}
    """
    manager: VoiceSessionManager = websocket.app.state.voice_manager
    await websocket.accept()

    async def forward(event):
        if event.get("sessionId") == session_id:
            await websocket.send_json(event)

    manager.subscribe(forward)
    logger.info("voice_websocket_connected", session_id=session_id)
    try:
        while True:
            message = await websocket.receive_json()
            try:
                if message.get("type") == "text":
                    await manager.send_text(session_id, message.get("text", ""))
                elif message.get("type") == "audio":
                    await manager.send_audio(
                        session_id,
                        message.get("audio", ""),
                        message.get("mimeType", "audio/pcm"),
                    )
                else:
                    await websocket.send_json(
                        {"type": "error", "sessionId": session_id, "error": "Unknown message type"}
                    )
            except SessionNotActive as e:
                await websocket.send_json(
                    {"type": "error", "sessionId": session_id, "error": str(e)}
                )
    except WebSocketDisconnect:
        logger.info("voice_websocket_disconnected", session_id=session_id)
    finally:
        manager.unsubscribe(forward)
