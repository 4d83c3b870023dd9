"""
Request bodies for API endpoints.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class GenerateBody(BaseModel):
    """One-shot generation. Either `prompt` or `template_id` must be set."""
    prompt: Optional[str] = None
    template_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    images: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_prompt_source(self) -> "GenerateBody":
        if not self.prompt and not self.template_id:
            raise ValueError("either prompt or template_id is required")
        return self


class ChatBody(BaseModel):
    session_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    template: Optional[str] = None
    system_prompt: Optional[str] = None


class VoiceStartBody(BaseModel):
    session_id: str = Field(..., min_length=1)
    template: str = "CHAT_GENERIC"
    voice: str = "Chime"
    language: str = "en-US"
    system_prompt: Optional[str] = None


class VoiceTextBody(BaseModel):
    text: str = Field(..., min_length=1)


class VoiceAudioBody(BaseModel):
    audio: str = Field(..., min_length=1, description="Base64-encoded audio")
    mime_type: str = "audio/pcm"
