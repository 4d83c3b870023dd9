"""
Generation request/result models and the stream event union.

Stream events are line-delimited JSON on the wire; `type` is the
discriminator.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationRequest(BaseModel):
    """A single generation call routed through the provider fallback chain."""

    rendered_prompt: str = Field(..., description="Prompt after template resolution")
    images: List[str] = Field(
        default_factory=list,
        description="Base64 payloads or data URLs",
    )
    wants_streaming: bool = False
    output_schema: Optional[Type[BaseModel]] = Field(
        None,
        description="Pydantic model the final content must parse into",
    )
    history: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Prior role/content messages (chat callers only)",
    )
    system_prompt: Optional[str] = None

    @property
    def has_images(self) -> bool:
        return bool(self.images)


class GenerationResult(BaseModel):
    """Outcome of a successful generation."""

    content: str
    provider_name: str
    started_at: datetime
    completed_at: datetime
    parsed: Optional[Any] = None
    attempts: List[str] = Field(default_factory=list)


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    message: str
    provider: Optional[str] = None
    reset: Optional[bool] = None


class ChunkEvent(BaseModel):
    type: Literal["chunk"] = "chunk"
    content: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    response: str
    provider: str
    parsed: Optional[Any] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
    context: Optional[str] = None


StreamEvent = Annotated[
    Union[StatusEvent, ChunkEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})
