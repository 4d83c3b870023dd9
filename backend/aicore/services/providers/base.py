"""
Provider interface and message helpers shared by every adapter.

Messages are OpenAI-style role/content dicts. Content is either a string or
a list of parts:
    {"type": "text", "text": "..."}
    {"type": "image_url", "image_url": {"url": "data:image/png;base64,..."}}
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from aicore.models.generation import GenerationRequest

VISION_MODEL_MARKERS = ("vision", "gpt-4", "claude-3", "llava", "gemini")

VISION_UNSUPPORTED_NOTE = (
    " (note: images were provided but this model doesn't support vision)"
)

Message = Dict[str, Any]


def model_supports_vision(model_name: Optional[str]) -> bool:
    """Infer vision capability from a model name."""
    if not model_name:
        return False
    lowered = model_name.lower()
    return any(marker in lowered for marker in VISION_MODEL_MARKERS)


def normalize_image(image: str) -> str:
    """
    Return `image` as a data URL.

    Data URLs pass through unchanged. Bare base64 is sniffed by its magic
    prefix: `/9j/` is JPEG, `iVBORw0KGgo` is PNG, anything else is assumed JPEG.
    """
    if image.startswith("data:"):
        return image
    if image.startswith("iVBORw0KGgo"):
        mime_type = "image/png"
    else:
        mime_type = "image/jpeg"
    return f"data:{mime_type};base64,{image}"


def split_data_url(data_url: str) -> Tuple[str, str]:
    """Split a base64 data URL into (mime_type, payload)."""
    header, _, payload = normalize_image(data_url).partition(",")
    mime_type = header[len("data:"):].split(";")[0] or "image/jpeg"
    return mime_type, payload


def message_text(content: Any) -> str:
    """Flatten message content to its text parts."""
    if isinstance(content, str):
        return content
    return "".join(
        part.get("text", "") for part in content if part.get("type") == "text"
    )


def message_images(content: Any) -> List[str]:
    """Data URLs of the image parts of a message, in order."""
    if isinstance(content, str):
        return []
    return [
        part["image_url"]["url"]
        for part in content
        if part.get("type") == "image_url"
    ]


def build_messages(request: GenerationRequest, supports_vision: bool) -> List[Message]:
    """
    Build the provider message list for a request.

    Images go out as `image_url` parts when the provider can see them.
    Otherwise the prompt is sent text-only with a note appended, so a
    non-vision provider still gets a chance to answer.
    """
    messages: List[Message] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.extend(dict(m) for m in request.history)

    if request.has_images and supports_vision:
        content: Any = [{"type": "text", "text": request.rendered_prompt}]
        content.extend(
            {"type": "image_url", "image_url": {"url": normalize_image(image)}}
            for image in request.images
        )
    elif request.has_images:
        content = request.rendered_prompt + VISION_UNSUPPORTED_NOTE
    else:
        content = request.rendered_prompt

    messages.append({"role": "user", "content": content})
    return messages


class Provider(ABC):
    """
    One backend generation adapter.

    Providers are immutable once registered. Lower `priority` is tried first.
    """

    def __init__(self, name: str, priority: int, supports_vision: bool = False):
        self._name = name
        self._priority = priority
        self._supports_vision = supports_vision

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def supports_vision(self) -> bool:
        return self._supports_vision

    @abstractmethod
    async def invoke(self, messages: List[Message]) -> str:
        """Return the full completion for `messages`."""

    @abstractmethod
    def stream(self, messages: List[Message]) -> AsyncIterator[str]:
        """Yield completion fragments for `messages` in order."""

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "supports_vision": self.supports_vision,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class HTTPProvider(Provider):
    """Base for adapters that talk to a vendor over plain HTTP (httpx)."""

    def __init__(
        self,
        name: str,
        priority: int,
        model: str,
        base_url: str,
        api_key: Optional[str] = None,
        supports_vision: bool = False,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name, priority, supports_vision)
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
            headers=self._headers(),
        )

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info["model"] = self.model
        return info
