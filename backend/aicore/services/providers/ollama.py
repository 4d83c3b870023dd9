"""
Ollama adapter (`POST {base}/api/chat`).

Images travel as bare base64 in the message's `images` list. Streaming is
newline-delimited JSON with `message.content` and a final `done: true`.
"""
import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .base import HTTPProvider, Message, message_images, message_text, split_data_url


class OllamaProvider(HTTPProvider):
    """Adapter for a local or remote Ollama server. Always vision-capable."""

    def __init__(
        self,
        name: str,
        priority: int,
        model: str,
        base_url: str,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            name,
            priority,
            model=model,
            base_url=base_url,
            supports_vision=True,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )

    @staticmethod
    def _convert(message: Message) -> Dict[str, Any]:
        converted: Dict[str, Any] = {
            "role": message["role"],
            "content": message_text(message["content"]),
        }
        images = message_images(message["content"])
        if images:
            converted["images"] = [split_data_url(image)[1] for image in images]
        return converted

    def _payload(self, messages: List[Message], stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [self._convert(m) for m in messages],
            "stream": stream,
        }

    async def invoke(self, messages: List[Message]) -> str:
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/api/chat", json=self._payload(messages, stream=False)
            )
        response.raise_for_status()
        return response.json().get("message", {}).get("content") or ""

    async def stream(self, messages: List[Message]) -> AsyncIterator[str]:
        async with self._client() as client:
            async with client.stream(
                "POST", f"{self.base_url}/api/chat", json=self._payload(messages, stream=True)
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    content = data.get("message", {}).get("content")
                    if content:
                        yield content
                    if data.get("done"):
                        break
