"""
OpenAI chat-completions adapter.

Serves both the OpenAI family and any OpenAI-compatible endpoint
(`POST {base}/chat/completions`). Streaming uses server-sent events:
`data: {...}` lines terminated by `data: [DONE]`.
"""
import json
from typing import Any, AsyncIterator, Dict, List

from aicore.core.logging import get_logger

from .base import HTTPProvider, Message

logger = get_logger(__name__)


class OpenAIChatProvider(HTTPProvider):
    """Adapter for `/chat/completions` style APIs."""

    temperature = 0.7

    def _payload(self, messages: List[Message], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def invoke(self, messages: List[Message]) -> str:
        url = f"{self.base_url}/chat/completions"
        async with self._client() as client:
            response = await client.post(url, json=self._payload(messages, stream=False))
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices:
            return ""
        return choices[0].get("message", {}).get("content") or ""

    async def stream(self, messages: List[Message]) -> AsyncIterator[str]:
        url = f"{self.base_url}/chat/completions"
        async with self._client() as client:
            async with client.stream(
                "POST", url, json=self._payload(messages, stream=True)
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("openai_stream_bad_line", provider=self.name, line=data[:200])
                        continue
                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta", {}).get("content")
                    if delta:
                        yield delta
