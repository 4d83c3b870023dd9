"""
Google Gemini adapter over the public REST API.

- `POST {base}/models/{model}:generateContent`
- `POST {base}/models/{model}:streamGenerateContent?alt=sse`

System messages become `systemInstruction`; `assistant` turns map to the
`model` role; image parts become `inline_data`.
"""
import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .base import HTTPProvider, Message, message_images, message_text, split_data_url

MIN_PROMPT_LENGTH = 3


class GeminiProvider(HTTPProvider):
    """Adapter for Gemini `generateContent`. Always vision-capable."""

    def __init__(
        self,
        name: str,
        priority: int,
        model: str,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            name,
            priority,
            model=model,
            base_url=base_url,
            api_key=api_key,
            supports_vision=True,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key
        return headers

    @staticmethod
    def _parts(content: Any) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        text = message_text(content)
        if text:
            parts.append({"text": text})
        for image in message_images(content):
            mime_type, data = split_data_url(image)
            parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
        return parts

    def _payload(self, messages: List[Message]) -> Dict[str, Any]:
        system_texts = [message_text(m["content"]) for m in messages if m["role"] == "system"]
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": self._parts(m["content"]),
            }
            for m in messages
            if m["role"] != "system"
        ]

        user_turns = [m for m in messages if m["role"] == "user"]
        prompt = message_text(user_turns[-1]["content"]).strip() if user_turns else ""
        if len(prompt) < MIN_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt too short for Gemini (minimum {MIN_PROMPT_LENGTH} characters)"
            )

        payload: Dict[str, Any] = {"contents": contents}
        if system_texts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_texts)}]}
        return payload

    @staticmethod
    def _candidate_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    async def invoke(self, messages: List[Message]) -> str:
        payload = self._payload(messages)
        url = f"{self.base_url}/models/{self.model}:generateContent"
        async with self._client() as client:
            response = await client.post(url, json=payload)
        response.raise_for_status()
        return self._candidate_text(response.json())

    async def stream(self, messages: List[Message]) -> AsyncIterator[str]:
        payload = self._payload(messages)
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent"
        async with self._client() as client:
            async with client.stream(
                "POST", url, params={"alt": "sse"}, json=payload
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    text = self._candidate_text(json.loads(line[len("data:"):].strip()))
                    if text:
                        yield text
