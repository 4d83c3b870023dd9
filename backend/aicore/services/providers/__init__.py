"""Provider adapters and the priority-ordered provider registry."""

from .base import Provider, HTTPProvider, build_messages, model_supports_vision
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import OpenAIChatProvider
from .registry import ProviderRegistry, build_providers

__all__ = [
    "Provider",
    "HTTPProvider",
    "build_messages",
    "model_supports_vision",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAIChatProvider",
    "ProviderRegistry",
    "build_providers",
]
