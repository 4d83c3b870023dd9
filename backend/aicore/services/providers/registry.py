"""
Provider registry.

Holds an immutable, priority-sorted snapshot of providers. Writers build a
new tuple and swap the reference, so readers iterating an old snapshot are
never affected by a concurrent `register` or `rebuild`.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from aicore.core.config import Settings
from aicore.core.logging import get_logger

from .base import Provider, model_supports_vision
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import OpenAIChatProvider

logger = get_logger(__name__)

OPENAI_PRIORITY = 1
OPENAI_COMPATIBLE_PRIORITY = 2
GEMINI_PRIORITY = 3
OLLAMA_PRIORITY = 4


def build_providers(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Provider]:
    """
    Instantiate every provider family whose configuration is present.

    Families with missing configuration are skipped with an info log.
    """
    providers: List[Provider] = []
    timeout = settings.llm_timeout_seconds

    if settings.openai_api_key:
        providers.append(OpenAIChatProvider(
            "OpenAI",
            OPENAI_PRIORITY,
            model=settings.openai_model,
            base_url=settings.openai_api_base,
            api_key=settings.openai_api_key,
            supports_vision=model_supports_vision(settings.openai_model),
            timeout_seconds=timeout,
            transport=transport,
        ))
    else:
        logger.info("provider_not_configured", provider="OpenAI", missing="OPENAI_API_KEY")

    if settings.openai_compatible_base_url and settings.openai_compatible_api_key:
        providers.append(OpenAIChatProvider(
            "OpenAI Compatible",
            OPENAI_COMPATIBLE_PRIORITY,
            model=settings.openai_compatible_model,
            base_url=settings.openai_compatible_base_url,
            api_key=settings.openai_compatible_api_key,
            supports_vision=model_supports_vision(settings.openai_compatible_model),
            timeout_seconds=timeout,
            transport=transport,
        ))
    else:
        logger.info(
            "provider_not_configured",
            provider="OpenAI Compatible",
            missing="OPENAI_COMPATIBLE_BASE_URL/OPENAI_COMPATIBLE_API_KEY",
        )

    if settings.google_api_key:
        providers.append(GeminiProvider(
            "Google Gemini",
            GEMINI_PRIORITY,
            model=settings.google_model,
            base_url=settings.google_api_base,
            api_key=settings.google_api_key,
            timeout_seconds=timeout,
            transport=transport,
        ))
    else:
        logger.info("provider_not_configured", provider="Google Gemini", missing="GOOGLE_API_KEY")

    if settings.ollama_base_url:
        providers.append(OllamaProvider(
            "Ollama",
            OLLAMA_PRIORITY,
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            timeout_seconds=timeout,
            transport=transport,
        ))
    else:
        logger.info("provider_not_configured", provider="Ollama", missing="OLLAMA_BASE_URL")

    return providers


class ProviderRegistry:
    """Priority-ordered set of providers with copy-on-write snapshots."""

    def __init__(self, providers: Iterable[Provider] = ()):
        self._snapshot: Tuple[Provider, ...] = ()
        for provider in providers:
            self.register(provider)

    @staticmethod
    def _sorted(providers: Iterable[Provider]) -> Tuple[Provider, ...]:
        # sorted() is stable: equal priorities keep registration order
        return tuple(sorted(providers, key=lambda p: p.priority))

    def register(self, provider: Provider) -> None:
        """
        Add a provider.

        Raises:
            ValueError: if a provider with the same name is already registered
        """
        current = self._snapshot
        if any(p.name == provider.name for p in current):
            raise ValueError(f"Provider already registered: {provider.name}")
        self._snapshot = self._sorted(current + (provider,))
        logger.info(
            "provider_registered",
            provider=provider.name,
            priority=provider.priority,
            supports_vision=provider.supports_vision,
        )

    def list(self) -> Tuple[Provider, ...]:
        """Current snapshot, ascending by priority."""
        return self._snapshot

    def rebuild(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Tuple[Provider, ...]:
        """Re-derive providers from configuration and swap the snapshot in one step."""
        providers = build_providers(settings, transport=transport)
        names = [p.name for p in providers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate provider names in configuration: {names}")
        self._snapshot = self._sorted(providers)
        logger.info(
            "provider_registry_rebuilt",
            providers=[p.name for p in self._snapshot],
            count=len(self._snapshot),
        )
        return self._snapshot

    def describe(self) -> List[Dict[str, Any]]:
        return [p.describe() for p in self._snapshot]

    def __len__(self) -> int:
        return len(self._snapshot)
