"""
Unit tests for the provider registry.

Tests verify:
- Snapshots are sorted by ascending priority
- Duplicate names are rejected
- Registering swaps in a new snapshot without touching old ones
- rebuild() derives providers from settings and skips unconfigured families
"""
import pytest

from aicore.core.config import Settings
from aicore.services.providers.base import model_supports_vision
from aicore.services.providers.gemini import GeminiProvider
from aicore.services.providers.ollama import OllamaProvider
from aicore.services.providers.openai import OpenAIChatProvider
from aicore.services.providers.registry import ProviderRegistry, build_providers

from conftest import FakeProvider


class TestRegister:
    def test_list_is_sorted_by_priority(self):
        registry = ProviderRegistry()
        registry.register(FakeProvider("c", 3))
        registry.register(FakeProvider("a", 1))
        registry.register(FakeProvider("b", 2))

        assert [p.name for p in registry.list()] == ["a", "b", "c"]

    def test_duplicate_name_rejected(self):
        registry = ProviderRegistry([FakeProvider("a", 1)])

        with pytest.raises(ValueError):
            registry.register(FakeProvider("a", 2))

        assert len(registry) == 1

    def test_old_snapshot_unchanged_after_register(self):
        registry = ProviderRegistry([FakeProvider("a", 1)])
        snapshot = registry.list()

        registry.register(FakeProvider("b", 0))

        assert [p.name for p in snapshot] == ["a"]
        assert [p.name for p in registry.list()] == ["b", "a"]
        assert isinstance(registry.list(), tuple)

    def test_empty_registry_is_valid(self):
        registry = ProviderRegistry()
        assert registry.list() == ()
        assert registry.describe() == []

    def test_describe(self):
        registry = ProviderRegistry([FakeProvider("vision", 1, supports_vision=True)])
        assert registry.describe() == [
            {"name": "vision", "priority": 1, "supports_vision": True}
        ]


class TestRebuild:
    def test_no_configuration_yields_empty_registry(self):
        registry = ProviderRegistry([FakeProvider("stale", 1)])
        registry.rebuild(Settings())
        assert registry.list() == ()

    def test_all_families_in_priority_order(self):
        settings = Settings(
            openai_api_key="sk-test",
            openai_compatible_base_url="https://proxy.example.com/v1",
            openai_compatible_api_key="proxy-key",
            google_api_key="g-key",
            ollama_base_url="http://localhost:11434",
        )
        providers = ProviderRegistry().rebuild(settings)

        assert [p.name for p in providers] == [
            "OpenAI",
            "OpenAI Compatible",
            "Google Gemini",
            "Ollama",
        ]
        assert [p.priority for p in providers] == [1, 2, 3, 4]
        assert isinstance(providers[0], OpenAIChatProvider)
        assert isinstance(providers[2], GeminiProvider)
        assert isinstance(providers[3], OllamaProvider)

    def test_openai_compatible_requires_url_and_key(self):
        settings = Settings(openai_compatible_base_url="https://proxy.example.com/v1")
        assert build_providers(settings) == []

    def test_vision_support_per_family(self):
        settings = Settings(
            openai_api_key="sk-test",
            openai_model="gpt-3.5-turbo",
            google_api_key="g-key",
            ollama_base_url="http://localhost:11434",
            ollama_model="mistral",
        )
        by_name = {p.name: p for p in build_providers(settings)}

        assert by_name["OpenAI"].supports_vision is False
        assert by_name["Google Gemini"].supports_vision is True
        assert by_name["Ollama"].supports_vision is True


@pytest.mark.parametrize(
    "model,expected",
    [
        ("gpt-4o-mini", True),
        ("gpt-3.5-turbo", False),
        ("claude-3-sonnet-20240229", True),
        ("llava", True),
        ("gemini-1.5-flash", True),
        ("llama3.2-vision", True),
        (None, False),
    ],
)
def test_model_supports_vision(model, expected):
    assert model_supports_vision(model) is expected
