"""
Unit tests for GenerationOrchestrator.generate (non-streaming).

These tests use in-memory provider fakes only and do NOT perform real HTTP calls.
"""
from typing import List

import pytest
from pydantic import BaseModel

from aicore.core.errors import (
    AllProvidersFailed,
    ConfigurationError,
    StructuredParseFailure,
)
from aicore.core.tracing import StatusCode
from aicore.models.generation import GenerationRequest
from aicore.services.generation.orchestrator import EMPTY_RESPONSE_MESSAGE, GenerationOrchestrator
from aicore.services.providers.base import VISION_UNSUPPORTED_NOTE
from aicore.services.providers.registry import ProviderRegistry

from conftest import FakeProvider, ScriptedProvider


class IssueDraft(BaseModel):
    title: str
    labels: List[str]


def make_orchestrator(*providers) -> GenerationOrchestrator:
    return GenerationOrchestrator(ProviderRegistry(providers))


@pytest.mark.asyncio
async def test_empty_registry_fails_fast():
    """No providers → ConfigurationError before any generation."""
    orchestrator = make_orchestrator()
    with pytest.raises(ConfigurationError):
        await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))


@pytest.mark.asyncio
async def test_highest_priority_provider_wins():
    first = FakeProvider("first", 1, response="from first")
    second = FakeProvider("second", 2, response="from second")
    orchestrator = make_orchestrator(second, first)

    result = await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))

    assert result.content == "from first"
    assert result.provider_name == "first"
    assert result.attempts == ["first"]
    assert second.calls == []
    assert result.started_at <= result.completed_at


@pytest.mark.asyncio
async def test_failure_falls_back_to_next_provider():
    """Provider i raises, provider i+1 succeeds → result comes from i+1."""
    p1 = FakeProvider("p1", 1, response=RuntimeError("rate limited"))
    p2 = FakeProvider("p2", 2, response="fallback answer")
    p3 = FakeProvider("p3", 3, response="never used")
    orchestrator = make_orchestrator(p1, p2, p3)

    result = await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))

    assert result.provider_name == "p2"
    assert result.content == "fallback answer"
    assert result.attempts == ["p1", "p2"]
    assert p3.calls == []


@pytest.mark.asyncio
async def test_all_providers_failed_carries_every_error():
    providers = [
        FakeProvider("p1", 1, response=RuntimeError("boom 1")),
        FakeProvider("p2", 2, response=TimeoutError("boom 2")),
        FakeProvider("p3", 3, response=ValueError("boom 3")),
    ]
    orchestrator = make_orchestrator(*providers)

    with pytest.raises(AllProvidersFailed) as exc_info:
        await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))

    errors = exc_info.value.errors
    assert len(errors) == len(providers)
    assert [e.provider_name for e in errors] == ["p1", "p2", "p3"]
    assert errors[1].message == "boom 2"
    assert isinstance(errors[1].__cause__, TimeoutError)
    assert "boom 3" in str(exc_info.value)


@pytest.mark.asyncio
@pytest.mark.parametrize("empty", ["", "   ", "\n\t"])
async def test_empty_content_is_a_failure(empty):
    """Empty or whitespace-only content advances the chain like an exception."""
    p1 = FakeProvider("p1", 1, response=empty)
    p2 = FakeProvider("p2", 2, response="real content")
    orchestrator = make_orchestrator(p1, p2)

    result = await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))

    assert result.provider_name == "p2"


@pytest.mark.asyncio
async def test_only_empty_content_raises_all_failed():
    orchestrator = make_orchestrator(FakeProvider("p1", 1, response=" "))

    with pytest.raises(AllProvidersFailed) as exc_info:
        await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))

    assert len(exc_info.value.errors) == 1
    assert exc_info.value.errors[0].provider_name == "p1"


@pytest.mark.asyncio
async def test_images_degrade_for_non_vision_provider():
    """A non-vision provider still gets the prompt, text-only with a note appended."""
    text_only = FakeProvider("text-only", 1, response="described", supports_vision=False)
    orchestrator = make_orchestrator(text_only)

    request = GenerationRequest(rendered_prompt="What is on screen?", images=["iVBORw0KGgoAAA"])
    result = await orchestrator.generate(request)

    assert result.provider_name == "text-only"
    user_message = text_only.calls[0][-1]
    assert user_message["role"] == "user"
    assert user_message["content"] == "What is on screen?" + VISION_UNSUPPORTED_NOTE


@pytest.mark.asyncio
async def test_images_sent_as_parts_to_vision_provider():
    vision = FakeProvider("vision", 1, response="a login form", supports_vision=True)
    orchestrator = make_orchestrator(vision)

    request = GenerationRequest(
        rendered_prompt="Describe",
        images=["/9j/4AAQ", "data:image/webp;base64,UklGR"],
    )
    await orchestrator.generate(request)

    content = vision.calls[0][-1]["content"]
    assert content[0] == {"type": "text", "text": "Describe"}
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,/9j/4AAQ"
    assert content[2]["image_url"]["url"] == "data:image/webp;base64,UklGR"


@pytest.mark.asyncio
async def test_history_and_system_prompt_precede_user_turn():
    provider = FakeProvider("p1", 1, response="answer")
    orchestrator = make_orchestrator(provider)

    request = GenerationRequest(
        rendered_prompt="and now?",
        system_prompt="Be brief.",
        history=[
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ],
    )
    await orchestrator.generate(request)

    assert [m["role"] for m in provider.calls[0]] == ["system", "user", "assistant", "user"]
    assert provider.calls[0][0]["content"] == "Be brief."


@pytest.mark.asyncio
async def test_schema_conformant_output_needs_no_repair():
    provider = FakeProvider("p1", 1, response='{"title": "Crash on login", "labels": ["bug"]}')
    orchestrator = make_orchestrator(provider)

    result = await orchestrator.generate(
        GenerationRequest(rendered_prompt="draft an issue", output_schema=IssueDraft)
    )

    assert result.parsed == IssueDraft(title="Crash on login", labels=["bug"])
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_malformed_output_is_repaired_once():
    provider = ScriptedProvider(
        "p1",
        1,
        responses=[
            "title: Crash on login",
            '```json\n{"title": "Crash on login", "labels": []}\n```',
        ],
    )
    orchestrator = make_orchestrator(provider)

    result = await orchestrator.generate(
        GenerationRequest(rendered_prompt="draft an issue", output_schema=IssueDraft)
    )

    assert result.parsed.title == "Crash on login"
    assert result.content == "title: Crash on login"
    assert len(provider.calls) == 2
    assert "title: Crash on login" in provider.calls[1][-1]["content"]


@pytest.mark.asyncio
async def test_schema_failure_after_one_repair_is_terminal():
    """Still malformed after repair → StructuredParseFailure, no second repair, no fallback."""
    p1 = FakeProvider("p1", 1, response="not json at all")
    p2 = FakeProvider("p2", 2, response='{"title": "x", "labels": []}')
    orchestrator = make_orchestrator(p1, p2)

    with pytest.raises(StructuredParseFailure) as exc_info:
        await orchestrator.generate(
            GenerationRequest(rendered_prompt="draft an issue", output_schema=IssueDraft)
        )

    assert len(p1.calls) == 2
    assert p2.calls == []
    assert exc_info.value.raw_text == "not json at all"
    assert exc_info.value.repaired_text == "not json at all"
    assert len(exc_info.value.errors) == 2


@pytest.mark.asyncio
async def test_failed_repair_call_surfaces_as_parse_failure():
    provider = ScriptedProvider("p1", 1, responses=["not json", RuntimeError("quota exceeded")])
    orchestrator = make_orchestrator(provider)

    with pytest.raises(StructuredParseFailure) as exc_info:
        await orchestrator.generate(
            GenerationRequest(rendered_prompt="draft an issue", output_schema=IssueDraft)
        )

    assert exc_info.value.repaired_text is None
    assert isinstance(exc_info.value.errors[-1], AllProvidersFailed)


@pytest.mark.asyncio
async def test_attempt_spans_record_outcome(monkeypatch):
    statuses = []
    monkeypatch.setattr(
        "aicore.services.generation.orchestrator.set_span_status",
        lambda code, description=None: statuses.append((code, description)),
    )
    orchestrator = make_orchestrator(
        FakeProvider("p1", 1, response="   "),
        FakeProvider("p2", 2, response="fine"),
    )

    await orchestrator.generate(GenerationRequest(rendered_prompt="hello"))

    assert statuses == [
        (StatusCode.ERROR, EMPTY_RESPONSE_MESSAGE),
        (StatusCode.OK, None),
    ]
