"""
Unit tests for StructuredOutputParser and AutoFixer.
"""
from typing import List, Optional

import pytest
from pydantic import BaseModel

from aicore.core.errors import AllProvidersFailed, ParseError, ProviderError, StructuredParseFailure
from aicore.models.generation import GenerationRequest, GenerationResult, utcnow
from aicore.services.generation.structured import (
    AutoFixer,
    StructuredOutputParser,
    extract_json_text,
)


class Screen(BaseModel):
    name: str
    components: List[str]
    notes: Optional[str] = None


class TestExtractJsonText:
    def test_bare_json(self):
        assert extract_json_text('{"a": 1}') == '{"a": 1}'

    def test_fenced_json_wins(self):
        raw = 'Here you go:\n```json\n{"a": 1}\n```\nAnything else?'
        assert extract_json_text(raw) == '{"a": 1}'

    def test_unlabelled_fence(self):
        assert extract_json_text('```\n[1, 2]\n```') == "[1, 2]"

    def test_json_surrounded_by_prose(self):
        raw = 'Sure! {"a": {"b": 2}} Hope that helps.'
        assert extract_json_text(raw) == '{"a": {"b": 2}}'

    def test_array_before_object(self):
        assert extract_json_text('result: [{"a": 1}]') == '[{"a": 1}]'

    def test_no_json_returns_text(self):
        assert extract_json_text("  nothing here  ") == "nothing here"


class TestStructuredOutputParser:
    def setup_method(self):
        self.parser = StructuredOutputParser()

    def test_parses_into_model(self):
        parsed = self.parser.parse(
            '```json\n{"name": "Login", "components": ["form", "button"]}\n```',
            Screen,
        )
        assert parsed == Screen(name="Login", components=["form", "button"])

    def test_invalid_json_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            self.parser.parse("name: Login", Screen)
        assert exc_info.value.raw_text == "name: Login"
        assert "Invalid JSON" in str(exc_info.value)

    def test_schema_mismatch_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            self.parser.parse('{"name": "Login"}', Screen)
        assert "Screen" in str(exc_info.value)

    def test_empty_text_raises_parse_error(self):
        with pytest.raises(ParseError):
            self.parser.parse("", Screen)

    def test_format_instructions_embed_schema(self):
        instructions = self.parser.format_instructions(Screen)
        assert '"components"' in instructions
        assert "JSON" in instructions


class StubGenerate:
    def __init__(self, *contents):
        self.contents = list(contents)
        self.requests: List[GenerationRequest] = []

    async def __call__(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        content = self.contents.pop(0)
        if isinstance(content, Exception):
            raise content
        now = utcnow()
        return GenerationResult(
            content=content,
            provider_name="stub",
            started_at=now,
            completed_at=now,
        )


class TestAutoFixer:
    @pytest.mark.asyncio
    async def test_valid_text_makes_no_call(self):
        generate = StubGenerate()
        fixer = AutoFixer(generate)

        parsed = await fixer.parse_with_repair('{"name": "a", "components": []}', Screen)

        assert parsed.name == "a"
        assert generate.requests == []

    @pytest.mark.asyncio
    async def test_repair_prompt_carries_completion_and_error(self):
        generate = StubGenerate('{"name": "a", "components": []}')
        fixer = AutoFixer(generate)

        parsed = await fixer.parse_with_repair("name is a", Screen)

        assert parsed.name == "a"
        assert len(generate.requests) == 1
        prompt = generate.requests[0].rendered_prompt
        assert "name is a" in prompt
        assert "Invalid JSON" in prompt
        assert generate.requests[0].output_schema is None

    @pytest.mark.asyncio
    async def test_second_failure_is_terminal(self):
        generate = StubGenerate("still not json")
        fixer = AutoFixer(generate)

        with pytest.raises(StructuredParseFailure) as exc_info:
            await fixer.parse_with_repair("not json", Screen)

        failure = exc_info.value
        assert failure.raw_text == "not json"
        assert failure.repaired_text == "still not json"
        assert all(isinstance(e, ParseError) for e in failure.errors)
        assert len(generate.requests) == 1

    @pytest.mark.asyncio
    async def test_failed_repair_call_is_terminal_parse_failure(self):
        generate = StubGenerate(AllProvidersFailed([ProviderError("p1", "quota exceeded")]))
        fixer = AutoFixer(generate)

        with pytest.raises(StructuredParseFailure) as exc_info:
            await fixer.parse_with_repair("not json", Screen)

        failure = exc_info.value
        assert failure.repaired_text is None
        assert isinstance(failure.errors[0], ParseError)
        assert isinstance(failure.errors[1], AllProvidersFailed)
        assert isinstance(failure.__cause__, AllProvidersFailed)
