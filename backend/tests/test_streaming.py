"""
Unit tests for StreamRelay and GenerationOrchestrator.generate_streaming.

Tests verify:
- Event order: status*, chunks in provider order, one terminal event last
- Nothing is emitted after a terminal event and the sink closes once
- Mid-stream failure resets partial output and falls back
- Schema requests carry the parsed object on `complete`, or end with one `error`
- Cancellation stops the provider stream and raises StreamCancelled
"""
import asyncio
import json
from typing import List

import pytest
from pydantic import BaseModel

from aicore.core.errors import (
    AllProvidersFailed,
    ConfigurationError,
    StreamCancelled,
    StructuredParseFailure,
)
from aicore.models.generation import GenerationRequest
from aicore.services.generation.orchestrator import GenerationOrchestrator
from aicore.services.generation.streaming import (
    CallbackSink,
    QueueSink,
    StreamRelay,
    StreamState,
    encode_ndjson,
)
from aicore.services.providers.registry import ProviderRegistry

from conftest import FakeProvider, HangingProvider, wait_for_condition


class IssueDraft(BaseModel):
    title: str
    labels: List[str]


class RecordingSink:
    def __init__(self):
        self.events = []
        self.close_count = 0

    async def send(self, event):
        self.events.append(event)

    async def close(self):
        self.close_count += 1

    @property
    def types(self):
        return [e.type for e in self.events]


def make_orchestrator(*providers) -> GenerationOrchestrator:
    return GenerationOrchestrator(ProviderRegistry(providers))


class TestStreamRelay:
    @pytest.mark.asyncio
    async def test_state_transitions_and_single_close(self):
        sink = RecordingSink()
        relay = StreamRelay(sink)
        assert relay.state is StreamState.INIT

        await relay.status("Generating with p1...", provider="p1")
        assert relay.state is StreamState.STREAMING

        await relay.chunk("a")
        await relay.complete("a", "p1")
        assert relay.state is StreamState.COMPLETE

        await relay.chunk("late")
        await relay.error("late error")
        await relay.close()

        assert sink.types == ["status", "chunk", "complete"]
        assert sink.close_count == 1

    @pytest.mark.asyncio
    async def test_empty_fragments_are_not_forwarded(self):
        sink = RecordingSink()
        relay = StreamRelay(sink)

        await relay.chunk("")
        await relay.chunk("x")

        assert sink.types == ["chunk"]

    @pytest.mark.asyncio
    async def test_cancel_makes_later_emissions_no_ops(self):
        sink = RecordingSink()
        relay = StreamRelay(sink)
        await relay.chunk("a")

        relay.cancel()
        await relay.chunk("b")
        await relay.complete("ab", "p1")

        assert relay.state is StreamState.CANCELLED
        assert sink.types == ["chunk"]

    def test_encode_ndjson_omits_unset_fields(self):
        from aicore.models.generation import ChunkEvent, StatusEvent

        assert encode_ndjson(ChunkEvent(content="hi")) == '{"type":"chunk","content":"hi"}\n'
        status = json.loads(encode_ndjson(StatusEvent(message="m", provider="p")))
        assert "reset" not in status

    @pytest.mark.asyncio
    async def test_queue_sink_yields_until_closed(self):
        sink = QueueSink()
        relay = StreamRelay(sink)
        await relay.chunk("a")
        await relay.complete("a", "p1")

        lines = [line async for line in sink.ndjson()]

        assert [json.loads(line)["type"] for line in lines] == ["chunk", "complete"]

    @pytest.mark.asyncio
    async def test_callback_sink_accepts_sync_callbacks(self):
        received = []
        closed = []
        relay = StreamRelay(CallbackSink(received.append, on_close=lambda: closed.append(True)))

        await relay.chunk("a")
        await relay.error("boom")

        assert [e.type for e in received] == ["chunk", "error"]
        assert closed == [True]


class TestGenerateStreaming:
    @pytest.mark.asyncio
    async def test_chunks_relayed_in_order_then_complete(self):
        """Provider yields a, b, c → status*, chunk a, chunk b, chunk c, complete."""
        sink = RecordingSink()
        orchestrator = make_orchestrator(FakeProvider("p1", 1, chunks=["a", "b", "c"]))

        result = await orchestrator.generate_streaming(
            GenerationRequest(rendered_prompt="hello", wants_streaming=True), sink
        )

        assert result.content == "abc"
        assert result.provider_name == "p1"
        non_status = [e for e in sink.events if e.type != "status"]
        assert [(e.type, getattr(e, "content", None)) for e in non_status] == [
            ("chunk", "a"),
            ("chunk", "b"),
            ("chunk", "c"),
            ("complete", None),
        ]
        assert sink.types[0] == "status"
        assert sink.events[-1].type == "complete"
        assert sink.events[-1].response == "abc"
        assert sink.events[-1].provider == "p1"
        assert sink.close_count == 1

    @pytest.mark.asyncio
    async def test_mid_stream_failure_resets_and_falls_back(self):
        p1 = FakeProvider("p1", 1, chunks=["par", "tial", RuntimeError("connection reset")])
        p2 = FakeProvider("p2", 2, chunks=["fresh"])
        sink = RecordingSink()
        orchestrator = make_orchestrator(p1, p2)

        result = await orchestrator.generate_streaming(
            GenerationRequest(rendered_prompt="hello"), sink
        )

        assert result.content == "fresh"
        assert result.provider_name == "p2"
        assert result.attempts == ["p1", "p2"]
        reset_events = [e for e in sink.events if e.type == "status" and e.reset]
        assert len(reset_events) == 1
        reset_index = sink.events.index(reset_events[0])
        assert [e.content for e in sink.events[reset_index:] if e.type == "chunk"] == ["fresh"]
        assert sink.events[-1].response == "fresh"
        assert p1.stream_closed

    @pytest.mark.asyncio
    async def test_last_provider_failure_emits_error_and_raises(self):
        p1 = FakeProvider("p1", 1, chunks=[RuntimeError("down")])
        p2 = FakeProvider("p2", 2, chunks=["half", RuntimeError("cut off")])
        sink = RecordingSink()
        orchestrator = make_orchestrator(p1, p2)

        with pytest.raises(AllProvidersFailed) as exc_info:
            await orchestrator.generate_streaming(GenerationRequest(rendered_prompt="hello"), sink)

        assert len(exc_info.value.errors) == 2
        assert sink.events[-1].type == "error"
        assert sink.types.count("error") == 1
        assert "complete" not in sink.types
        assert sink.close_count == 1

    @pytest.mark.asyncio
    async def test_empty_stream_is_a_failure(self):
        p1 = FakeProvider("p1", 1, chunks=[])
        p2 = FakeProvider("p2", 2, chunks=["ok"])
        sink = RecordingSink()
        orchestrator = make_orchestrator(p1, p2)

        result = await orchestrator.generate_streaming(GenerationRequest(rendered_prompt="hello"), sink)

        assert result.provider_name == "p2"

    @pytest.mark.asyncio
    async def test_schema_stream_completes_with_parsed_object(self):
        provider = FakeProvider("p1", 1, chunks=['{"title": "Crash on login",', ' "labels": ["bug"]}'])
        sink = RecordingSink()
        orchestrator = make_orchestrator(provider)

        result = await orchestrator.generate_streaming(
            GenerationRequest(rendered_prompt="draft an issue", output_schema=IssueDraft), sink
        )

        assert result.parsed == IssueDraft(title="Crash on login", labels=["bug"])
        assert [t for t in sink.types if t != "status"] == ["chunk", "chunk", "complete"]
        assert sink.events[-1].parsed == {"title": "Crash on login", "labels": ["bug"]}
        assert sink.close_count == 1

    @pytest.mark.asyncio
    async def test_schema_failure_ends_stream_with_one_error(self):
        """Unparseable even after repair → exactly one error event, nothing after it."""
        provider = FakeProvider("p1", 1, response="still not json", chunks=["not ", "json"])
        sink = RecordingSink()
        orchestrator = make_orchestrator(provider)

        with pytest.raises(StructuredParseFailure):
            await orchestrator.generate_streaming(
                GenerationRequest(rendered_prompt="draft an issue", output_schema=IssueDraft), sink
            )

        assert [t for t in sink.types if t != "status"] == ["chunk", "chunk", "error"]
        assert sink.events[-1].type == "error"
        assert "complete" not in sink.types
        assert sink.close_count == 1
        # one invoke for the repair, no fallback stream
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_no_providers_emits_error(self):
        sink = RecordingSink()
        orchestrator = make_orchestrator()

        with pytest.raises(ConfigurationError):
            await orchestrator.generate_streaming(GenerationRequest(rendered_prompt="hello"), sink)

        assert sink.types == ["error"]

    @pytest.mark.asyncio
    async def test_cancellation_stops_provider_and_skips_fallback(self):
        hanging = HangingProvider("slow", 1)
        backup = FakeProvider("backup", 2, chunks=["never"])
        sink = RecordingSink()
        relay = StreamRelay(sink)
        orchestrator = make_orchestrator(hanging, backup)

        task = asyncio.create_task(
            orchestrator.generate_streaming(GenerationRequest(rendered_prompt="hello"), relay)
        )
        await wait_for_condition(lambda: "chunk" in sink.types)
        relay.cancel()

        with pytest.raises(StreamCancelled):
            await asyncio.wait_for(task, timeout=2.0)

        assert hanging.stream_closed
        assert backup.calls == []
        assert "complete" not in sink.types
        assert "error" not in sink.types
        assert sink.close_count == 1
