"""Generation pipeline: template resolution, fallback orchestration, streaming and structured output."""

from .orchestrator import GenerationOrchestrator
from .streaming import CallbackSink, QueueSink, StreamRelay, StreamState, encode_ndjson
from .structured import AutoFixer, StructuredOutputParser
from .templates import DictTemplateStore, PromptTemplateResolver

__all__ = [
    "GenerationOrchestrator",
    "CallbackSink",
    "QueueSink",
    "StreamRelay",
    "StreamState",
    "encode_ndjson",
    "AutoFixer",
    "StructuredOutputParser",
    "DictTemplateStore",
    "PromptTemplateResolver",
]
