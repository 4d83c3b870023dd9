"""
Schema-conformant output parsing with a single bounded repair.

The parser accepts the shapes models actually produce: bare JSON, JSON
inside a Markdown code fence, or JSON surrounded by prose. Validation is
done by the pydantic schema itself.

Repair policy: one secondary generation call asking the model to reformat
its own output. If that call fails or its output still does not parse, the
failure is terminal and surfaces as StructuredParseFailure.
"""
import json
import re
from typing import Any, Awaitable, Callable, Optional, Type

from pydantic import BaseModel, ValidationError

from aicore.core.errors import AICoreError, ParseError, StructuredParseFailure
from aicore.core.logging import get_logger
from aicore.core.metrics import record_structured_failure, record_structured_repair
from aicore.models.generation import GenerationRequest, GenerationResult

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)

FORMAT_INSTRUCTIONS = """The output should be formatted as a JSON instance that conforms to the JSON schema below.

Here is the output schema:
```
{schema}
```

Return only the JSON instance, without any explanation."""

REPAIR_PROMPT = """Instructions:
--------------
{instructions}
--------------
Completion:
--------------
{completion}
--------------

Above, the Completion did not satisfy the constraints given in the Instructions.
Error:
--------------
{error}
--------------

Please try again. Only respond with an answer that satisfies the constraints laid out in the Instructions:"""


def extract_json_text(raw_text: str) -> str:
    """
    Pull the JSON payload out of `raw_text`.

    A fenced block wins; otherwise the span from the first `{`/`[` to the
    last matching closer is taken.
    """
    text = raw_text.strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        return fenced.group(1).strip()

    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text[start:]
    return text[start:end + 1]


class StructuredOutputParser:
    """Parses raw model text into a pydantic model instance."""

    def format_instructions(self, schema: Type[BaseModel]) -> str:
        return FORMAT_INSTRUCTIONS.format(
            schema=json.dumps(schema.model_json_schema(), indent=2)
        )

    def parse(self, raw_text: str, schema: Type[BaseModel]) -> BaseModel:
        """
        Raises:
            ParseError: if no valid JSON is found or it fails schema validation
        """
        candidate = extract_json_text(raw_text or "")
        try:
            data: Any = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e}", raw_text=raw_text) from e

        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ParseError(
                f"Output does not match {schema.__name__}: {e}",
                raw_text=raw_text,
            ) from e


GenerateFn = Callable[[GenerationRequest], Awaitable[GenerationResult]]


class AutoFixer:
    """
    Wraps a parser with exactly one model-assisted repair attempt.

    `generate` is the orchestrator's plain (schema-less) generate call.
    """

    def __init__(self, generate: GenerateFn, parser: Optional[StructuredOutputParser] = None):
        self._generate = generate
        self.parser = parser or StructuredOutputParser()

    async def repair(self, raw_text: str, schema: Type[BaseModel], error: Exception) -> str:
        """Ask the model to reformat `raw_text` to `schema`. One call, no retries."""
        record_structured_repair(schema.__name__)
        logger.info("structured_output_repair", schema=schema.__name__, error=str(error))
        prompt = REPAIR_PROMPT.format(
            instructions=self.parser.format_instructions(schema),
            completion=raw_text,
            error=str(error),
        )
        result = await self._generate(GenerationRequest(rendered_prompt=prompt))
        return result.content

    async def parse_with_repair(self, raw_text: str, schema: Type[BaseModel]) -> BaseModel:
        """
        Parse, repairing once on failure.

        Raises:
            StructuredParseFailure: if the repair call fails or the repaired
                text still does not parse
        """
        try:
            return self.parser.parse(raw_text, schema)
        except ParseError as first_error:
            try:
                repaired = await self.repair(raw_text, schema, first_error)
            except AICoreError as repair_error:
                record_structured_failure(schema.__name__)
                logger.warning(
                    "structured_output_repair_failed",
                    schema=schema.__name__,
                    first_error=str(first_error),
                    error=str(repair_error),
                    error_type=type(repair_error).__name__,
                )
                raise StructuredParseFailure(
                    raw_text=raw_text,
                    repaired_text=None,
                    errors=[first_error, repair_error],
                ) from repair_error
            try:
                return self.parser.parse(repaired, schema)
            except ParseError as second_error:
                record_structured_failure(schema.__name__)
                logger.warning(
                    "structured_output_failed",
                    schema=schema.__name__,
                    first_error=str(first_error),
                    second_error=str(second_error),
                )
                raise StructuredParseFailure(
                    raw_text=raw_text,
                    repaired_text=repaired,
                    errors=[first_error, second_error],
                ) from second_error
