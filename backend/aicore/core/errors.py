"""
Error taxonomy for the orchestration core.

Provider-level failures are recovered locally by advancing the fallback
chain; schema-parse failures get exactly one automated repair. Everything
else propagates as one of these typed errors to the boundary, which maps
them to transport-appropriate responses.
"""
from typing import List, Optional, Sequence


class AICoreError(Exception):
    """Base class for all orchestration-core errors."""


class ConfigurationError(AICoreError):
    """Raised when no provider is registered (or configuration is unusable)."""


class ProviderError(AICoreError):
    """A single provider invocation failed. Always tagged with the provider name."""

    def __init__(self, provider_name: str, message: str):
        super().__init__(f"{provider_name}: {message}")
        self.provider_name = provider_name
        self.message = message

    def to_dict(self) -> dict:
        return {"provider": self.provider_name, "error": self.message}


class AllProvidersFailed(AICoreError):
    """Every provider in the fallback chain failed."""

    def __init__(self, errors: Sequence[ProviderError]):
        self.errors: List[ProviderError] = list(errors)
        names = ", ".join(e.provider_name for e in self.errors)
        last = self.errors[-1].message if self.errors else "Unknown error"
        super().__init__(
            f"All {len(self.errors)} providers failed ({names}). Last error: {last}"
        )


class ParseError(AICoreError):
    """Raw text did not parse into the requested schema."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class StructuredParseFailure(AICoreError):
    """Terminal parse failure after exactly one repair attempt."""

    def __init__(
        self,
        raw_text: str,
        repaired_text: Optional[str],
        errors: Sequence[Exception],
    ):
        self.raw_text = raw_text
        self.repaired_text = repaired_text
        self.errors = list(errors)
        super().__init__(
            "Structured output could not be parsed after one repair attempt: "
            + "; ".join(str(e) for e in self.errors)
        )


class StreamCancelled(AICoreError):
    """The caller disconnected while a stream was in flight."""


class SessionNotActive(AICoreError):
    """Voice send attempted on a session that is not READY."""

    def __init__(self, session_id: str, state: Optional[str] = None):
        detail = f" (state: {state})" if state else ""
        super().__init__(f"No active voice session: {session_id}{detail}")
        self.session_id = session_id
        self.state = state


class ReconnectionExhausted(AICoreError):
    """Voice session could not be re-established within the attempt bound."""

    def __init__(self, session_id: str, attempts: int):
        super().__init__(
            f"Max reconnection attempts reached for {session_id} ({attempts} attempts)"
        )
        self.session_id = session_id
        self.attempts = attempts
