"""
Core application modules.
Contains configuration, logging, metrics, tracing and the error taxonomy.
"""
from .config import Settings
from .errors import (
    AICoreError,
    AllProvidersFailed,
    ConfigurationError,
    ParseError,
    ProviderError,
    ReconnectionExhausted,
    SessionNotActive,
    StreamCancelled,
    StructuredParseFailure,
)

__all__ = [
    "Settings",
    "AICoreError",
    "AllProvidersFailed",
    "ConfigurationError",
    "ParseError",
    "ProviderError",
    "ReconnectionExhausted",
    "SessionNotActive",
    "StreamCancelled",
    "StructuredParseFailure",
]
