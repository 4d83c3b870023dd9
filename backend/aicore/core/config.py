"""
Runtime configuration for the orchestration core.

Settings are read from environment variables (optionally from a `.env` file
in the repository root). Provider families whose required variables are
missing are simply left unconfigured; the registry skips them.

Provider families (ascending priority = tried first):
1. OpenAI:             OPENAI_API_KEY, OPENAI_MODEL, OPENAI_API_BASE
2. OpenAI-compatible:  OPENAI_COMPATIBLE_BASE_URL + OPENAI_COMPATIBLE_API_KEY, OPENAI_COMPATIBLE_MODEL
3. Google Gemini:      GOOGLE_API_KEY, GOOGLE_MODEL
4. Ollama:             OLLAMA_BASE_URL, OLLAMA_MODEL
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from aicore.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENV_PATH = Path(__file__).parent.parent.parent.parent / ".env"

GEMINI_LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("config_invalid_int", variable=name, value=value, default=default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("config_invalid_float", variable=name, value=value, default=default)
        return default


@dataclass(frozen=True)
class Settings:
    """Snapshot of environment configuration."""

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_api_base: str = "https://api.openai.com/v1"

    openai_compatible_base_url: Optional[str] = None
    openai_compatible_api_key: Optional[str] = None
    openai_compatible_model: str = "claude-3-sonnet-20240229"

    google_api_key: Optional[str] = None
    google_model: str = "gemini-1.5-flash"
    google_api_base: str = "https://generativelanguage.googleapis.com/v1beta"

    ollama_base_url: Optional[str] = None
    ollama_model: str = "llava"

    llm_timeout_seconds: float = 60.0
    history_max_messages: int = 50

    voice_model: str = "models/gemini-2.0-flash-exp"
    voice_live_url: str = GEMINI_LIVE_URL
    voice_max_reconnect_attempts: int = 3
    voice_reconnect_base_delay_seconds: float = 1.0
    voice_reconnect_stable_seconds: float = 30.0
    voice_handshake_timeout_seconds: float = 10.0

    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "Settings":
        """
        Build settings from the process environment.

        Args:
            env_path: Optional `.env` file to load first (defaults to the repo root `.env`).
        """
        env_path = env_path or DEFAULT_ENV_PATH
        if env_path.exists():
            load_dotenv(env_path)
            logger.info("env_loaded", env_path=str(env_path))

        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            openai_api_base=os.getenv("OPENAI_API_BASE", cls.openai_api_base),
            openai_compatible_base_url=os.getenv("OPENAI_COMPATIBLE_BASE_URL") or None,
            openai_compatible_api_key=os.getenv("OPENAI_COMPATIBLE_API_KEY") or None,
            openai_compatible_model=os.getenv(
                "OPENAI_COMPATIBLE_MODEL", cls.openai_compatible_model
            ),
            google_api_key=os.getenv("GOOGLE_API_KEY") or None,
            google_model=os.getenv("GOOGLE_MODEL", cls.google_model),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL") or None,
            ollama_model=os.getenv("OLLAMA_MODEL", cls.ollama_model),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", cls.llm_timeout_seconds),
            history_max_messages=_env_int("HISTORY_MAX_MESSAGES", cls.history_max_messages),
            voice_model=os.getenv("VOICE_MODEL", cls.voice_model),
            voice_live_url=os.getenv("VOICE_LIVE_URL", cls.voice_live_url),
            voice_max_reconnect_attempts=_env_int(
                "VOICE_MAX_RECONNECT_ATTEMPTS", cls.voice_max_reconnect_attempts
            ),
            voice_reconnect_base_delay_seconds=_env_float(
                "VOICE_RECONNECT_BASE_DELAY_SECONDS",
                cls.voice_reconnect_base_delay_seconds,
            ),
            voice_reconnect_stable_seconds=_env_float(
                "VOICE_RECONNECT_STABLE_SECONDS", cls.voice_reconnect_stable_seconds
            ),
            voice_handshake_timeout_seconds=_env_float(
                "VOICE_HANDSHAKE_TIMEOUT_SECONDS", cls.voice_handshake_timeout_seconds
            ),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            log_json=os.getenv("LOG_JSON", "true").lower() == "true",
        )
