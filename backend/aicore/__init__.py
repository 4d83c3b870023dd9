"""AI provider orchestration core."""

__version__ = "0.1.0"
