"""Error types raised by the generation pipeline and config loader.

Cancellation is not part of this hierarchy: a superseded run surfaces as
``asyncio.CancelledError`` so callers can tell it apart from a failure.
"""

from __future__ import annotations


class DailyBugleError(Exception):
    """Base class for all application errors."""


class ConfigError(DailyBugleError):
    """Startup configuration is missing or malformed. Never retried."""


class GenerationError(DailyBugleError):
    """A generation request did not produce text."""


class UpstreamError(GenerationError):
    """The generation endpoint answered with a failure status."""

    def __init__(self, status: int, status_text: str):
        self.status = status
        self.status_text = status_text
        super().__init__(f"Ollama API error: {status} {status_text}")


class TransportError(GenerationError):
    """The generation endpoint could not be reached."""
