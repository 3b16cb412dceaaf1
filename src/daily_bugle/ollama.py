"""Client for the Ollama ``/api/generate`` endpoint.

Cancelling the awaiting task aborts the in-flight request; the resulting
``asyncio.CancelledError`` is never wrapped so the scheduler can tell a
superseded run from a failed one.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import OllamaConfig
from .errors import TransportError, UpstreamError

logger = logging.getLogger(__name__)


def build_client(ollama: OllamaConfig) -> httpx.AsyncClient:
    """Create an async HTTP client for Ollama; separated for easier testing."""
    return httpx.AsyncClient(timeout=ollama.timeout_seconds)


def generate_url(ollama: OllamaConfig) -> str:
    return f"{ollama.base_url.rstrip('/')}/api/generate"


def build_payload(system_prompt: str, user_prompt: str, ollama: OllamaConfig) -> dict:
    return {
        "model": ollama.model,
        "prompt": user_prompt,
        "system": system_prompt,
        "stream": False,
        "options": {"temperature": ollama.temperature},
    }


async def _post(client: httpx.AsyncClient, url: str, payload: dict) -> httpx.Response:
    try:
        return await client.post(url, json=payload)
    except httpx.TransportError as exc:
        raise TransportError(f"Ollama request to {url} failed: {exc}") from exc


async def generate(
    system_prompt: str,
    user_prompt: str,
    ollama: OllamaConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Issue one non-streaming generation request and return the generated text."""
    url = generate_url(ollama)
    payload = build_payload(system_prompt, user_prompt, ollama)

    if client is None:
        async with build_client(ollama) as owned:
            response = await _post(owned, url, payload)
    else:
        response = await _post(client, url, payload)

    if not response.is_success:
        raise UpstreamError(response.status_code, response.reason_phrase)

    try:
        data = response.json()
    except ValueError as exc:
        raise UpstreamError(response.status_code, "malformed response body") from exc
    text = data.get("response") if isinstance(data, dict) else None
    if not isinstance(text, str):
        raise UpstreamError(response.status_code, "malformed response body")
    logger.debug("Ollama returned %d characters from %s", len(text), ollama.model)
    return text
