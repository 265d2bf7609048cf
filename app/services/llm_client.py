"""
Generative text backend for report writing.

Uses Ollama's /api/generate endpoint with qwen2.5:3b (or whatever
OLLAMA_LLM_MODEL is configured to), either as a single blocking call or as a
stream of NDJSON fragments.

Public API
----------
OllamaLLMService.generate(prompt)        -> str
OllamaLLMService.generate_stream(prompt) -> AsyncIterator[str]
OllamaLLMService.check_health()          -> bool

Unlike a best-effort extractor, every failure here (timeout, connection
error, non-200, malformed payload) raises BackendError: the pipeline above
decides what a failed call means for a section.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from app.config import settings
from app.services.exceptions import BackendError

logger = logging.getLogger(__name__)


class TextBackend(Protocol):
    """Anything that can turn a prompt into text, whole or in fragments."""

    async def generate(self, prompt: str) -> str:
        ...

    def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        ...

    async def check_health(self) -> bool:
        ...


# ---------------------------------------------------------------------------
# Ollama implementation
# ---------------------------------------------------------------------------

class OllamaLLMService:
    """
    Text generation via Ollama /api/generate.

    * Semaphore caps concurrent Ollama calls (MAX_CONCURRENT_SECTIONS by default)
    * Batch calls are bounded by OLLAMA_TIMEOUT
    * Streamed calls are bounded per fragment by OLLAMA_STREAM_READ_TIMEOUT
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        stream_read_timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.OLLAMA_LLM_MODEL
        self.llm_timeout = float(timeout or settings.OLLAMA_TIMEOUT)
        self.stream_read_timeout = float(stream_read_timeout or settings.OLLAMA_STREAM_READ_TIMEOUT)
        self.timeout = httpx.Timeout(self.llm_timeout, connect=10.0)
        # The read timeout applies between two received chunks, i.e. per fragment.
        self.stream_timeout = httpx.Timeout(
            self.llm_timeout, connect=10.0, read=self.stream_read_timeout
        )
        self._transport = transport
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_SECTIONS
        self._semaphore = asyncio.Semaphore(self.max_concurrent)

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    async def generate(self, prompt: str) -> str:
        """POST a non-streamed generation and return the full response text."""
        async with self._semaphore:
            try:
                async with self._client(self.timeout) as client:
                    resp = await client.post(
                        f"{self.base_url}/api/generate",
                        json=self._payload(prompt, stream=False),
                    )
            except httpx.TimeoutException as exc:
                logger.error("generate: request timed out after %.0f s", self.llm_timeout)
                raise BackendError(f"Ollama request timed out after {self.llm_timeout:.0f}s") from exc
            except httpx.HTTPError as exc:
                logger.error("generate: transport error — %s", exc)
                raise BackendError(f"Ollama request failed: {exc}") from exc

        if resp.status_code != 200:
            logger.error(
                "generate: Ollama returned HTTP %d: %s", resp.status_code, resp.text[:300]
            )
            raise BackendError(f"Ollama returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendError("Ollama returned a non-JSON body") from exc

        if data.get("error"):
            raise BackendError(f"Ollama error: {data['error']}")
        return str(data.get("response", ""))

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        """
        POST a streamed generation and yield text fragments as they arrive.

        The sequence may end early with BackendError if the connection drops,
        a fragment takes longer than the read timeout, or Ollama reports an
        error mid-stream.
        """
        async with self._semaphore:
            try:
                async with self._client(self.stream_timeout) as client:
                    async with client.stream(
                        "POST",
                        f"{self.base_url}/api/generate",
                        json=self._payload(prompt, stream=True),
                    ) as resp:
                        if resp.status_code != 200:
                            body = await resp.aread()
                            logger.error(
                                "generate_stream: Ollama returned HTTP %d: %s",
                                resp.status_code,
                                body[:300],
                            )
                            raise BackendError(f"Ollama returned HTTP {resp.status_code}")

                        async for line in resp.aiter_lines():
                            if not line.strip():
                                continue
                            chunk = self._parse_stream_line(line)
                            fragment = chunk.get("response", "")
                            if fragment:
                                yield fragment
                            if chunk.get("done"):
                                break
            except httpx.TimeoutException as exc:
                logger.error(
                    "generate_stream: no fragment within %.0f s", self.stream_read_timeout
                )
                raise BackendError("Ollama stream timed out") from exc
            except httpx.HTTPError as exc:
                logger.error("generate_stream: transport error — %s", exc)
                raise BackendError(f"Ollama stream failed: {exc}") from exc

    async def check_health(self) -> bool:
        """Return True when Ollama answers /api/tags."""
        try:
            async with self._client(httpx.Timeout(10.0)) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("check_health: Ollama unreachable — %s", exc)
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(timeout=timeout, transport=self._transport)
        return httpx.AsyncClient(timeout=timeout)

    def _payload(self, prompt: str, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "num_predict": settings.OLLAMA_MAX_TOKENS,
                "temperature": settings.OLLAMA_TEMPERATURE,
            },
        }

    @staticmethod
    def _parse_stream_line(line: str) -> Dict[str, Any]:
        try:
            chunk = json.loads(line)
        except json.JSONDecodeError as exc:
            raise BackendError(f"Malformed stream line from Ollama: {line[:120]!r}") from exc
        if not isinstance(chunk, dict):
            raise BackendError("Unexpected stream payload from Ollama")
        if chunk.get("error"):
            raise BackendError(f"Ollama stream error: {chunk['error']}")
        return chunk
