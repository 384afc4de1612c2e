"""
Ollama Chat Client

Native Ollama API client for local reasoning models (DeepSeek R1 and friends).
Uses the /api/chat endpoint in streaming mode; the response body is a chunked
stream of newline-delimited JSON records, each carrying one content token in
``message.content``.

Usage:
    from clients.ollama_client import OllamaClient

    client = OllamaClient(
        base_url="http://127.0.0.1:11434",
        model_id="deepseek-r1:1.5b",
        timeout_s=300  # Longer timeout for reasoning models
    )

    source = await client.open_stream([{"role": "user", "content": "hi"}])
    async for chunk in source:
        ...
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import requests

from .base_llm_client import BaseChatBackend, ByteSource, TransportError

logger = logging.getLogger(__name__)


class ResponseByteSource(ByteSource):
    """Byte chunks of one streamed httpx response; owns the response and its client."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, started_at: float):
        self._client = client
        self._response = response
        self._started_at = started_at
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as e:
            elapsed = time.time() - self._started_at
            logger.error(f"Stream timed out after {elapsed:.1f}s")
            raise TransportError(f"Ollama stream timed out after {elapsed:.1f}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Stream aborted mid-read: {e}")
            raise TransportError(f"Ollama stream aborted: {e}") from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class OllamaClient(BaseChatBackend):
    """
    Native Ollama API client using the /api/chat endpoint with streaming.

    Sampling parameters are opaque passthrough configuration: they are copied
    into ``options`` and never interpreted here.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        model_id: str = "deepseek-r1:1.5b",
        temperature: float = 0.1,
        repeat_penalty: float = 1.2,
        numa: bool = True,
        timeout_s: float = 300,  # Longer default for reasoning models
        extra_options: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Ollama client.

        Args:
            base_url: Ollama server URL
            model_id: Model identifier in Ollama (e.g., "deepseek-r1:1.5b")
            temperature: Sampling temperature
            repeat_penalty: Repetition penalty
            numa: Platform hint forwarded as the ``numa`` option (ARM hosts)
            timeout_s: Request timeout in seconds
            extra_options: Additional Ollama options merged into ``options``
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self.temperature = temperature
        self.repeat_penalty = repeat_penalty
        self.numa = numa
        self.timeout = timeout_s
        self.extra_options = extra_options or {}
        self._transport = transport

        logger.info(f"Initialized OllamaClient: {self.base_url}, model={self.model_id}, timeout={timeout_s}s")

    def build_request_body(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": self.model_id,
            "messages": list(messages),
            "stream": True,
            "options": {
                "temperature": self.temperature,
                "repeat_penalty": self.repeat_penalty,
                "numa": self.numa,
                **self.extra_options,
            },
        }

    async def open_stream(self, messages: List[Dict[str, str]]) -> ResponseByteSource:
        """
        POST the conversation and wait for the response headers.

        Returns:
            ResponseByteSource over the body. The caller owns it and must
            ``aclose()`` it (the stream adapter does this).

        Raises:
            TransportError: backend unreachable, timeout, or non-200 status
        """
        body = self.build_request_body(messages)
        logger.debug(f"Streaming from {self.base_url}/api/chat")
        logger.debug(f"Model: {body['model']}, Messages: {len(messages)}, Options: {body['options']}")

        t0 = time.time()
        client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        try:
            request = client.build_request("POST", f"{self.base_url}/api/chat", json=body)
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            await client.aclose()
            elapsed = time.time() - t0
            logger.error(f"Request timed out after {elapsed:.1f}s (limit: {self.timeout}s)")
            raise TransportError(f"Ollama request timed out after {elapsed:.1f}s") from e
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(f"Request failed: {e}")
            raise TransportError(f"Ollama request failed: {e}") from e
        except asyncio.CancelledError:
            await client.aclose()
            raise

        # Capture error details before giving up on the stream
        if response.status_code != 200:
            try:
                error_text = (await response.aread()).decode("utf-8", errors="replace")[:1000]
            finally:
                await response.aclose()
                await client.aclose()
            logger.error(f"Ollama returned {response.status_code}: {error_text}")
            raise TransportError(
                f"Ollama returned {response.status_code}: {error_text}",
                status_code=response.status_code,
            )

        logger.debug(f"Headers received after {time.time() - t0:.2f}s")
        return ResponseByteSource(client, response, t0)

    def list_models(self) -> List[str]:
        """Names of the locally pulled models, from /api/tags."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=10)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Could not list Ollama models: {e}")
            raise TransportError(f"Ollama request failed: {e}") from e
        models = response.json().get("models", []) or []
        return [m["name"] for m in models if m.get("name")]
