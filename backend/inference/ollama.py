"""
Ollama provider adapter.

Uses Ollama's native /api/chat endpoint. Streaming responses are
newline-delimited JSON objects, each carrying a partial ``message`` and
a ``done`` flag.
"""

import logging
from typing import AsyncIterator, Optional

import httpx

from inference.base import ChatMessage, Provider, ProviderError, ProviderOptions
from inference.framing import iter_lines, ndjson_content

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"


class OllamaProvider(Provider):
    """Provider for a local Ollama server."""

    def __init__(self, base_url: str = OLLAMA_BASE_URL,
                 options: Optional[ProviderOptions] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, options, transport)
        logger.info("Ollama provider at %s (model=%s)", self.base_url, self.options.model)

    @property
    def url(self) -> str:
        return f"{self.base_url}/api/chat"

    def _payload(self, messages: list[ChatMessage], opts: ProviderOptions,
                 stream: bool) -> dict:
        model_options = {"temperature": opts.temperature}
        if opts.max_tokens:
            model_options["num_predict"] = opts.max_tokens
        if opts.top_p is not None:
            model_options["top_p"] = opts.top_p
        return {
            "model": opts.model,
            "messages": self.serialize(messages),
            "stream": stream,
            "options": model_options,
        }

    async def ask(self, messages: list[ChatMessage],
                  options: Optional[ProviderOptions] = None) -> str:
        """Non-streaming chat completion via /api/chat."""
        opts = self._resolve(options)
        payload = self._payload(messages, opts, stream=False)
        try:
            async with self._client(opts) as client:
                resp = await client.post(self.url, json=payload)
                await self._raise_for_status(resp)
                data = resp.json()
        except httpx.HTTPError as e:
            raise self._wrap_transport_error(e) from e
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from {self.base_url}: {e}") from e

        if "error" in data:
            raise ProviderError(f"Ollama error: {data['error']}")
        return (data.get("message") or {}).get("content") or ""

    async def ask_stream(self, messages: list[ChatMessage],
                         options: Optional[ProviderOptions] = None) -> AsyncIterator[str]:
        """Streaming chat completion via /api/chat with stream=true."""
        opts = self._resolve(options)
        payload = self._payload(messages, opts, stream=True)
        try:
            async with self._client(opts) as client:
                async with client.stream("POST", self.url, json=payload) as resp:
                    await self._raise_for_status(resp)
                    async for line in iter_lines(resp):
                        content, done = ndjson_content(line)
                        if content:
                            yield content
                        if done:
                            return
        except httpx.HTTPError as e:
            raise self._wrap_transport_error(e) from e
