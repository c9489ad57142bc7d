"""
OpenAI-compatible provider adapter.

Covers any server that implements the /chat/completions contract:
  - OpenRouter (the default endpoint; requires an API key)
  - LM Studio, vLLM, and other local OpenAI-style servers
"""

import logging
from typing import AsyncIterator, Optional

import httpx

from inference.base import (
    ChatMessage, ConfigurationError, Provider, ProviderError, ProviderOptions,
)
from inference.framing import SSE_DONE, iter_lines, openai_delta, sse_data
from invocation.models import Role

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}


def _is_local(base_url: str) -> bool:
    try:
        return httpx.URL(base_url).host in _LOCAL_HOSTS
    except httpx.InvalidURL:
        return False


class OpenAICompatProvider(Provider):
    """Provider for OpenAI-compatible chat completion APIs."""

    # The tool role needs a tool_call_id on these APIs; replay as user text.
    role_map = {Role.TOOL: "user"}

    def __init__(self, base_url: str = OPENROUTER_BASE_URL, api_key: str = "",
                 options: Optional[ProviderOptions] = None,
                 require_api_key: Optional[bool] = None,
                 app_name: str = "",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, options, transport)
        if require_api_key is None:
            require_api_key = not _is_local(self.base_url)
        if require_api_key and not api_key:
            raise ConfigurationError(
                f"An API key is required for {self.base_url} "
                "(set DOLOOP_API_KEY or inference.api_key)"
            )
        self.api_key = api_key
        self.app_name = app_name
        logger.info("OpenAI-compatible provider at %s (model=%s)",
                    self.base_url, self.options.model)

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.app_name:
            headers["X-Title"] = self.app_name
        return headers

    def _payload(self, messages: list[ChatMessage], opts: ProviderOptions,
                 stream: bool) -> dict:
        payload = {
            "model": opts.model,
            "messages": self.serialize(messages),
            "temperature": opts.temperature,
            "stream": stream,
        }
        if opts.max_tokens:
            payload["max_tokens"] = opts.max_tokens
        if opts.top_p is not None:
            payload["top_p"] = opts.top_p
        if opts.user:
            payload["user"] = opts.user
        return payload

    async def ask(self, messages: list[ChatMessage],
                  options: Optional[ProviderOptions] = None) -> str:
        """Non-streaming chat completion via /chat/completions."""
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
            raise ProviderError(f"Provider error: {data['error']}")
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    async def ask_stream(self, messages: list[ChatMessage],
                         options: Optional[ProviderOptions] = None) -> AsyncIterator[str]:
        """Streaming chat completion via /chat/completions with SSE."""
        opts = self._resolve(options)
        payload = self._payload(messages, opts, stream=True)
        try:
            async with self._client(opts) as client:
                async with client.stream("POST", self.url, json=payload) as resp:
                    await self._raise_for_status(resp)
                    async for line in iter_lines(resp):
                        data = sse_data(line)
                        if data is None:
                            continue
                        if data.strip() == SSE_DONE:
                            return
                        content = openai_delta(data)
                        if content:
                            yield content
        except httpx.HTTPError as e:
            raise self._wrap_transport_error(e) from e
