"""
Abstract base class for all provider adapters.

Every provider (OpenAI-compatible, Ollama) implements this interface so the
orchestrator can treat them interchangeably: a one-shot ``ask`` and an
incremental ``ask_stream`` over the same message list.
"""

import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

import httpx

from invocation.models import Message, Role

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Network, HTTP or API failure talking to a provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(Exception):
    """A provider cannot be built from the given configuration."""
    pass


@dataclass
class ProviderOptions:
    model: str = ""
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    timeout: float = 60.0
    top_p: Optional[float] = None
    user: Optional[str] = None


ChatMessage = Union[Message, dict]


class Provider(ABC):
    """Abstract chat provider.

    Concrete adapters implement the HTTP-specific details for their server
    type. ``transport`` is handed to every ``httpx.AsyncClient`` the adapter
    opens, which lets tests substitute ``httpx.MockTransport``.
    """

    # Roles the remote API does not understand, mapped to ones it does
    role_map: dict[Role, str] = {}

    def __init__(self, base_url: str, options: Optional[ProviderOptions] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.options = options or ProviderOptions()
        self._transport = transport

    def update_options(self, **partial) -> ProviderOptions:
        """Merge ``partial`` into the default options for later calls."""
        self.options = dataclasses.replace(self.options, **partial)
        return self.options

    def _resolve(self, options: Optional[ProviderOptions]) -> ProviderOptions:
        return options or self.options

    def _client(self, options: ProviderOptions) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=options.timeout,
            transport=self._transport,
            headers=self._headers(),
        )

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def serialize(self, messages: list[ChatMessage]) -> list[dict]:
        """Convert messages to the wire format, applying ``role_map``."""
        out = []
        for m in messages:
            if isinstance(m, dict):
                out.append({"role": m["role"], "content": m["content"]})
                continue
            role = self.role_map.get(m.role, m.role.value)
            out.append({"role": role, "content": m.content})
        return out

    async def _raise_for_status(self, resp: httpx.Response):
        if resp.status_code < 400:
            return
        await resp.aread()
        detail = resp.text[:500]
        logger.error("%s returned HTTP %d: %s", type(self).__name__, resp.status_code, detail)
        raise ProviderError(
            f"HTTP {resp.status_code} from {self.base_url}: {detail}",
            status_code=resp.status_code,
        )

    def _wrap_transport_error(self, e: httpx.HTTPError) -> ProviderError:
        if isinstance(e, httpx.TimeoutException):
            logger.error("%s timed out: %s", type(self).__name__, e)
            return ProviderError(f"Request to {self.base_url} timed out")
        logger.error("%s request failed: %s", type(self).__name__, e)
        return ProviderError(f"Request to {self.base_url} failed: {e}")

    # ── Chat ──

    @abstractmethod
    async def ask(self, messages: list[ChatMessage],
                  options: Optional[ProviderOptions] = None) -> str:
        """Non-streaming completion. Returns the assistant text."""
        ...

    @abstractmethod
    def ask_stream(self, messages: list[ChatMessage],
                   options: Optional[ProviderOptions] = None) -> AsyncIterator[str]:
        """Streaming completion. Yields content deltas in order.

        Closing the iterator closes the underlying HTTP stream.
        """
        ...
