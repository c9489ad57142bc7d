"""
Inference package — provider adapters for chat-completion backends.

Provides adapters for OpenAI-compatible APIs and Ollama behind a single
``Provider`` interface, plus a router that builds the configured one.

Quick start:
    from inference import get_provider
    provider = get_provider(get_profile())
    text = await provider.ask(messages)
"""

from inference.base import ConfigurationError, Provider, ProviderError, ProviderOptions
from inference.ollama import OllamaProvider
from inference.openai_compat import OpenAICompatProvider
from inference.router import get_provider

__all__ = [
    "Provider",
    "ProviderError",
    "ProviderOptions",
    "ConfigurationError",
    "OpenAICompatProvider",
    "OllamaProvider",
    "get_provider",
]
