"""
Provider routing — builds the configured provider adapter from the profile.

Usage:
    from inference import get_provider
    provider = get_provider(get_profile())
    text = await provider.ask([Message.user("hi")])
"""

import logging
from typing import Optional

import httpx

from inference.base import ConfigurationError, Provider, ProviderOptions
from inference.ollama import OllamaProvider
from inference.openai_compat import OpenAICompatProvider

logger = logging.getLogger(__name__)

# Map of backend type strings to adapter classes
_PROVIDER_CLASSES: dict[str, type[Provider]] = {
    "openai": OpenAICompatProvider,
    "ollama": OllamaProvider,
}


def options_from_profile(profile) -> ProviderOptions:
    inf = profile.inference
    return ProviderOptions(
        model=inf.model,
        temperature=inf.temperature,
        max_tokens=inf.max_tokens or None,
        timeout=inf.timeout,
    )


def get_provider(profile, transport: Optional[httpx.AsyncBaseTransport] = None) -> Provider:
    """Instantiate the provider named by ``profile.inference.type``.

    Raises ConfigurationError for an unknown type or missing credentials.
    """
    inf = profile.inference
    backend_type = inf.type.lower()
    provider_cls = _PROVIDER_CLASSES.get(backend_type)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unknown inference type '{inf.type}'. "
            f"Supported types: {', '.join(_PROVIDER_CLASSES)}"
        )

    options = options_from_profile(profile)
    if provider_cls is OpenAICompatProvider:
        provider = OpenAICompatProvider(
            base_url=inf.endpoint,
            api_key=inf.api_key,
            options=options,
            app_name=profile.system.name,
            transport=transport,
        )
    else:
        provider = provider_cls(base_url=inf.endpoint, options=options, transport=transport)

    logger.info("Registered provider (%s) at %s", backend_type, inf.endpoint)
    return provider
