"""
Provider Registry

Maps the `ai_model.provider` string of a node to a provider instance.
Supports aliases for provider names used by older recipes.
"""

import logging
from typing import Dict, List

from .base import GenerationProvider
from ..exceptions import ProviderError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Lookup table of configured generation providers.

    Example:
        >>> registry = ProviderRegistry()
        >>> registry.register(GeminiProvider(api_key="..."))
        >>> registry.get("google").name
        'gemini'
    """

    ALIASES: Dict[str, str] = {
        "google": "gemini",
        "claude": "anthropic",
        "gpt": "openai",
    }

    def __init__(self):
        self._providers: Dict[str, GenerationProvider] = {}

    def register(self, provider: GenerationProvider, name: str = None) -> None:
        key = (name or provider.name).lower()
        self._providers[key] = provider
        logger.debug(f"Registered provider '{key}': {provider!r}")

    def get(self, name: str) -> GenerationProvider:
        """
        Raises:
            ProviderError: If no provider is registered under name (or its alias)
        """
        key = (name or "").strip().lower()
        key = self.ALIASES.get(key, key)
        provider = self._providers.get(key)
        if provider is None:
            raise ProviderError(
                f"Provider '{name}' is not configured. "
                f"Available providers: {self.names()}",
                provider=name
            )
        return provider

    def names(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        key = (name or "").lower()
        return self.ALIASES.get(key, key) in self._providers


def build_default_registry(settings) -> ProviderRegistry:
    """Register every provider that has an API key configured."""
    registry = ProviderRegistry()

    if settings.openai_api_key:
        from .openai_provider import OpenAIProvider
        registry.register(OpenAIProvider(api_key=settings.openai_api_key))

    if settings.anthropic_api_key:
        from .anthropic_provider import AnthropicProvider
        registry.register(AnthropicProvider(api_key=settings.anthropic_api_key))

    if settings.gemini_api_key:
        from .gemini_provider import GeminiProvider
        registry.register(GeminiProvider(api_key=settings.gemini_api_key))

    if not registry.names():
        logger.warning("No generation providers configured (set OPENAI_API_KEY, ANTHROPIC_API_KEY or GEMINI_API_KEY)")
    else:
        logger.info(f"Generation providers: {registry.names()}")

    return registry
