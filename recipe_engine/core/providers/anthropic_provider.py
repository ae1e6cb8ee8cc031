"""
Anthropic Generation Provider

Text only (Messages API). Image/video requests raise CapabilityNotSupportedError.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import anthropic

from .base import GenerationProvider, TEXT
from ..exceptions import ProviderError

logger = logging.getLogger(__name__)


class AnthropicProvider(GenerationProvider):
    """Anthropic provider implementation."""

    name = "anthropic"
    capabilities = (TEXT,)

    DEFAULT_MODEL = "claude-sonnet-4-5"
    # Messages API requires max_tokens
    DEFAULT_MAX_TOKENS = 4096

    def __init__(self, api_key: Optional[str] = None, client: Any = None):
        self.client = client or anthropic.Anthropic(api_key=api_key)
        logger.info("AnthropicProvider initialized")

    async def generate_text(self, prompt: str, config: Dict[str, Any]) -> str:
        api_params: Dict[str, Any] = {
            "model": config.get("model") or self.DEFAULT_MODEL,
            "max_tokens": config.get("max_tokens") or self.DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        if config.get("temperature") is not None:
            api_params["temperature"] = config["temperature"]
        if config.get("system_prompt"):
            api_params["system"] = config["system_prompt"]

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(**api_params)
            )
        except Exception as e:
            logger.error(f"Anthropic generate_text failed: {e}")
            raise ProviderError(f"Anthropic API error: {e}", provider=self.name)

        # Extract text from response
        text_content = ""
        for block in response.content:
            if block.type == "text":
                text_content += block.text

        return text_content
