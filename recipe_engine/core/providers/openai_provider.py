"""
OpenAI Generation Provider

Text via Chat Completions, images via the Images API.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, Optional, Union

import openai

from .base import GenerationProvider, IMAGE, TEXT
from ..exceptions import ProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(GenerationProvider):
    """OpenAI provider implementation."""

    name = "openai"
    capabilities = (TEXT, IMAGE)

    DEFAULT_TEXT_MODEL = "gpt-4o-mini"
    DEFAULT_IMAGE_MODEL = "gpt-image-1"

    def __init__(self, api_key: Optional[str] = None, client: Any = None):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY in the SDK)
            client: Pre-built client (tests)
        """
        self.client = client or openai.OpenAI(api_key=api_key)
        logger.info("OpenAIProvider initialized")

    async def generate_text(self, prompt: str, config: Dict[str, Any]) -> str:
        messages = []
        if config.get("system_prompt"):
            messages.append({"role": "system", "content": config["system_prompt"]})
        messages.append({"role": "user", "content": prompt})

        api_params: Dict[str, Any] = {
            "model": config.get("model") or self.DEFAULT_TEXT_MODEL,
            "messages": messages,
        }
        if config.get("temperature") is not None:
            api_params["temperature"] = config["temperature"]
        if config.get("max_tokens"):
            api_params["max_tokens"] = config["max_tokens"]
        if config.get("response_format") == "json":
            api_params["response_format"] = {"type": "json_object"}

        try:
            # Sync SDK call runs in the default executor
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.chat.completions.create(**api_params)
            )
        except Exception as e:
            logger.error(f"OpenAI generate_text failed: {e}")
            raise ProviderError(f"OpenAI API error: {e}", provider=self.name)

        return response.choices[0].message.content or ""

    async def generate_image(self, prompt: str, config: Dict[str, Any]) -> Union[bytes, str]:
        api_params: Dict[str, Any] = {
            "model": config.get("model") or self.DEFAULT_IMAGE_MODEL,
            "prompt": prompt,
            "n": 1,
        }
        if config.get("size") or config.get("resolution"):
            api_params["size"] = config.get("size") or config.get("resolution")

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.images.generate(**api_params)
            )
        except Exception as e:
            logger.error(f"OpenAI generate_image failed: {e}")
            raise ProviderError(f"OpenAI API error: {e}", provider=self.name)

        image = response.data[0]
        if getattr(image, "b64_json", None):
            return base64.b64decode(image.b64_json)
        if getattr(image, "url", None):
            return image.url
        raise ProviderError("OpenAI returned no image data", provider=self.name)
