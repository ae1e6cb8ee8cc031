"""
Generation Provider Abstract Interface

Defines the capability contract every AI provider adapter implements.
Recipes pick a provider per node (ai_model.provider); the executor only
talks to this interface, so providers can be swapped or faked in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Union
import logging

from ..exceptions import CapabilityNotSupportedError

logger = logging.getLogger(__name__)

TEXT = "text"
IMAGE = "image"
VIDEO = "video"


class GenerationProvider(ABC):
    """
    Abstract interface for generation providers (OpenAI, Anthropic, Gemini).

    All providers must implement generate_text(). Image and video generation
    are optional: the defaults raise CapabilityNotSupportedError.

    The `config` dict carries the node's model settings:
        {
            "model": "gemini-2.5-flash",
            "temperature": 0.7,
            "max_tokens": 2000,
            "system_prompt": "...",
            "response_format": "json",
            ...node parameters / ai_model.options
        }
    """

    name: str = "base"
    capabilities: tuple = (TEXT,)

    @abstractmethod
    async def generate_text(self, prompt: str, config: Dict[str, Any]) -> str:
        """
        Generate text for a prompt.

        Returns:
            Raw model text (JSON parsing is the caller's job)

        Raises:
            ProviderError: If the provider call fails
        """
        pass

    async def generate_image(self, prompt: str, config: Dict[str, Any]) -> Union[bytes, str]:
        """
        Generate one image.

        Returns:
            Image bytes, or a URL when the provider hosts the result
        """
        raise CapabilityNotSupportedError(self.name, "image generation")

    async def generate_video(self, prompt: str, config: Dict[str, Any]) -> str:
        """
        Generate one video.

        Returns:
            URL of the generated video
        """
        raise CapabilityNotSupportedError(self.name, "video generation")

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"
