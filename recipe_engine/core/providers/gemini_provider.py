"""
Google Gemini Generation Provider (google-genai SDK)

- Text: models.generate_content
- Image: models.generate_content on an image model, bytes from inline_data
- Video: models.generate_videos, polling the long-running operation
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Union

from google import genai

from .base import GenerationProvider, IMAGE, TEXT, VIDEO
from ..exceptions import ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(GenerationProvider):
    """Gemini provider implementation."""

    name = "gemini"
    capabilities = (TEXT, IMAGE, VIDEO)

    DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
    DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
    DEFAULT_VIDEO_MODEL = "veo-3.0-generate-001"

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Any = None,
        video_poll_seconds: float = 10.0,
        video_timeout_seconds: float = 600.0
    ):
        self.client = client or genai.Client(api_key=api_key)
        self.video_poll_seconds = video_poll_seconds
        self.video_timeout_seconds = video_timeout_seconds
        logger.info("GeminiProvider initialized")

    @staticmethod
    def _request_config(config: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        request_config: Dict[str, Any] = {}
        if config.get("temperature") is not None:
            request_config["temperature"] = config["temperature"]
        if config.get("max_tokens"):
            request_config["max_output_tokens"] = config["max_tokens"]
        if config.get("system_prompt"):
            request_config["system_instruction"] = config["system_prompt"]
        if config.get("response_format") == "json":
            request_config["response_mime_type"] = "application/json"
        return request_config or None

    async def _call(self, operation: str, fn):
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, fn)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Gemini {operation} failed: {e}")
            raise ProviderError(f"Gemini API error: {e}", provider=self.name)

    async def generate_text(self, prompt: str, config: Dict[str, Any]) -> str:
        response = await self._call(
            "generate_text",
            lambda: self.client.models.generate_content(
                model=config.get("model") or self.DEFAULT_TEXT_MODEL,
                contents=prompt,
                config=self._request_config(config),
            )
        )
        return response.text or ""

    async def generate_image(self, prompt: str, config: Dict[str, Any]) -> Union[bytes, str]:
        response = await self._call(
            "generate_image",
            lambda: self.client.models.generate_content(
                model=config.get("model") or self.DEFAULT_IMAGE_MODEL,
                contents=prompt,
                config={"temperature": config["temperature"]} if config.get("temperature") is not None else None,
            )
        )

        for candidate in response.candidates or []:
            for part in candidate.content.parts or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return inline.data

        raise ProviderError("Gemini returned no image data", provider=self.name)

    async def generate_video(self, prompt: str, config: Dict[str, Any]) -> str:
        video_config: Dict[str, Any] = {}
        if config.get("aspect_ratio"):
            video_config["aspect_ratio"] = config["aspect_ratio"]
        if config.get("duration_seconds"):
            video_config["duration_seconds"] = config["duration_seconds"]

        def run() -> str:
            operation = self.client.models.generate_videos(
                model=config.get("model") or self.DEFAULT_VIDEO_MODEL,
                prompt=prompt,
                config=video_config or None,
            )
            deadline = time.monotonic() + self.video_timeout_seconds
            while not operation.done:
                if time.monotonic() > deadline:
                    raise ProviderError(
                        f"Gemini video generation did not finish within {self.video_timeout_seconds}s",
                        provider=self.name
                    )
                time.sleep(self.video_poll_seconds)
                operation = self.client.operations.get(operation)

            videos = getattr(operation.response, "generated_videos", None) or []
            if not videos or not videos[0].video.uri:
                raise ProviderError("Gemini returned no video", provider=self.name)
            return videos[0].video.uri

        return await self._call("generate_video", run)
