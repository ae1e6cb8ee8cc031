"""
Tests for the provider adapters and the registry

SDK clients are replaced with MagicMock; no network calls are made.
"""

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from recipe_engine.config import Settings
from recipe_engine.core.exceptions import CapabilityNotSupportedError, ProviderError
from recipe_engine.core.providers import ProviderRegistry, build_default_registry
from recipe_engine.core.providers.anthropic_provider import AnthropicProvider
from recipe_engine.core.providers.gemini_provider import GeminiProvider
from recipe_engine.core.providers.openai_provider import OpenAIProvider

from tests.conftest import FakeProvider


# =============================================================================
# Registry
# =============================================================================

@pytest.mark.unit
def test_registry_aliases():
    registry = ProviderRegistry()
    provider = FakeProvider()
    registry.register(provider, name="gemini")

    assert registry.get("google") is provider
    assert registry.get("Gemini") is provider
    assert "google" in registry
    assert registry.names() == ["gemini"]


@pytest.mark.unit
def test_registry_unknown_provider():
    with pytest.raises(ProviderError, match="Provider 'openai' is not configured"):
        ProviderRegistry().get("openai")


@pytest.mark.unit
def test_default_registry_without_keys_is_empty():
    assert build_default_registry(Settings()).names() == []


# =============================================================================
# OpenAI
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_openai_text_request():
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content='{"ok": true}'))]
    )
    provider = OpenAIProvider(client=client)

    text = await provider.generate_text(
        "hello", {"model": "gpt-4o", "system_prompt": "sys", "response_format": "json", "max_tokens": 50}
    )

    assert text == '{"ok": true}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["max_tokens"] == 50


@pytest.mark.unit
@pytest.mark.asyncio
async def test_openai_image_base64_decoded():
    client = MagicMock()
    client.images.generate.return_value = SimpleNamespace(
        data=[SimpleNamespace(b64_json=base64.b64encode(b"\x89PNGdata").decode(), url=None)]
    )
    provider = OpenAIProvider(client=client)

    assert await provider.generate_image("cat", {}) == b"\x89PNGdata"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_openai_errors_wrapped():
    client = MagicMock()
    client.chat.completions.create.side_effect = RuntimeError("rate limited")
    provider = OpenAIProvider(client=client)

    with pytest.raises(ProviderError, match="rate limited"):
        await provider.generate_text("hello", {})

    with pytest.raises(CapabilityNotSupportedError):
        await provider.generate_video("waves", {})


# =============================================================================
# Anthropic
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_anthropic_text_joins_blocks():
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(content=[
        SimpleNamespace(type="text", text="Hello "),
        SimpleNamespace(type="tool_use", text=None),
        SimpleNamespace(type="text", text="world"),
    ])
    provider = AnthropicProvider(client=client)

    text = await provider.generate_text("hi", {"system_prompt": "sys"})

    assert text == "Hello world"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == "sys"
    assert kwargs["max_tokens"] == AnthropicProvider.DEFAULT_MAX_TOKENS


@pytest.mark.unit
@pytest.mark.asyncio
async def test_anthropic_has_no_image_capability():
    provider = AnthropicProvider(client=MagicMock())
    with pytest.raises(CapabilityNotSupportedError, match="does not support image generation"):
        await provider.generate_image("cat", {})


# =============================================================================
# Gemini
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_gemini_text_config():
    client = MagicMock()
    client.models.generate_content.return_value = SimpleNamespace(text="hola")
    provider = GeminiProvider(client=client)

    text = await provider.generate_text("hi", {"temperature": 0.3, "response_format": "json"})

    assert text == "hola"
    kwargs = client.models.generate_content.call_args.kwargs
    assert kwargs["model"] == GeminiProvider.DEFAULT_TEXT_MODEL
    assert kwargs["config"] == {"temperature": 0.3, "response_mime_type": "application/json"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_gemini_image_inline_data():
    part = SimpleNamespace(inline_data=SimpleNamespace(data=b"\x89PNG..."))
    client = MagicMock()
    client.models.generate_content.return_value = SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(inline_data=None), part]))]
    )
    provider = GeminiProvider(client=client)

    assert await provider.generate_image("cat", {}) == b"\x89PNG..."


@pytest.mark.unit
@pytest.mark.asyncio
async def test_gemini_image_without_data():
    client = MagicMock()
    client.models.generate_content.return_value = SimpleNamespace(candidates=[])
    provider = GeminiProvider(client=client)

    with pytest.raises(ProviderError, match="no image data"):
        await provider.generate_image("cat", {})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_gemini_video_polls_operation():
    pending = SimpleNamespace(done=False)
    finished = SimpleNamespace(
        done=True,
        response=SimpleNamespace(generated_videos=[SimpleNamespace(video=SimpleNamespace(uri="gs://v.mp4"))]),
    )
    client = MagicMock()
    client.models.generate_videos.return_value = pending
    client.operations.get.return_value = finished
    provider = GeminiProvider(client=client, video_poll_seconds=0)

    url = await provider.generate_video("waves", {"aspect_ratio": "16:9"})

    assert url == "gs://v.mp4"
    assert client.operations.get.call_count == 1
    assert client.models.generate_videos.call_args.kwargs["config"] == {"aspect_ratio": "16:9"}
