"""
Generation providers (capability adapters) and their registry.
"""

from .base import GenerationProvider, TEXT, IMAGE, VIDEO
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    "GenerationProvider",
    "ProviderRegistry",
    "build_default_registry",
    "TEXT",
    "IMAGE",
    "VIDEO",
]
