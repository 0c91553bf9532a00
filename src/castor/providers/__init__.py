"""Provider implementations."""

from .anthropic import AnthropicBedrockProvider, AnthropicProvider
from .base import Provider, ProviderCapabilities
from .mock import MockProvider
from .openai import OpenAICompatibleProvider

__all__ = [
    "AnthropicBedrockProvider",
    "AnthropicProvider",
    "MockProvider",
    "OpenAICompatibleProvider",
    "Provider",
    "ProviderCapabilities",
]
