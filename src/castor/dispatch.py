"""Provider dispatch: route a model to its adapter and run one call."""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from castor.config import BEDROCK_PROVIDER, Config
from castor.errors import ConfigurationError
from castor.stream import AssistantMessageEventStream

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable

    from castor.events import AssistantMessageEvent
    from castor.providers.base import Provider
    from castor.types import AssistantMessage, Context, Model, StreamOptions

    ProviderFactory = Callable[[Config], Provider]

log = logging.getLogger(__name__)

MOCK_PROVIDER = "mock"


def _anthropic(config: Config) -> Provider:
    from castor.providers.anthropic import AnthropicProvider

    return AnthropicProvider(config)


def _anthropic_bedrock(config: Config) -> Provider:
    from castor.providers.anthropic import AnthropicBedrockProvider

    return AnthropicBedrockProvider(config)


def _mock(config: Config) -> Provider:
    from castor.providers.mock import MockProvider

    return MockProvider(config)


def _openai_compatible(config: Config) -> Provider:
    from castor.providers.openai import OpenAICompatibleProvider

    return OpenAICompatibleProvider(config)


class ProviderRegistry:
    """Maps provider ids to adapter factories.

    Ids without a registered factory use the generic OpenAI-compatible
    adapter.
    """

    def __init__(self, *, fallback: ProviderFactory = _openai_compatible) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._fallback = fallback

    def register(self, provider_id: str, factory: ProviderFactory) -> None:
        """Register *factory* for *provider_id*, replacing any previous one."""
        if not isinstance(provider_id, str) or not provider_id.strip():
            raise ConfigurationError("provider_id must be a non-empty string")
        self._factories[provider_id] = factory

    def registered(self) -> list[str]:
        return sorted(self._factories)

    def resolve(self, model: Model, config: Config) -> Provider:
        """Construct the adapter for *model* under *config*."""
        if config.use_mock:
            factory = self._factories.get(MOCK_PROVIDER, _mock)
            return factory(config)

        factory = self._factories.get(model.provider)
        if factory is None:
            log.debug(
                "No adapter registered for %r; using OpenAI-compatible fallback",
                model.provider,
            )
            factory = self._fallback
        return factory(config)


default_registry = ProviderRegistry()
default_registry.register("anthropic", _anthropic)
default_registry.register(BEDROCK_PROVIDER, _anthropic_bedrock)
default_registry.register(MOCK_PROVIDER, _mock)


def _resolve_config(
    model: Model, config: Config | None, options: StreamOptions | None
) -> Config:
    api_key = options.api_key if options is not None else None
    if config is None:
        return Config(provider=model.provider, api_key=api_key)
    if api_key:
        return dataclasses.replace(config, api_key=api_key)
    return config


def stream(
    model: Model,
    context: Context,
    options: StreamOptions | None = None,
    *,
    config: Config | None = None,
    registry: ProviderRegistry | None = None,
) -> AssistantMessageEventStream:
    """Start a streaming call with the adapter registered for ``model.provider``.

    Configuration problems raise ConfigurationError here, before anything is
    sent. The adapter is released when the returned stream closes.

    Example:
        events = castor.stream(model, Context(messages=[UserMessage("Hi")]))
        async for event in events:
            ...
    """
    resolved = _resolve_config(model, config, options)
    provider = (registry or default_registry).resolve(model, resolved)
    inner = provider.stream(model, context, options)

    async def events() -> AsyncGenerator[AssistantMessageEvent, None]:
        async for event in inner:
            yield event

    async def release() -> None:
        try:
            await inner.aclose()
        finally:
            await provider.aclose()

    return AssistantMessageEventStream(events(), on_close=release)


async def complete(
    model: Model,
    context: Context,
    options: StreamOptions | None = None,
    *,
    config: Config | None = None,
    registry: ProviderRegistry | None = None,
) -> AssistantMessage:
    """Run a call to completion and return the final assistant message.

    Failures do not raise: they are reported on the message through
    ``stop_reason`` and ``error_message``.
    """
    events = stream(model, context, options, config=config, registry=registry)
    return await events.result()
