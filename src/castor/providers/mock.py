"""Mock provider for testing without API calls."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from castor.cost import calculate_cost
from castor.providers._anthropic_stream import AnthropicStreamDecoder
from castor.providers._streaming import drive_stream
from castor.providers.anthropic import build_params
from castor.providers.base import ProviderCapabilities
from castor.stream import AssistantMessageEventStream
from castor.types import StreamOptions, TextContent, UserMessage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from castor.config import Config
    from castor.cost import CostFunction
    from castor.types import Context, Model

    Script = list[dict[str, Any]] | Callable[[Context], list[dict[str, Any]]]


def text_turn(text: str, *, input_tokens: int = 10, output_tokens: int = 10) -> list[dict[str, Any]]:
    """Messages API records for a single text answer."""
    return [
        {
            "type": "message_start",
            "message": {
                "id": "msg_mock",
                "usage": {"input_tokens": input_tokens, "output_tokens": 1},
            },
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
        {"type": "content_block_stop", "index": 0},
        {
            "type": "message_delta",
            "delta": {"stop_reason": "end_turn"},
            "usage": {"output_tokens": output_tokens},
        },
        {"type": "message_stop"},
    ]


def _echo_script(context: Context) -> list[dict[str, Any]]:
    """Echo the last user text, so mock runs stay informative."""
    text = ""
    for message in reversed(context.messages):
        if not isinstance(message, UserMessage):
            continue
        if isinstance(message.content, str):
            text = message.content
        else:
            text = " ".join(
                p.text for p in message.content if isinstance(p, TextContent)
            )
        break
    return text_turn(f"echo: {text[:100]}")


class _ScriptedTransport:
    def __init__(self, records: list[dict[str, Any]]) -> None:
        self._records = records
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        for record in self._records:
            # Yield control between records, like a network stream.
            await asyncio.sleep(0)
            yield record

    async def close(self) -> None:
        self.closed = True


class MockProvider:
    """Replays scripted Messages API records through the real decoder.

    Requests are built exactly as for Anthropic, so configuration errors still
    surface; the last parameters are kept on ``last_params``.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        script: Script | None = None,
        cost_fn: CostFunction = calculate_cost,
    ) -> None:
        self.config = config
        self._script: Script = script if script is not None else _echo_script
        self._cost_fn = cost_fn
        self.last_params: dict[str, Any] | None = None

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            reasoning=True,
            signed_reasoning=True,
            images=True,
            prompt_caching=True,
        )

    def stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions | None = None,
    ) -> AssistantMessageEventStream:
        """Start a scripted streaming call."""
        options = options or StreamOptions()
        self.last_params = build_params(model, context, options)
        records = self._script(context) if callable(self._script) else self._script
        decoder = AnthropicStreamDecoder(model, cost_fn=self._cost_fn)

        async def open_transport() -> _ScriptedTransport:
            return _ScriptedTransport(list(records))

        return AssistantMessageEventStream(
            drive_stream(
                decoder,
                open_transport,
                provider=model.provider,
                options=options,
            )
        )

    async def aclose(self) -> None:
        """Nothing to release."""
