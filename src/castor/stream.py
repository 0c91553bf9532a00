"""Consumer-facing wrapper around a provider's canonical event producer."""

from __future__ import annotations

from typing import TYPE_CHECKING

from castor.errors import InternalError
from castor.events import TerminalEvent

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from castor.events import AssistantMessageEvent
    from castor.types import AssistantMessage


class AssistantMessageEventStream:
    """Async iterator over canonical events for one streaming call.

    The producer is a single async generator that both reads the vendor
    stream and mutates the assistant message, so iterating this object is
    what drives the call. Exactly one terminal event (``done`` or ``error``)
    is delivered, after which iteration ends.

    Example:
        stream = provider.stream(model, context)
        async for event in stream:
            if event.type == "text_delta":
                print(event.delta, end="")
        message = await stream.result()
    """

    def __init__(
        self,
        producer: AsyncGenerator[AssistantMessageEvent, None],
        *,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._producer = producer
        self._on_close = on_close
        self._terminal: TerminalEvent | None = None
        self._closed = False

    def __aiter__(self) -> AssistantMessageEventStream:
        return self

    async def __anext__(self) -> AssistantMessageEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            event = await anext(self._producer)
        except StopAsyncIteration:
            await self.aclose()
            raise

        if self._terminal is not None:
            await self.aclose()
            raise InternalError(
                f"Provider emitted {event.type!r} after the terminal event"
            )
        if isinstance(event, TerminalEvent):
            self._terminal = event
        return event

    @property
    def terminal_event(self) -> TerminalEvent | None:
        """The terminal event, once it has been delivered."""
        return self._terminal

    async def result(self) -> AssistantMessage:
        """Drain remaining events and return the final assistant message."""
        async for _ in self:
            pass
        if self._terminal is None:
            raise InternalError("Stream ended without a terminal event")
        return self._terminal.message

    async def aclose(self) -> None:
        """Stop the producer and release the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._producer.aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()
