"""Provider protocol: minimal interface for streaming adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from castor.events import AssistantMessageEvent, DoneEvent, ErrorEvent
    from castor.stream import AssistantMessageEventStream
    from castor.types import AssistantMessage, Context, Model, StreamOptions


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    reasoning: bool = False
    signed_reasoning: bool = False
    images: bool = False
    prompt_caching: bool = False


@runtime_checkable
class Provider(Protocol):
    """One vendor's adapter façade.

    ``stream`` validates and builds the request before returning, so
    configuration errors surface to the caller synchronously. Everything
    after that is reported through the returned event stream.
    """

    def stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions | None = None,
    ) -> AssistantMessageEventStream:
        """Start a streaming call."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities of this adapter."""
        ...


class StreamDecoder(Protocol):
    """Incremental vendor-event to canonical-event translator."""

    @property
    def message(self) -> AssistantMessage:
        """The assistant message being built."""
        ...

    def feed(self, raw: Any) -> list[AssistantMessageEvent]:
        """Apply one vendor record; return the canonical events it produced."""
        ...

    def finish(self, *, aborted: bool) -> DoneEvent:
        """Handle end-of-stream. Raises when the call did not end cleanly."""
        ...

    def fail(self, exc: BaseException, *, aborted: bool) -> ErrorEvent:
        """Move to the Errored state and build the terminal error event."""
        ...
