"""Shared state machine for provider stream decoders.

A decoder owns exactly one ``AssistantMessage`` and is driven by a single
task. Subclasses translate vendor records; this base handles the lifecycle
(``NOT_STARTED -> STREAMING -> DONE | ABORTED | ERRORED``), open-block
bookkeeping, block finalization and usage accounting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from castor._json import parse_partial_json
from castor.cost import apply_usage, calculate_cost
from castor.errors import AbortedError, CastorError, InternalError, TransportError
from castor.events import (
    DoneEvent,
    ErrorEvent,
    StartEvent,
    TextEndEvent,
    TextStartEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from castor.types import AssistantMessage, TextContent, ThinkingContent, ToolCall

if TYPE_CHECKING:
    from castor.cost import CostFunction
    from castor.events import AssistantMessageEvent
    from castor.types import AssistantContent, Model, StopReason


class DecoderState(Enum):
    NOT_STARTED = "not_started"
    STREAMING = "streaming"
    DONE = "done"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_STATES = frozenset(
    {DecoderState.DONE, DecoderState.ABORTED, DecoderState.ERRORED}
)


@dataclass
class OpenBlock:
    """Transient bookkeeping for a block between start and stop.

    Lives beside the content block, never on it, so nothing transient can
    leak into the finalized message.
    """

    position: int
    fragments: list[str] = field(default_factory=list)
    initial_arguments: dict[str, Any] = field(default_factory=dict)


class BaseStreamDecoder:
    """Lifecycle and block handling shared by all vendor decoders."""

    def __init__(
        self,
        model: Model,
        *,
        api: str,
        cost_fn: CostFunction = calculate_cost,
    ) -> None:
        self._model = model
        self._cost_fn = cost_fn
        self._message = AssistantMessage(
            provider=model.provider,
            model=model.id,
            api=model.api or api,
        )
        self._vendor_stop_reason: str | None = None
        self.state = DecoderState.NOT_STARTED

    @property
    def message(self) -> AssistantMessage:
        return self._message

    def _begin(self) -> list[AssistantMessageEvent]:
        """Guard against use after termination; emit ``start`` on first record."""
        if self.state in TERMINAL_STATES:
            raise InternalError(f"Vendor record received in state {self.state.value}")
        if self.state is DecoderState.NOT_STARTED:
            self.state = DecoderState.STREAMING
            return [StartEvent(partial=self._message)]
        return []

    def _open_block(self, content: AssistantContent) -> tuple[OpenBlock, AssistantMessageEvent]:
        position = len(self._message.content)
        self._message.content.append(content)
        event: AssistantMessageEvent
        if isinstance(content, TextContent):
            event = TextStartEvent(content_index=position, partial=self._message)
        elif isinstance(content, ThinkingContent):
            event = ThinkingStartEvent(content_index=position, partial=self._message)
        else:
            event = ToolCallStartEvent(content_index=position, partial=self._message)
        return OpenBlock(position=position), event

    def _close_block(self, slot: OpenBlock) -> AssistantMessageEvent:
        """Finalize the block tracked by *slot* and build its end event."""
        position = slot.position
        content = self._message.content
        block = content[position]

        if isinstance(block, TextContent):
            return TextEndEvent(
                content_index=position, content=block.text, partial=self._message
            )
        if isinstance(block, ThinkingContent):
            if not block.redacted and not (block.signature or "").strip():
                # Unsigned reasoning cannot be replayed as reasoning.
                content[position] = TextContent(text=block.thinking)
            return ThinkingEndEvent(
                content_index=position, content=block.thinking, partial=self._message
            )
        # Tool call: arguments are produced exactly once, here.
        raw_arguments = "".join(slot.fragments)
        if raw_arguments:
            block.arguments = parse_partial_json(raw_arguments)
        else:
            block.arguments = slot.initial_arguments
        return ToolCallEndEvent(
            content_index=position, tool_call=block, partial=self._message
        )

    def _set_stop_reason(self, vendor_reason: str, mapped: StopReason) -> None:
        self._vendor_stop_reason = vendor_reason
        self._message.stop_reason = mapped

    def _apply_usage(
        self,
        *,
        input: int | None = None,  # noqa: A002
        output: int | None = None,
        cache_read: int | None = None,
        cache_write: int | None = None,
    ) -> None:
        apply_usage(
            self._message,
            self._model,
            input=input,
            output=output,
            cache_read=cache_read,
            cache_write=cache_write,
            cost_fn=self._cost_fn,
        )

    def _check_complete(self) -> None:
        """Raise if the vendor stream ended in the middle of the turn."""

    def _clear_open_blocks(self) -> None:
        """Drop transient open-block bookkeeping."""

    def finish(self, *, aborted: bool) -> DoneEvent:
        """Handle end-of-stream.

        Raises AbortedError when the caller cancelled and CastorError when the
        provider ended the turn abnormally; the driver routes both into
        ``fail``.
        """
        if self.state in TERMINAL_STATES:
            raise InternalError(f"finish() called in state {self.state.value}")
        if aborted:
            raise AbortedError()
        if self.state is DecoderState.NOT_STARTED:
            raise TransportError("Provider stream ended without any events", phase="stream")
        self._check_complete()
        stop_reason = self._message.stop_reason
        if stop_reason == "error" or stop_reason == "aborted":
            raise CastorError(
                f"Provider ended the turn with stop reason {self._vendor_stop_reason!r}"
            )

        self._clear_open_blocks()
        self.state = DecoderState.DONE
        return DoneEvent(reason=stop_reason, message=self._message)

    def fail(self, exc: BaseException, *, aborted: bool) -> ErrorEvent:
        """Move to a failed terminal state and build the terminal error event."""
        if self.state in TERMINAL_STATES:
            raise InternalError(f"fail() called in state {self.state.value}")

        # Open blocks stay as they are; only the bookkeeping goes.
        self._clear_open_blocks()
        reason: StopReason = "aborted" if aborted else "error"
        self._message.stop_reason = reason
        self._message.error_message = str(exc) or type(exc).__name__
        self.state = DecoderState.ABORTED if aborted else DecoderState.ERRORED
        return ErrorEvent(reason=reason, message=self._message)
