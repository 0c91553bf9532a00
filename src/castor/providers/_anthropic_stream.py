"""Anthropic Messages stream decoder.

Consumes raw Messages API stream records (SDK event objects or plain dicts
with the same shape) and rebuilds them, in arrival order, into one canonical
``AssistantMessage`` plus the canonical event sequence.

Vendor record taxonomy::

    message_start
      content_block_start(index) -> content_block_delta(index)* -> content_block_stop(index)
      ...
    message_delta (stop_reason, cumulative usage)
    message_stop

Blocks are addressed by the vendor index only while open.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, assert_never

from castor.cost import calculate_cost, token_count
from castor.errors import TransportError
from castor.events import TextDeltaEvent, ThinkingDeltaEvent, ToolCallDeltaEvent
from castor.providers._decoder import BaseStreamDecoder, OpenBlock
from castor.providers._utils import get_field
from castor.types import TextContent, ThinkingContent, ToolCall

if TYPE_CHECKING:
    from castor.cost import CostFunction
    from castor.events import AssistantMessageEvent
    from castor.types import AssistantContent, Model, StopReason

log = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_API = "anthropic-messages"


class VendorEventKind(Enum):
    """Closed set of Messages API stream record types."""

    MESSAGE_START = "message_start"
    BLOCK_START = "content_block_start"
    BLOCK_DELTA = "content_block_delta"
    BLOCK_STOP = "content_block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    PING = "ping"
    ERROR = "error"


# TODO: "pause_turn" maps to "stop" because no canonical paused state exists;
# add a "paused" stop reason so callers can resume long server-tool turns.
_STOP_REASONS: dict[str, StopReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "tool_use": "toolUse",
    "refusal": "error",
}


def map_stop_reason(reason: str) -> StopReason:
    """Map a vendor stop reason to the canonical set; unknown reasons stop."""
    mapped = _STOP_REASONS.get(reason)
    if mapped is None:
        log.debug("Unrecognized stop_reason %r treated as 'stop'", reason)
        return "stop"
    return mapped


class AnthropicStreamDecoder(BaseStreamDecoder):
    """State machine turning Messages API records into canonical events."""

    def __init__(
        self,
        model: Model,
        *,
        api: str = ANTHROPIC_MESSAGES_API,
        cost_fn: CostFunction = calculate_cost,
    ) -> None:
        super().__init__(model, api=api, cost_fn=cost_fn)
        self._open: dict[int, OpenBlock] = {}

    def feed(self, raw: Any) -> list[AssistantMessageEvent]:
        """Apply one vendor record; return the canonical events it produced."""
        events = self._begin()

        raw_type = get_field(raw, "type")
        try:
            kind = VendorEventKind(raw_type)
        except ValueError:
            log.debug("Skipping unknown stream record type %r", raw_type)
            return events

        match kind:
            case VendorEventKind.MESSAGE_START:
                message = get_field(raw, "message")
                response_id = get_field(message, "id")
                if isinstance(response_id, str):
                    self._message.response_id = response_id
                self._apply_vendor_usage(get_field(message, "usage"))
            case VendorEventKind.BLOCK_START:
                events.extend(self._start_block(raw))
            case VendorEventKind.BLOCK_DELTA:
                events.extend(self._block_delta(raw))
            case VendorEventKind.BLOCK_STOP:
                slot = self._open.pop(get_field(raw, "index"), None)
                if slot is None:
                    log.debug("Stop for unknown or closed block index %r", get_field(raw, "index"))
                else:
                    events.append(self._close_block(slot))
            case VendorEventKind.MESSAGE_DELTA:
                stop_reason = get_field(get_field(raw, "delta"), "stop_reason")
                if isinstance(stop_reason, str) and stop_reason:
                    self._set_stop_reason(stop_reason, map_stop_reason(stop_reason))
                self._apply_vendor_usage(get_field(raw, "usage"))
            case VendorEventKind.MESSAGE_STOP | VendorEventKind.PING:
                pass
            case VendorEventKind.ERROR:
                error = get_field(raw, "error")
                error_type = get_field(error, "type") or "error"
                detail = get_field(error, "message") or "unknown stream error"
                raise TransportError(
                    f"{error_type}: {detail}",
                    retryable=error_type == "overloaded_error",
                    phase="stream",
                )
            case _:
                assert_never(kind)
        return events

    def _start_block(self, raw: Any) -> list[AssistantMessageEvent]:
        index = get_field(raw, "index")
        if index in self._open:
            raise TransportError(
                f"content_block_start for index {index} while it is still open",
                phase="stream",
            )

        block = get_field(raw, "content_block")
        block_type = get_field(block, "type")
        content: AssistantContent
        if block_type == "text":
            content = TextContent(text=get_field(block, "text") or "")
        elif block_type == "thinking":
            content = ThinkingContent(
                thinking=get_field(block, "thinking") or "",
                signature=get_field(block, "signature") or None,
            )
        elif block_type == "redacted_thinking":
            content = ThinkingContent(signature=get_field(block, "data"), redacted=True)
        elif block_type == "tool_use":
            content = ToolCall(
                id=get_field(block, "id") or "",
                name=get_field(block, "name") or "",
            )
        else:
            log.debug("Skipping unsupported content block type %r", block_type)
            return []

        slot, event = self._open_block(content)
        if isinstance(content, ToolCall):
            initial = get_field(block, "input")
            slot.initial_arguments = dict(initial) if isinstance(initial, dict) else {}
        self._open[index] = slot
        return [event]

    def _block_delta(self, raw: Any) -> list[AssistantMessageEvent]:
        index = get_field(raw, "index")
        slot = self._open.get(index)
        if slot is None:
            log.debug("Delta for unknown or closed block index %r", index)
            return []

        position = slot.position
        block = self._message.content[position]
        delta = get_field(raw, "delta")
        delta_type = get_field(delta, "type")

        if delta_type == "text_delta" and isinstance(block, TextContent):
            text = get_field(delta, "text") or ""
            block.text += text
            return [
                TextDeltaEvent(content_index=position, delta=text, partial=self._message)
            ]
        if delta_type == "thinking_delta" and isinstance(block, ThinkingContent):
            thinking = get_field(delta, "thinking") or ""
            block.thinking += thinking
            return [
                ThinkingDeltaEvent(
                    content_index=position, delta=thinking, partial=self._message
                )
            ]
        if delta_type == "input_json_delta" and isinstance(block, ToolCall):
            fragment = get_field(delta, "partial_json") or ""
            slot.fragments.append(fragment)
            return [
                ToolCallDeltaEvent(
                    content_index=position, delta=fragment, partial=self._message
                )
            ]
        if delta_type == "signature_delta" and isinstance(block, ThinkingContent):
            # Metadata only: no canonical event.
            block.signature = (block.signature or "") + (
                get_field(delta, "signature") or ""
            )
            return []

        log.debug(
            "Ignoring %r delta for %s block at index %r",
            delta_type,
            type(block).__name__,
            index,
        )
        return []

    def _apply_vendor_usage(self, raw_usage: Any) -> None:
        if raw_usage is None:
            return
        self._apply_usage(
            input=token_count(raw_usage, "input_tokens"),
            output=token_count(raw_usage, "output_tokens"),
            cache_read=token_count(raw_usage, "cache_read_input_tokens"),
            cache_write=token_count(raw_usage, "cache_creation_input_tokens"),
        )

    def _clear_open_blocks(self) -> None:
        self._open.clear()
