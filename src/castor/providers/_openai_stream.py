"""Chat Completions stream decoder for OpenAI-compatible endpoints.

Chunks carry no block boundaries: a block stays open until a chunk of a
different kind arrives, or until ``finish_reason`` closes the turn. Reasoning
deltas (``reasoning_content``/``reasoning``) are never signed, so they are
finalized as text.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from castor.cost import calculate_cost, token_count
from castor.errors import TransportError
from castor.events import TextDeltaEvent, ThinkingDeltaEvent, ToolCallDeltaEvent
from castor.providers._decoder import BaseStreamDecoder
from castor.providers._utils import get_field
from castor.types import TextContent, ThinkingContent, ToolCall

if TYPE_CHECKING:
    from castor.cost import CostFunction
    from castor.events import AssistantMessageEvent
    from castor.providers._decoder import OpenBlock
    from castor.types import AssistantContent, Model, StopReason

log = logging.getLogger(__name__)

_B = TypeVar("_B", TextContent, ThinkingContent, ToolCall)

OPENAI_COMPLETIONS_API = "openai-completions"

_FINISH_REASONS: dict[str, StopReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "toolUse",
    "function_call": "toolUse",
    "content_filter": "error",
}


def map_finish_reason(reason: str) -> StopReason:
    """Map a ``finish_reason`` to the canonical set; unknown reasons stop."""
    mapped = _FINISH_REASONS.get(reason)
    if mapped is None:
        log.debug("Unrecognized finish_reason %r treated as 'stop'", reason)
        return "stop"
    return mapped


class OpenAIStreamDecoder(BaseStreamDecoder):
    """State machine turning chat completion chunks into canonical events."""

    def __init__(
        self,
        model: Model,
        *,
        api: str = OPENAI_COMPLETIONS_API,
        cost_fn: CostFunction = calculate_cost,
    ) -> None:
        super().__init__(model, api=api, cost_fn=cost_fn)
        self._current: OpenBlock | None = None
        self._current_tool_index: int | None = None
        self._finished = False

    def feed(self, raw: Any) -> list[AssistantMessageEvent]:
        """Apply one chunk; return the canonical events it produced."""
        events = self._begin()

        response_id = get_field(raw, "id")
        if isinstance(response_id, str) and self._message.response_id is None:
            self._message.response_id = response_id

        error = get_field(raw, "error")
        if error is not None:
            detail = get_field(error, "message") or "unknown stream error"
            raise TransportError(str(detail), phase="stream")

        choices = get_field(raw, "choices") or []
        if choices:
            # Only n=1 is requested; extra choices are ignored.
            choice = choices[0]
            delta = get_field(choice, "delta")
            if delta is not None:
                events.extend(self._apply_delta(delta))
            finish_reason = get_field(choice, "finish_reason")
            if isinstance(finish_reason, str) and finish_reason:
                events.extend(self._close_current())
                self._set_stop_reason(finish_reason, map_finish_reason(finish_reason))
                self._finished = True

        usage = get_field(raw, "usage")
        if usage is not None:
            self._apply_vendor_usage(usage)
        return events

    def _apply_delta(self, delta: Any) -> list[AssistantMessageEvent]:
        events: list[AssistantMessageEvent] = []
        reasoning = get_field(delta, "reasoning_content") or get_field(delta, "reasoning")
        if isinstance(reasoning, str) and reasoning:
            events.extend(self._append_thinking(reasoning))
        text = get_field(delta, "content")
        if isinstance(text, str) and text:
            events.extend(self._append_text(text))
        for tool_delta in get_field(delta, "tool_calls") or []:
            events.extend(self._apply_tool_delta(tool_delta))
        return events

    def _current_of(self, kind: type[_B]) -> tuple[OpenBlock, _B] | None:
        if self._current is None:
            return None
        block = self._message.content[self._current.position]
        if isinstance(block, kind):
            return self._current, block
        return None

    def _switch_to(
        self, content: AssistantContent
    ) -> tuple[OpenBlock, list[AssistantMessageEvent]]:
        events = self._close_current()
        slot, event = self._open_block(content)
        self._current = slot
        events.append(event)
        return slot, events

    def _append_text(self, text: str) -> list[AssistantMessageEvent]:
        current = self._current_of(TextContent)
        if current is None:
            block = TextContent()
            slot, events = self._switch_to(block)
        else:
            (slot, block), events = current, []
        block.text += text
        events.append(
            TextDeltaEvent(content_index=slot.position, delta=text, partial=self._message)
        )
        return events

    def _append_thinking(self, thinking: str) -> list[AssistantMessageEvent]:
        current = self._current_of(ThinkingContent)
        if current is None:
            block = ThinkingContent()
            slot, events = self._switch_to(block)
        else:
            (slot, block), events = current, []
        block.thinking += thinking
        events.append(
            ThinkingDeltaEvent(
                content_index=slot.position, delta=thinking, partial=self._message
            )
        )
        return events

    def _apply_tool_delta(self, tool_delta: Any) -> list[AssistantMessageEvent]:
        index = get_field(tool_delta, "index")
        call_id = get_field(tool_delta, "id")
        function = get_field(tool_delta, "function")
        name = get_field(function, "name") if function is not None else None
        fragment = get_field(function, "arguments") if function is not None else None

        current = self._current_of(ToolCall)
        if (
            current is not None
            and index == self._current_tool_index
            and not (call_id and current[1].id and call_id != current[1].id)
        ):
            (slot, block), events = current, []
        else:
            block = ToolCall(id=call_id or "", name=name or "")
            slot, events = self._switch_to(block)
            self._current_tool_index = index
        if call_id and not block.id:
            block.id = call_id
        if name and not block.name:
            block.name = name
        if isinstance(fragment, str) and fragment:
            slot.fragments.append(fragment)
            events.append(
                ToolCallDeltaEvent(
                    content_index=slot.position, delta=fragment, partial=self._message
                )
            )
        return events

    def _close_current(self) -> list[AssistantMessageEvent]:
        if self._current is None:
            return []
        slot, self._current = self._current, None
        self._current_tool_index = None
        return [self._close_block(slot)]

    def _apply_vendor_usage(self, raw_usage: Any) -> None:
        prompt = token_count(raw_usage, "prompt_tokens")
        cached = token_count(get_field(raw_usage, "prompt_tokens_details"), "cached_tokens")
        self._apply_usage(
            input=None if prompt is None else prompt - (cached or 0),
            output=token_count(raw_usage, "completion_tokens"),
            cache_read=cached if cached is not None else (0 if prompt is not None else None),
        )

    def _check_complete(self) -> None:
        if not self._finished:
            raise TransportError(
                "Provider stream ended before a finish_reason was received",
                retryable=True,
                phase="stream",
            )

    def _clear_open_blocks(self) -> None:
        self._current = None
        self._current_tool_index = None
