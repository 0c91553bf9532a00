"""Canonical assistant-message event taxonomy.

Every event carries the in-flight ``AssistantMessage`` (``partial``) so that
consumers can render progress without keeping their own copy. Terminal events
(``DoneEvent``/``ErrorEvent``) carry the final message instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal

from castor.types import AssistantMessage, ToolCall


@dataclass(frozen=True)
class StartEvent:
    type: ClassVar[str] = "start"

    partial: AssistantMessage


@dataclass(frozen=True)
class TextStartEvent:
    type: ClassVar[str] = "text_start"

    content_index: int
    partial: AssistantMessage


@dataclass(frozen=True)
class TextDeltaEvent:
    type: ClassVar[str] = "text_delta"

    content_index: int
    delta: str
    partial: AssistantMessage


@dataclass(frozen=True)
class TextEndEvent:
    type: ClassVar[str] = "text_end"

    content_index: int
    content: str
    partial: AssistantMessage


@dataclass(frozen=True)
class ThinkingStartEvent:
    type: ClassVar[str] = "thinking_start"

    content_index: int
    partial: AssistantMessage


@dataclass(frozen=True)
class ThinkingDeltaEvent:
    type: ClassVar[str] = "thinking_delta"

    content_index: int
    delta: str
    partial: AssistantMessage


@dataclass(frozen=True)
class ThinkingEndEvent:
    type: ClassVar[str] = "thinking_end"

    content_index: int
    content: str
    partial: AssistantMessage


@dataclass(frozen=True)
class ToolCallStartEvent:
    type: ClassVar[str] = "toolcall_start"

    content_index: int
    partial: AssistantMessage


@dataclass(frozen=True)
class ToolCallDeltaEvent:
    type: ClassVar[str] = "toolcall_delta"

    content_index: int
    #: Raw argument fragment as sent by the provider.
    delta: str
    partial: AssistantMessage


@dataclass(frozen=True)
class ToolCallEndEvent:
    type: ClassVar[str] = "toolcall_end"

    content_index: int
    tool_call: ToolCall
    partial: AssistantMessage


@dataclass(frozen=True)
class DoneEvent:
    type: ClassVar[str] = "done"

    reason: Literal["stop", "length", "toolUse"]
    message: AssistantMessage


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"

    reason: Literal["error", "aborted"]
    message: AssistantMessage


AssistantMessageEvent = (
    StartEvent
    | TextStartEvent
    | TextDeltaEvent
    | TextEndEvent
    | ThinkingStartEvent
    | ThinkingDeltaEvent
    | ThinkingEndEvent
    | ToolCallStartEvent
    | ToolCallDeltaEvent
    | ToolCallEndEvent
    | DoneEvent
    | ErrorEvent
)

TerminalEvent = DoneEvent | ErrorEvent
