"""Provider-neutral history normalization applied before request building."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from castor.types import (
    AssistantMessage,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
)

if TYPE_CHECKING:
    from castor.types import Message, Model

log = logging.getLogger(__name__)

MISSING_TOOL_RESULT_TEXT = "No result provided"


def transform_messages(messages: list[Message], model: Model) -> list[Message]:
    """Return a copy of *messages* that any vendor can accept.

    - Assistant turns that ended in ``error``/``aborted`` are dropped; their
      content is incomplete.
    - Reasoning produced by another provider or model is replayed as text,
      since signatures only validate against the model that produced them.
    - Tool calls left without a result get a synthetic error result placed
      right after the tool results that do exist.

    Relative order of the remaining messages is preserved.
    """
    result: list[Message] = []
    pending: dict[str, ToolCall] = {}

    def flush_pending() -> None:
        for call in pending.values():
            log.debug("Adding placeholder result for orphaned tool call %s", call.id)
            result.append(
                ToolResultMessage(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    content=[TextContent(MISSING_TOOL_RESULT_TEXT)],
                    is_error=True,
                )
            )
        pending.clear()

    for msg in messages:
        if isinstance(msg, ToolResultMessage):
            pending.pop(msg.tool_call_id, None)
            result.append(msg)
            continue

        flush_pending()

        if isinstance(msg, AssistantMessage):
            if msg.stop_reason in ("error", "aborted"):
                log.debug("Skipping %s assistant turn from history", msg.stop_reason)
                continue
            replayed = _for_model(msg, model)
            pending.update((c.id, c) for c in replayed.content if isinstance(c, ToolCall))
            result.append(replayed)
        else:
            result.append(msg)

    flush_pending()
    return result


def _for_model(msg: AssistantMessage, model: Model) -> AssistantMessage:
    same_model = msg.provider == model.provider and msg.model == model.id
    if same_model:
        return msg
    if not any(isinstance(c, ThinkingContent) for c in msg.content):
        return msg

    content = []
    for block in msg.content:
        if isinstance(block, ThinkingContent):
            if block.redacted:
                continue
            content.append(TextContent(block.thinking))
        else:
            content.append(block)
    return AssistantMessage(
        content=content,
        provider=msg.provider,
        model=msg.model,
        api=msg.api,
        usage=msg.usage,
        stop_reason=msg.stop_reason,
        error_message=msg.error_message,
        timestamp=msg.timestamp,
    )
