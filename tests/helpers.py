"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: vendor record builders plus fake SDK
clients whose ``create`` returns a scripted async stream.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

# =============================================================================
# Messages API record builders
# =============================================================================


def message_start(
    *,
    msg_id: str = "msg_1",
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_read: int | None = None,
    cache_write: int | None = None,
) -> dict[str, Any]:
    usage: dict[str, Any] = {"input_tokens": input_tokens, "output_tokens": output_tokens}
    if cache_read is not None:
        usage["cache_read_input_tokens"] = cache_read
    if cache_write is not None:
        usage["cache_creation_input_tokens"] = cache_write
    return {"type": "message_start", "message": {"id": msg_id, "usage": usage}}


def block_start(index: int, block: dict[str, Any]) -> dict[str, Any]:
    return {"type": "content_block_start", "index": index, "content_block": block}


def text_delta(index: int, text: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "text_delta", "text": text},
    }


def thinking_delta(index: int, thinking: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "thinking_delta", "thinking": thinking},
    }


def signature_delta(index: int, signature: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "signature_delta", "signature": signature},
    }


def json_delta(index: int, partial_json: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "input_json_delta", "partial_json": partial_json},
    }


def block_stop(index: int) -> dict[str, Any]:
    return {"type": "content_block_stop", "index": index}


def message_delta(stop_reason: str | None, **usage: int) -> dict[str, Any]:
    record: dict[str, Any] = {"type": "message_delta", "delta": {"stop_reason": stop_reason}}
    if usage:
        record["usage"] = usage
    return record


def message_stop() -> dict[str, Any]:
    return {"type": "message_stop"}


def text_turn(text: str, *, stop_reason: str = "end_turn") -> list[dict[str, Any]]:
    return [
        message_start(input_tokens=10, output_tokens=1),
        block_start(0, {"type": "text", "text": ""}),
        text_delta(0, text),
        block_stop(0),
        message_delta(stop_reason, output_tokens=5),
        message_stop(),
    ]


# =============================================================================
# Fake transports and SDK clients
# =============================================================================


@dataclass
class FakeTransport:
    """Async iterator over scripted records; exceptions in the script are raised.

    When ``hang_after`` is set, iteration blocks forever after that many
    records, which lets cancellation tests interrupt a stalled stream.
    """

    records: list[Any]
    hang_after: int | None = None
    closed: bool = False
    delivered: int = 0

    def __aiter__(self) -> FakeTransport:
        return self

    async def __anext__(self) -> Any:
        if self.hang_after is not None and self.delivered >= self.hang_after:
            await asyncio.Event().wait()
        if self.delivered >= len(self.records):
            raise StopAsyncIteration
        item = self.records[self.delivered]
        self.delivered += 1
        await asyncio.sleep(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@dataclass
class _Endpoint:
    transport: FakeTransport | None
    open_error: BaseException | None = None
    open_hangs: bool = False
    open_cancelled: bool = False
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def create(self, **kwargs: Any) -> FakeTransport:
        self.calls.append(kwargs)
        if self.open_hangs:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.open_cancelled = True
                raise
        if self.open_error is not None:
            raise self.open_error
        assert self.transport is not None
        return self.transport


class FakeAnthropicClient:
    """Stands in for ``AsyncAnthropic``: ``messages.create`` returns a FakeTransport."""

    def __init__(
        self,
        records: list[Any] | None = None,
        *,
        hang_after: int | None = None,
        open_error: BaseException | None = None,
        open_hangs: bool = False,
    ) -> None:
        self.transport = FakeTransport(list(records or []), hang_after=hang_after)
        self.messages = _Endpoint(self.transport, open_error, open_hangs)
        self.closed = False

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.messages.calls

    async def close(self) -> None:
        self.closed = True


class FakeOpenAIClient:
    """Stands in for ``AsyncOpenAI``: ``chat.completions.create`` returns a FakeTransport."""

    def __init__(self, chunks: list[Any] | None = None, *, hang_after: int | None = None) -> None:
        self.transport = FakeTransport(list(chunks or []), hang_after=hang_after)
        completions = _Endpoint(self.transport)
        self.chat = type("Chat", (), {"completions": completions})()
        self.closed = False

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.chat.completions.calls

    async def close(self) -> None:
        self.closed = True


async def collect(stream: Any) -> list[Any]:
    """Drain a canonical event stream into a list."""
    return [event async for event in stream]


def event_types(events: list[Any]) -> list[str]:
    return [event.type for event in events]
