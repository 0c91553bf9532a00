"""Canonical, provider-agnostic conversation types.

Inputs (``Context``, ``StreamOptions``, ``Model``) are read-only for the
lifetime of a call. ``AssistantMessage`` is the single mutable output: the
stream decoder owns it while a call is in flight and stops touching it once a
terminal stop reason has been assigned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import Any, Literal

from pydantic import BaseModel

from castor.errors import ConfigurationError

StopReason = Literal["stop", "length", "toolUse", "error", "aborted"]
ReasoningEffort = Literal["minimal", "low", "medium", "high", "xhigh"]
InputModality = Literal["text", "image"]
ToolChoice = Literal["auto", "any", "none", "required"] | dict[str, Any]

#: Ordered from least to most effort.
REASONING_EFFORTS: tuple[ReasoningEffort, ...] = (
    "minimal",
    "low",
    "medium",
    "high",
    "xhigh",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Model descriptor
# =============================================================================


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0


@dataclass(frozen=True)
class Model:
    """Read-only description of a model, supplied by the caller's catalog."""

    id: str
    provider: str
    max_tokens: int
    input: frozenset[InputModality] = frozenset({"text"})
    reasoning: bool = False
    pricing: ModelPricing = field(default_factory=ModelPricing)
    #: Wire protocol name reported on produced messages.
    api: str | None = None
    base_url: str | None = None
    headers: dict[str, str] | None = None

    @property
    def supports_images(self) -> bool:
        return "image" in self.input


# =============================================================================
# Usage and cost
# =============================================================================


@dataclass
class Cost:
    """Cost breakdown in USD."""

    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0
    total: float = 0.0


@dataclass
class Usage:
    """Token counters for one assistant turn.

    ``total_tokens`` is derived, so it always equals the sum of the four
    counters whenever it is observed.
    """

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    cost: Cost = field(default_factory=Cost)

    @property
    def total_tokens(self) -> int:
        return self.input + self.output + self.cache_read + self.cache_write


# =============================================================================
# Content blocks
# =============================================================================


@dataclass
class TextContent:
    text: str = ""
    type: Literal["text"] = field(default="text", init=False)


@dataclass
class ThinkingContent:
    """Reasoning trace.

    ``signature`` is the provider's opaque proof that the trace may be
    replayed. For redacted reasoning the encrypted payload is carried in
    ``signature`` and ``redacted`` is set.
    """

    thinking: str = ""
    signature: str | None = None
    redacted: bool = False
    type: Literal["thinking"] = field(default="thinking", init=False)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    type: Literal["toolCall"] = field(default="toolCall", init=False)


@dataclass(frozen=True)
class ImageContent:
    """Base64-encoded image input."""

    data: str
    mime_type: str
    type: Literal["image"] = field(default="image", init=False)


AssistantContent = TextContent | ThinkingContent | ToolCall
UserContent = TextContent | ImageContent


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class UserMessage:
    content: str | list[UserContent]
    timestamp: int = field(default_factory=_now_ms)
    role: Literal["user"] = field(default="user", init=False)


@dataclass
class AssistantMessage:
    """One assistant turn, as produced by a provider stream."""

    content: list[AssistantContent] = field(default_factory=list)
    provider: str = ""
    model: str = ""
    api: str = ""
    usage: Usage = field(default_factory=Usage)
    stop_reason: StopReason = "stop"
    #: Present only when ``stop_reason`` is ``"error"`` or ``"aborted"``.
    error_message: str | None = None
    #: Vendor-assigned message id, when the provider reports one.
    response_id: str | None = None
    timestamp: int = field(default_factory=_now_ms)
    role: Literal["assistant"] = field(default="assistant", init=False)

    @property
    def text(self) -> str:
        """Concatenated visible text of the message."""
        return "".join(c.text for c in self.content if isinstance(c, TextContent))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [c for c in self.content if isinstance(c, ToolCall)]


@dataclass(frozen=True)
class ToolResultMessage:
    tool_call_id: str
    tool_name: str
    content: list[UserContent]
    is_error: bool = False
    timestamp: int = field(default_factory=_now_ms)
    role: Literal["toolResult"] = field(default="toolResult", init=False)


Message = UserMessage | AssistantMessage | ToolResultMessage


# =============================================================================
# Tools and context
# =============================================================================


@dataclass(frozen=True)
class Tool:
    """A tool the model may call.

    ``parameters`` is a JSON Schema object or a Pydantic ``BaseModel``
    subclass describing the arguments.
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] | type[BaseModel] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def parameters_schema(self) -> dict[str, Any]:
        """Return the JSON Schema for provider APIs."""
        params = self.parameters
        if isinstance(params, type) and issubclass(params, BaseModel):
            return params.model_json_schema()
        return params


@dataclass(frozen=True)
class Context:
    """Conversation handed to a provider for one call."""

    messages: list[Message] = field(default_factory=list)
    system_prompt: str | None = None
    tools: list[Tool] | None = None


# =============================================================================
# Generation options
# =============================================================================


@dataclass(frozen=True)
class StreamOptions:
    """Optional generation controls. ``None`` means provider default."""

    temperature: float | None = None
    max_tokens: int | None = None
    reasoning: ReasoningEffort | None = None
    tool_choice: ToolChoice | None = None
    #: Cancellation signal. Once set it must stay set.
    signal: asyncio.Event | None = None
    #: Overrides the key resolved by ``Config``.
    api_key: str | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.temperature is not None and (
            isinstance(self.temperature, bool)
            or not isinstance(self.temperature, int | float)
            or self.temperature < 0
        ):
            raise ConfigurationError(
                "temperature must be a non-negative number",
                hint="Pass temperature=0.7 or leave it unset.",
            )
        if self.max_tokens is not None and (
            isinstance(self.max_tokens, bool)
            or not isinstance(self.max_tokens, int)
            or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                hint="Pass max_tokens=4096 or leave it unset.",
            )
        if self.reasoning is not None and self.reasoning not in REASONING_EFFORTS:
            raise ConfigurationError(
                f"Unsupported reasoning effort: {self.reasoning!r}",
                hint=f"Use one of: {', '.join(REASONING_EFFORTS)}.",
            )

    @property
    def aborted(self) -> bool:
        return self.signal is not None and self.signal.is_set()
