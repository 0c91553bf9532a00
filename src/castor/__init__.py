"""Castor: streaming LLM calls normalized to one canonical message model.

Public API:
    - stream(): Start a streaming call; iterate canonical events
    - complete(): Run a call to completion and return the assistant message
    - Model / Context / StreamOptions: Call inputs
    - Config: Credentials and endpoint configuration
"""

from __future__ import annotations

import logging

from castor.config import Config
from castor.dispatch import ProviderRegistry, complete, default_registry, stream
from castor.errors import (
    AbortedError,
    CastorError,
    ConfigurationError,
    InternalError,
    RateLimitError,
    TransportError,
)
from castor.events import (
    AssistantMessageEvent,
    DoneEvent,
    ErrorEvent,
    StartEvent,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
    ThinkingDeltaEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from castor.stream import AssistantMessageEventStream
from castor.types import (
    AssistantMessage,
    Context,
    Cost,
    ImageContent,
    Model,
    ModelPricing,
    StreamOptions,
    TextContent,
    ThinkingContent,
    Tool,
    ToolCall,
    ToolResultMessage,
    Usage,
    UserMessage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-stream")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "AbortedError",
    "AssistantMessage",
    "AssistantMessageEvent",
    "AssistantMessageEventStream",
    "CastorError",
    "Config",
    "ConfigurationError",
    "Context",
    "Cost",
    "DoneEvent",
    "ErrorEvent",
    "ImageContent",
    "InternalError",
    "Model",
    "ModelPricing",
    "ProviderRegistry",
    "RateLimitError",
    "StartEvent",
    "StreamOptions",
    "TextContent",
    "TextDeltaEvent",
    "TextEndEvent",
    "TextStartEvent",
    "ThinkingContent",
    "ThinkingDeltaEvent",
    "ThinkingEndEvent",
    "ThinkingStartEvent",
    "Tool",
    "ToolCall",
    "ToolCallDeltaEvent",
    "ToolCallEndEvent",
    "ToolCallStartEvent",
    "ToolResultMessage",
    "TransportError",
    "Usage",
    "UserMessage",
    "complete",
    "default_registry",
    "stream",
]
