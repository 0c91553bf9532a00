"""Generic OpenAI-compatible Chat Completions adapter.

Used for any provider id without a dedicated adapter: the endpoint is taken
from ``Config.base_url`` or ``Model.base_url``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from castor.cost import calculate_cost
from castor.errors import ConfigurationError
from castor.providers._openai_stream import OpenAIStreamDecoder
from castor.providers._streaming import drive_stream
from castor.providers._utils import sanitize_surrogates, tool_schemas
from castor.providers.base import ProviderCapabilities
from castor.stream import AssistantMessageEventStream
from castor.telemetry import TelemetryContext
from castor.transform import transform_messages
from castor.types import (
    AssistantMessage,
    ImageContent,
    StreamOptions,
    TextContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)

if TYPE_CHECKING:
    from castor.config import Config
    from castor.cost import CostFunction
    from castor.types import Context, Message, Model, Tool, ToolChoice, UserContent

log = logging.getLogger(__name__)

_IMAGE_PLACEHOLDER_TEXT = "(see attached image)"
_TOOL_IMAGES_TEXT = "Attached image(s) from tool result:"

# Chat Completions has no tier above "high".
_REASONING_EFFORTS: dict[str, str] = {
    "minimal": "minimal",
    "low": "low",
    "medium": "medium",
    "high": "high",
    "xhigh": "high",
}


def build_params(
    model: Model, context: Context, options: StreamOptions | None = None
) -> dict[str, Any]:
    """Build Chat Completions parameters. Raises ConfigurationError, never sends."""
    options = options or StreamOptions()
    tele = TelemetryContext()
    with tele("request.build", provider=model.provider):
        tools = tool_schemas(context.tools)
        messages = convert_messages(context.messages, model)
        if not messages:
            raise ConfigurationError(
                "Context has no messages left to send after filtering",
                hint="Add a user message with non-empty text or supported images.",
            )
        if context.system_prompt and context.system_prompt.strip():
            role = "developer" if model.reasoning else "system"
            messages.insert(
                0, {"role": role, "content": sanitize_surrogates(context.system_prompt)}
            )

        params: dict[str, Any] = {
            "model": model.id,
            "messages": messages,
            "stream_options": {"include_usage": True},
        }
        if options.max_tokens is not None:
            params["max_completion_tokens"] = options.max_tokens
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": schema,
                    },
                }
                for tool, schema in tools
            ]
        if options.reasoning is not None:
            if model.reasoning:
                params["reasoning_effort"] = _REASONING_EFFORTS[options.reasoning]
            else:
                log.debug(
                    "Ignoring reasoning=%r for non-reasoning model %s",
                    options.reasoning,
                    model.id,
                )

        mapped = _map_tool_choice(options.tool_choice, [tool for tool, _ in tools])
        if mapped is not None:
            params["tool_choice"] = mapped
    return params


def convert_messages(messages: list[Message], model: Model) -> list[dict[str, Any]]:
    """Convert canonical history to Chat Completions ``messages``.

    Tool results become ``tool`` messages; images they carry follow the run
    of results in a single ``user`` message, since ``tool`` content is text.
    """
    params: list[dict[str, Any]] = []
    transformed = transform_messages(messages, model)

    i = 0
    while i < len(transformed):
        msg = transformed[i]
        if isinstance(msg, ToolResultMessage):
            images: list[dict[str, Any]] = []
            while i < len(transformed) and isinstance(transformed[i], ToolResultMessage):
                result = transformed[i]
                params.append(_tool_message(result))
                if model.supports_images:
                    images.extend(
                        _image_part(p) for p in result.content if isinstance(p, ImageContent)
                    )
                i += 1
            if images:
                params.append(
                    {
                        "role": "user",
                        "content": [{"type": "text", "text": _TOOL_IMAGES_TEXT}, *images],
                    }
                )
            continue

        if isinstance(msg, UserMessage):
            content = _user_content(msg.content, model)
            if content:
                params.append({"role": "user", "content": content})
        elif isinstance(msg, AssistantMessage):
            assistant = _assistant_message(msg)
            if assistant is not None:
                params.append(assistant)
        i += 1
    return params


def _image_part(image: ImageContent) -> dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
    }


def _user_content(
    content: str | list[UserContent], model: Model
) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return sanitize_surrogates(content) if content.strip() else ""

    parts: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextContent):
            if part.text.strip():
                parts.append({"type": "text", "text": sanitize_surrogates(part.text)})
        elif isinstance(part, ImageContent) and model.supports_images:
            parts.append(_image_part(part))
    return parts


def _assistant_message(msg: AssistantMessage) -> dict[str, Any] | None:
    # Reasoning cannot be replayed here; transform_messages has already turned
    # foreign reasoning into text.
    text = "".join(
        block.text for block in msg.content if isinstance(block, TextContent)
    )
    tool_calls = [
        {
            "id": block.id,
            "type": "function",
            "function": {"name": block.name, "arguments": json.dumps(block.arguments)},
        }
        for block in msg.content
        if isinstance(block, ToolCall)
    ]
    if not text.strip() and not tool_calls:
        return None
    message: dict[str, Any] = {
        "role": "assistant",
        "content": sanitize_surrogates(text) if text.strip() else None,
    }
    if tool_calls:
        message["tool_calls"] = tool_calls
    return message


def _tool_message(msg: ToolResultMessage) -> dict[str, Any]:
    text = "\n".join(p.text for p in msg.content if isinstance(p, TextContent))
    if not text.strip() and any(isinstance(p, ImageContent) for p in msg.content):
        text = _IMAGE_PLACEHOLDER_TEXT
    return {
        "role": "tool",
        "tool_call_id": msg.tool_call_id,
        "content": sanitize_surrogates(text),
    }


def _map_tool_choice(tool_choice: ToolChoice | None, tools: list[Tool]) -> Any:
    """Map tool_choice to Chat Completions format."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        if tool_choice in ("any", "required"):
            return "required"
        if tool_choice in ("auto", "none"):
            return tool_choice
    elif isinstance(tool_choice, dict):
        name = tool_choice.get("name")
        if isinstance(name, str) and name:
            if name not in {tool.name for tool in tools}:
                raise ConfigurationError(
                    f"tool_choice names unknown tool {name!r}",
                    hint="Add the tool to Context.tools or pick another tool.",
                )
            return {"type": "function", "function": {"name": name}}
    raise ConfigurationError(
        f"Unsupported tool_choice: {tool_choice!r}",
        hint="Use 'auto', 'any', 'none', 'required' or {'type': 'tool', 'name': ...}.",
    )


class OpenAICompatibleProvider:
    """Chat Completions provider for OpenAI and compatible endpoints."""

    def __init__(
        self,
        config: Config,
        *,
        cost_fn: CostFunction = calculate_cost,
        client: Any = None,
    ) -> None:
        """Initialize with a resolved config; *client* overrides SDK construction."""
        self.config = config
        self._cost_fn = cost_fn
        self._clients: dict[str | None, Any] = {}
        if client is not None:
            self._clients[None] = client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            reasoning=True,
            signed_reasoning=False,
            images=True,
            prompt_caching=False,
        )

    def _base_url(self, model: Model) -> str | None:
        return self.config.base_url or model.base_url

    def _get_client(self, model: Model) -> Any:
        """Lazily initialize and return the async client for *model*."""
        key = None if None in self._clients else self._base_url(model)
        client = self._clients.get(key)
        if client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self._base_url(model),
                default_headers=model.headers or None,
            )
            self._clients[key] = client
        return client

    def stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions | None = None,
    ) -> AssistantMessageEventStream:
        """Start a streaming call; configuration errors raise here."""
        options = options or StreamOptions()
        params = build_params(model, context, options)
        client = self._get_client(model)
        decoder = OpenAIStreamDecoder(model, cost_fn=self._cost_fn)

        async def open_transport() -> Any:
            return await client.chat.completions.create(**params, stream=True)

        return AssistantMessageEventStream(
            drive_stream(
                decoder,
                open_transport,
                provider=model.provider,
                options=options,
            )
        )

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await client.close()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("OpenAI client cleanup failed: %s", exc)
