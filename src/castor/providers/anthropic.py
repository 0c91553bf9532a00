"""Anthropic Messages API adapter (direct API and AWS Bedrock).

Request building turns a canonical ``Context`` into Messages API parameters;
the response stream is decoded by ``AnthropicStreamDecoder``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor.cost import calculate_cost
from castor.errors import ConfigurationError
from castor.providers._anthropic_stream import AnthropicStreamDecoder
from castor.providers._streaming import drive_stream
from castor.providers._utils import (
    sanitize_surrogates,
    sanitize_tool_call_id,
    tool_schemas,
)
from castor.providers.base import ProviderCapabilities
from castor.stream import AssistantMessageEventStream
from castor.telemetry import TelemetryContext
from castor.transform import transform_messages
from castor.types import (
    REASONING_EFFORTS,
    AssistantMessage,
    ImageContent,
    StreamOptions,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)

if TYPE_CHECKING:
    from castor.config import Config
    from castor.cost import CostFunction
    from castor.types import (
        Context,
        Message,
        Model,
        ReasoningEffort,
        Tool,
        ToolChoice,
        UserContent,
    )

log = logging.getLogger(__name__)

_FINE_GRAINED_TOOL_STREAMING_BETA = "fine-grained-tool-streaming-2025-05-14"
_INTERLEAVED_THINKING_BETA = "interleaved-thinking-2025-05-14"
_CACHE_CONTROL = {"type": "ephemeral"}
_IMAGE_PLACEHOLDER_TEXT = "(see attached image)"

# Monotonic in effort; efforts above "high" clamp down to it.
_THINKING_BUDGETS: dict[str, int] = {
    "minimal": 1024,
    "low": 2048,
    "medium": 8192,
    "high": 16384,
}
_DEFAULT_REQUESTED_MAX_TOKENS = 32000
_MIN_OUTPUT_TOKENS = 1024


# =============================================================================
# Request building
# =============================================================================


def thinking_budget(effort: ReasoningEffort) -> int:
    """Token budget for *effort*, clamped down to the nearest supported tier."""
    position = REASONING_EFFORTS.index(effort)
    for tier in reversed(REASONING_EFFORTS[: position + 1]):
        budget = _THINKING_BUDGETS.get(tier)
        if budget is not None:
            return budget
    return _THINKING_BUDGETS["minimal"]


def resolve_thinking_limits(
    model: Model, effort: ReasoningEffort, requested_max_tokens: int | None
) -> tuple[int, int]:
    """Return ``(max_tokens, budget_tokens)`` for a reasoning request.

    ``max_tokens`` covers reasoning plus visible output and never exceeds the
    model limit. When the limit leaves no room beyond the budget, the budget
    shrinks to keep ``_MIN_OUTPUT_TOKENS`` for the visible answer.
    """
    budget = thinking_budget(effort)
    requested = (
        requested_max_tokens
        if requested_max_tokens is not None
        else _DEFAULT_REQUESTED_MAX_TOKENS
    )
    max_tokens = min(requested + budget, model.max_tokens)
    if max_tokens <= budget:
        budget = max(0, max_tokens - _MIN_OUTPUT_TOKENS)
    return max_tokens, budget


def build_params(
    model: Model, context: Context, options: StreamOptions | None = None
) -> dict[str, Any]:
    """Build Messages API parameters. Raises ConfigurationError, never sends."""
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
        params: dict[str, Any] = {
            "model": model.id,
            "messages": messages,
            "max_tokens": options.max_tokens or model.max_tokens // 3,
        }

        if context.system_prompt and context.system_prompt.strip():
            params["system"] = [
                {
                    "type": "text",
                    "text": sanitize_surrogates(context.system_prompt),
                    "cache_control": dict(_CACHE_CONTROL),
                }
            ]
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if tools:
            params["tools"] = [_convert_tool(tool, schema) for tool, schema in tools]

        if options.reasoning is not None:
            if model.reasoning:
                max_tokens, budget = resolve_thinking_limits(
                    model, options.reasoning, options.max_tokens
                )
                params["max_tokens"] = max_tokens
                params["thinking"] = {"type": "enabled", "budget_tokens": budget}
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
    """Convert canonical history to Messages API ``messages``.

    Consecutive tool results become a single ``user`` message, and the last
    part of the last ``user`` message receives the cache marker.
    """
    params: list[dict[str, Any]] = []
    transformed = transform_messages(messages, model)

    i = 0
    while i < len(transformed):
        msg = transformed[i]
        if isinstance(msg, ToolResultMessage):
            results: list[dict[str, Any]] = []
            while i < len(transformed) and isinstance(transformed[i], ToolResultMessage):
                results.append(_tool_result_block(transformed[i], model))
                i += 1
            params.append({"role": "user", "content": results})
            continue

        if isinstance(msg, UserMessage):
            blocks = _user_blocks(msg.content, model)
            if blocks:
                params.append({"role": "user", "content": blocks})
        elif isinstance(msg, AssistantMessage):
            blocks = _assistant_blocks(msg)
            if blocks:
                params.append({"role": "assistant", "content": blocks})
        i += 1

    _mark_cache_breakpoint(params)
    return params


def _mark_cache_breakpoint(params: list[dict[str, Any]]) -> None:
    for message in reversed(params):
        if message["role"] != "user":
            continue
        content = message["content"]
        if content:
            content[-1]["cache_control"] = dict(_CACHE_CONTROL)
        return


def _image_block(image: ImageContent) -> dict[str, Any]:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": image.mime_type,
            "data": image.data,
        },
    }


def _user_blocks(content: str | list[UserContent], model: Model) -> list[dict[str, Any]]:
    if isinstance(content, str):
        if not content.strip():
            return []
        return [{"type": "text", "text": sanitize_surrogates(content)}]

    blocks: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextContent):
            if part.text.strip():
                blocks.append({"type": "text", "text": sanitize_surrogates(part.text)})
        elif isinstance(part, ImageContent) and model.supports_images:
            blocks.append(_image_block(part))
    return blocks


def _assistant_blocks(msg: AssistantMessage) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for block in msg.content:
        if isinstance(block, TextContent):
            if block.text.strip():
                blocks.append({"type": "text", "text": sanitize_surrogates(block.text)})
        elif isinstance(block, ThinkingContent):
            if block.redacted:
                if block.signature:
                    blocks.append({"type": "redacted_thinking", "data": block.signature})
                continue
            if not block.thinking.strip():
                continue
            if block.signature and block.signature.strip():
                blocks.append(
                    {
                        "type": "thinking",
                        "thinking": sanitize_surrogates(block.thinking),
                        "signature": block.signature,
                    }
                )
            else:
                blocks.append(
                    {"type": "text", "text": sanitize_surrogates(block.thinking)}
                )
        elif isinstance(block, ToolCall):
            blocks.append(
                {
                    "type": "tool_use",
                    "id": sanitize_tool_call_id(block.id),
                    "name": block.name,
                    "input": block.arguments,
                }
            )
    return blocks


def _tool_result_block(msg: ToolResultMessage, model: Model) -> dict[str, Any]:
    parts = [
        p
        for p in msg.content
        if isinstance(p, TextContent)
        or (isinstance(p, ImageContent) and model.supports_images)
    ]
    content: str | list[dict[str, Any]]
    if not any(isinstance(p, ImageContent) for p in parts):
        content = sanitize_surrogates(
            "\n".join(p.text for p in parts if p.text.strip())
        )
    else:
        content = []
        for p in parts:
            if isinstance(p, ImageContent):
                content.append(_image_block(p))
            elif p.text.strip():
                content.append({"type": "text", "text": sanitize_surrogates(p.text)})
        if not any(block["type"] == "text" for block in content):
            content.insert(0, {"type": "text", "text": _IMAGE_PLACEHOLDER_TEXT})
    return {
        "type": "tool_result",
        "tool_use_id": sanitize_tool_call_id(msg.tool_call_id),
        "content": content,
        "is_error": msg.is_error,
    }


def _convert_tool(tool: Tool, schema: dict[str, Any]) -> dict[str, Any]:
    input_schema = dict(schema)
    input_schema["type"] = "object"
    input_schema.setdefault("properties", {})
    input_schema.setdefault("required", [])
    converted: dict[str, Any] = {"name": tool.name, "input_schema": input_schema}
    if tool.description:
        converted["description"] = tool.description
    return converted


def _map_tool_choice(
    tool_choice: ToolChoice | None, tools: list[Tool]
) -> dict[str, str] | None:
    """Map tool_choice to Anthropic format."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return {"type": "any"}
        if tool_choice in ("auto", "any", "none"):
            return {"type": tool_choice}
    elif isinstance(tool_choice, dict):
        name = tool_choice.get("name")
        if isinstance(name, str) and name:
            if name not in {tool.name for tool in tools}:
                raise ConfigurationError(
                    f"tool_choice names unknown tool {name!r}",
                    hint="Add the tool to Context.tools or pick another tool.",
                )
            return {"type": "tool", "name": name}
    raise ConfigurationError(
        f"Unsupported tool_choice: {tool_choice!r}",
        hint="Use 'auto', 'any', 'none', 'required' or {'type': 'tool', 'name': ...}.",
    )


# =============================================================================
# Adapter façade
# =============================================================================


class AnthropicProvider:
    """Anthropic Messages API provider authenticated with an API key."""

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
            signed_reasoning=True,
            images=True,
            prompt_caching=True,
        )

    def _base_url(self, model: Model) -> str | None:
        return self.config.base_url or model.base_url

    def _client_key(self, model: Model) -> str | None:
        if None in self._clients:
            return None
        return self._base_url(model)

    def _create_client(self, model: Model) -> Any:
        try:
            from anthropic import AsyncAnthropic
        except ImportError as e:
            raise ConfigurationError(
                "anthropic package not installed",
                hint="pip install 'anthropic[bedrock]'",
            ) from e
        kwargs: dict[str, Any] = {"api_key": self.config.api_key}
        base_url = self._base_url(model)
        if base_url:
            kwargs["base_url"] = base_url
        return AsyncAnthropic(**kwargs)

    def _get_client(self, model: Model) -> Any:
        """Lazily initialize and return the async client for *model*."""
        key = self._client_key(model)
        client = self._clients.get(key)
        if client is None:
            client = self._create_client(model)
            self._clients[key] = client
        return client

    def _request_headers(self, model: Model) -> dict[str, str]:
        betas = [_FINE_GRAINED_TOOL_STREAMING_BETA]
        if self.config.interleaved_thinking:
            betas.append(_INTERLEAVED_THINKING_BETA)
        return {"anthropic-beta": ",".join(betas), **(model.headers or {})}

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
        headers = self._request_headers(model)
        decoder = AnthropicStreamDecoder(model, cost_fn=self._cost_fn)

        async def open_transport() -> Any:
            return await client.messages.create(
                **params, stream=True, extra_headers=headers
            )

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
                log.warning("Anthropic client cleanup failed: %s", exc)


class AnthropicBedrockProvider(AnthropicProvider):
    """Anthropic models served through AWS Bedrock.

    Credentials come from the config, else the standard AWS environment
    variables or ``~/.aws/credentials``.
    """

    def _base_url(self, model: Model) -> str | None:
        base_url = self.config.base_url or model.base_url
        # A model catalog entry may still point at the public API; ignore it.
        if base_url and "api.anthropic.com" in base_url:
            return None
        return base_url

    def _create_client(self, model: Model) -> Any:
        try:
            from anthropic import AsyncAnthropicBedrock
        except ImportError as e:
            raise ConfigurationError(
                "anthropic bedrock support not installed",
                hint="pip install 'anthropic[bedrock]'",
            ) from e
        config = self.config
        kwargs: dict[str, Any] = {"aws_region": config.aws_region}
        if config.aws_access_key and config.aws_secret_key:
            kwargs["aws_access_key"] = config.aws_access_key
            kwargs["aws_secret_key"] = config.aws_secret_key
            if config.aws_session_token:
                kwargs["aws_session_token"] = config.aws_session_token
        base_url = self._base_url(model)
        if base_url:
            kwargs["base_url"] = base_url
        return AsyncAnthropicBedrock(**kwargs)
