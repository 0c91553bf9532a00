"""Shared utilities for provider implementations."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from castor.types import Tool

_SURROGATES_RE = re.compile("[\ud800-\udfff]")
_TOOL_CALL_ID_RE = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_surrogates(text: str) -> str:
    """Drop unpaired UTF-16 surrogates, which vendors reject as invalid UTF-8."""
    return _SURROGATES_RE.sub("", text)


def sanitize_tool_call_id(call_id: str) -> str:
    """Restrict a tool-call id to the ``[A-Za-z0-9_-]`` alphabet."""
    return _TOOL_CALL_ID_RE.sub("_", call_id)


def tool_schemas(tools: list[Tool] | None) -> list[tuple[Tool, dict[str, Any]]]:
    """Validate tool definitions and resolve their parameter schemas.

    Raises ConfigurationError for anything a vendor would reject, so that no
    partial request is ever sent.
    """
    if not tools:
        return []

    resolved: list[tuple[Tool, dict[str, Any]]] = []
    seen: set[str] = set()
    for tool in tools:
        name = getattr(tool, "name", None)
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(
                "Tool name must be a non-empty string",
                hint="Pass Tool(name='search', ...).",
            )
        if name in seen:
            raise ConfigurationError(
                f"Duplicate tool name: {name!r}",
                hint="Each tool offered to the model needs a unique name.",
            )
        seen.add(name)

        try:
            schema = tool.parameters_schema()
        except Exception as e:
            raise ConfigurationError(
                f"Could not build parameter schema for tool {name!r}: {e}"
            ) from e
        resolved.append((tool, _validate_schema(name, schema)))
    return resolved


def _validate_schema(name: str, schema: Any) -> dict[str, Any]:
    if not isinstance(schema, dict):
        raise ConfigurationError(
            f"Parameters for tool {name!r} must be a JSON Schema object",
            hint="Pass parameters={'type': 'object', 'properties': {...}}.",
        )
    schema_type = schema.get("type", "object")
    if schema_type != "object":
        raise ConfigurationError(
            f"Parameters for tool {name!r} must have type 'object', got {schema_type!r}",
            hint="Wrap scalar arguments in an object schema.",
        )
    properties = schema.get("properties", {})
    if not isinstance(properties, dict):
        raise ConfigurationError(
            f"'properties' for tool {name!r} must be a mapping",
        )
    required = schema.get("required", [])
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise ConfigurationError(
            f"'required' for tool {name!r} must be a list of property names",
        )
    unknown = [r for r in required if r not in properties]
    if unknown:
        raise ConfigurationError(
            f"Tool {name!r} requires undeclared properties: {', '.join(unknown)}",
        )
    return schema


def get_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read *key* from a dict record or an SDK object."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)
