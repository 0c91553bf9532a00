"""Best-effort JSON parsing for tool-call arguments.

Providers may truncate argument JSON (an aborted call, a length stop), so
tool arguments are recovered as well as possible rather than rejected.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic_core import from_json

log = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}
_UNPARSED = object()


def parse_partial_json(text: str) -> dict[str, Any]:
    """Parse *text* into an object, repairing truncation where possible.

    Never raises, and costs a bounded number of linear passes. Strategy, in
    order:
    1. strict parse;
    2. partial parse, which keeps complete members and a trailing string;
    3. terminate an open string and close open brackets, then partial parse.

    A result that is not a JSON object, or text that cannot be recovered at
    all, yields ``{}``.
    """
    if not text or not text.strip():
        return {}

    value = _decode(text)
    if value is _UNPARSED:
        log.debug("Unrecoverable tool argument JSON (%d chars)", len(text))
        return {}
    if not isinstance(value, dict):
        log.debug("Tool arguments decoded to %s, not an object", type(value).__name__)
        return {}
    return value


def _decode(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        pass
    for candidate in (text, _close(text)):
        try:
            return from_json(candidate, allow_partial="trailing-strings")
        except ValueError:
            continue
    return _UNPARSED


def _scan(text: str) -> tuple[list[str], bool, bool]:
    """Return (open bracket stack, inside string, trailing backslash)."""
    stack: list[str] = []
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()
    return stack, in_string, escape


def _close(prefix: str) -> str:
    stack, in_string, escape = _scan(prefix)
    repaired = prefix
    if in_string:
        if escape:
            repaired = repaired[:-1]
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    return repaired + "".join(_CLOSERS[ch] for ch in reversed(stack))
