"""Token accounting and cost computation."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from castor.types import AssistantMessage, Cost, Model, Usage

CostFunction = Callable[[Model, Usage], Cost]

_PER_MILLION = 1_000_000


def calculate_cost(model: Model, usage: Usage) -> Cost:
    """Price *usage* with the model's per-million-token rates. Pure."""
    pricing = model.pricing
    cost = Cost(
        input=pricing.input * usage.input / _PER_MILLION,
        output=pricing.output * usage.output / _PER_MILLION,
        cache_read=pricing.cache_read * usage.cache_read / _PER_MILLION,
        cache_write=pricing.cache_write * usage.cache_write / _PER_MILLION,
    )
    cost.total = cost.input + cost.output + cost.cache_read + cost.cache_write
    return cost


def apply_usage(
    message: AssistantMessage,
    model: Model,
    *,
    input: int | None = None,  # noqa: A002
    output: int | None = None,
    cache_read: int | None = None,
    cache_write: int | None = None,
    cost_fn: CostFunction = calculate_cost,
) -> None:
    """Overwrite reported counters on *message* and refresh its cost.

    Vendor counters are cumulative snapshots, so values replace rather than
    add. A counter the vendor did not report (``None``) keeps its last value.
    """
    usage = message.usage
    if input is not None:
        usage.input = input
    if output is not None:
        usage.output = output
    if cache_read is not None:
        usage.cache_read = cache_read
    if cache_write is not None:
        usage.cache_write = cache_write
    usage.cost = cost_fn(model, usage)


def token_count(raw: Any, key: str) -> int | None:
    """Read an integer counter from an SDK object or dict, or ``None``."""
    value = raw.get(key) if isinstance(raw, dict) else getattr(raw, key, None)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value
