"""Tolerant tool-argument JSON parsing."""

from __future__ import annotations

import json
import time

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor._json import parse_partial_json

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"q": "cats"}', {"q": "cats"}),
        ('{"q": "ca', {"q": "ca"}),
        ('{"a": 1, "b": ', {"a": 1}),
        ('{"a": 1,', {"a": 1}),
        ('{"a": [1, 2', {"a": [1, 2]}),
        ('{"a": {"b": "c"', {"a": {"b": "c"}}),
        ('{"a": "x\\', {"a": "x"}),
        ('{"a": tr', {}),
        ("", {}),
        ("   ", {}),
        ("not json", {}),
        ("[1, 2]", {}),
        ('"just a string"', {}),
    ],
)
def test_parse_partial_json(text: str, expected: dict) -> None:
    assert parse_partial_json(text) == expected


_json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=8),
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(st.text(max_size=5), children, max_size=3),
    max_leaves=8,
)


@given(obj=st.dictionaries(st.text(max_size=5), _json_values, max_size=4), cut=st.integers(0, 200))
@settings(max_examples=100, deadline=None, derandomize=True)
def test_any_prefix_of_an_object_never_raises(obj: dict, cut: int) -> None:
    """Property: truncated argument JSON always yields a dict."""
    text = json.dumps(obj)

    result = parse_partial_json(text[:cut])

    assert isinstance(result, dict)
    if cut >= len(text):
        assert result == obj


def test_large_unrecoverable_buffer_is_rejected_quickly() -> None:
    """A malformed member early in a long buffer does not trigger repeated reparsing."""
    text = '{"a": nul, "b": [' + ",".join(["1"] * 20000)

    started = time.perf_counter()
    result = parse_partial_json(text)
    elapsed = time.perf_counter() - started

    assert result == {}
    assert elapsed < 1.0


def test_large_truncated_buffer_keeps_complete_members() -> None:
    text = '{"items": [' + ",".join(["1"] * 20000) + ', 2'

    result = parse_partial_json(text)

    assert result["items"][:3] == [1, 1, 1]
    assert len(result["items"]) >= 20000
