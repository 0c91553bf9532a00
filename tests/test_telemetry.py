"""Telemetry: no-op by default, scoped timings and stream metrics when enabled."""

from __future__ import annotations

import pytest

from castor.providers.mock import MockProvider
from castor.telemetry import (
    SimpleReporter,
    TelemetryContext,
    fallback_reporter,
    set_reporters,
)
from castor.types import Context, Model, UserMessage

pytestmark = pytest.mark.unit


def test_disabled_by_default_returns_shared_no_op() -> None:
    tele = TelemetryContext()

    assert tele.is_enabled is False
    assert TelemetryContext() is tele
    with tele("anything", key="value"):
        tele.metric("m", 1)
        tele.count("c")


def test_enabled_context_records_nested_scopes(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CASTOR_TELEMETRY", "1")
    reporter = SimpleReporter()
    tele = TelemetryContext(reporter)

    with tele("outer"), tele("inner"):
        tele.metric("tokens", 42)

    data = reporter.as_dict()
    assert set(data["timings"]) == {"outer", "outer.inner"}
    assert data["metrics"]["outer.inner.tokens"][0][0] == 42


def test_failing_reporter_does_not_break_the_caller(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CASTOR_TELEMETRY", "1")

    class Broken:
        def record_timing(self, scope, duration, **metadata):
            raise RuntimeError("reporter down")

        def record_metric(self, scope, value, **metadata):
            raise RuntimeError("reporter down")

    tele = TelemetryContext(Broken())
    with tele("scope"):
        tele.count("calls")


def test_scope_name_must_be_non_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CASTOR_TELEMETRY", "1")
    tele = TelemetryContext(SimpleReporter())

    with pytest.raises(ValueError), tele(""):
        pass


@pytest.mark.asyncio
async def test_stream_reports_build_timing_and_call_metrics(
    monkeypatch: pytest.MonkeyPatch, claude: Model
) -> None:
    monkeypatch.setenv("CASTOR_TELEMETRY", "1")
    reporter = SimpleReporter()
    set_reporters(reporter)
    try:
        message = await MockProvider().stream(
            claude, Context(messages=[UserMessage("hi")])
        ).result()
    finally:
        set_reporters()

    data = reporter.as_dict()
    assert "request.build" in data["timings"]
    assert data["metrics"]["stream.calls"][0][0] == 1
    assert data["metrics"]["stream.total_tokens"][0][0] == message.usage.total_tokens
    assert data["metrics"]["stream.stop_reason"][0] == (
        "stop",
        {"provider": "anthropic", "done": True},
    )


@pytest.mark.asyncio
async def test_metrics_without_installed_reporters_accumulate_in_one_place(
    monkeypatch: pytest.MonkeyPatch, claude: Model
) -> None:
    monkeypatch.setenv("CASTOR_TELEMETRY", "1")
    reporter = fallback_reporter()
    reporter.reset()

    await MockProvider().stream(claude, Context(messages=[UserMessage("hi")])).result()
    await MockProvider().stream(claude, Context(messages=[UserMessage("again")])).result()

    data = reporter.as_dict()
    assert fallback_reporter() is reporter
    assert len(data["timings"]["request.build"]) == 2
    assert [value for value, _ in data["metrics"]["stream.calls"]] == [1, 1]
    reporter.reset()
