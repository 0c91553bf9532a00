from __future__ import annotations

import asyncio

import httpx
import pytest

from castor.errors import (
    AbortedError,
    CastorError,
    ConfigurationError,
    RateLimitError,
    TransportError,
)
from castor.providers._errors import extract_retry_after_s, wrap_transport_error

pytestmark = pytest.mark.unit


def test_transport_error_structured_metadata() -> None:
    err = TransportError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=503,
        retry_after_s=2.0,
        provider="anthropic",
        phase="stream",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 503
    assert err.retry_after_s == 2.0
    assert err.provider == "anthropic"
    assert err.phase == "stream"


def test_transport_error_defaults_to_none() -> None:
    err = TransportError("fail")
    assert err.hint is None
    assert err.retryable is None
    assert err.status_code is None
    assert err.retry_after_s is None
    assert err.provider is None
    assert err.phase is None


def test_subclass_hierarchy() -> None:
    assert issubclass(RateLimitError, TransportError)
    assert issubclass(TransportError, CastorError)
    assert issubclass(ConfigurationError, CastorError)
    assert issubclass(AbortedError, CastorError)
    assert str(AbortedError()) == "Request was aborted"


# =============================================================================
# Transport error mapping
# =============================================================================


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.headers = headers or {}


class _SdkError(Exception):
    def __init__(self, message: str, response: _Resp) -> None:
        super().__init__(message)
        self.response = response


def test_wrap_extracts_status_and_retry_after_from_response_headers() -> None:
    err = wrap_transport_error(
        _SdkError("rate limited", _Resp(429, {"Retry-After": "2"})),
        provider="anthropic",
        phase="stream",
        message="Anthropic stream failed",
    )

    assert isinstance(err, RateLimitError)
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.retryable is True
    assert err.provider == "anthropic"
    assert err.phase == "stream"
    assert "429" in str(err)


@pytest.mark.parametrize("status", [500, 502, 503, 504, 529])
def test_server_errors_are_retryable(status: int) -> None:
    err = wrap_transport_error(
        _SdkError("server", _Resp(status)), provider="anthropic", phase="stream"
    )

    assert err.retryable is True
    assert not isinstance(err, RateLimitError)


@pytest.mark.parametrize("status", [401, 403])
def test_auth_errors_carry_credential_hint(status: int) -> None:
    err = wrap_transport_error(
        _SdkError("denied", _Resp(status)), provider="anthropic", phase="stream"
    )

    assert err.retryable is False
    assert "ANTHROPIC_API_KEY" in (err.hint or "")


def test_bedrock_auth_hint_names_aws_credentials() -> None:
    err = wrap_transport_error(
        _SdkError("denied", _Resp(403)), provider="anthropic-bedrock", phase="stream"
    )

    assert "AWS" in (err.hint or "")


def test_network_errors_are_retryable() -> None:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    err = wrap_transport_error(
        httpx.ConnectError("connection refused", request=request),
        provider="anthropic",
        phase="stream",
    )

    assert isinstance(err, TransportError)
    assert err.retryable is True
    assert err.status_code is None


def test_existing_transport_error_is_enriched_without_clobbering() -> None:
    base = TransportError("bad request", retryable=False, status_code=400)
    wrapped = wrap_transport_error(base, provider="openai", phase="stream")

    assert wrapped is base
    assert wrapped.retryable is False
    assert wrapped.provider == "openai"
    assert wrapped.phase == "stream"


def test_other_castor_errors_pass_through() -> None:
    aborted = AbortedError()

    assert wrap_transport_error(aborted, provider="anthropic", phase="stream") is aborted


def test_cancelled_error_is_reraised() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_transport_error(asyncio.CancelledError(), provider="anthropic", phase="stream")


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({"retry-after": "1.5"}, 1.5),
        ({"Retry-After": "0"}, 0.0),
        ({"Retry-After": "soon"}, None),
        ({}, None),
    ],
)
def test_extract_retry_after_s(headers: dict[str, str], expected: float | None) -> None:
    assert extract_retry_after_s(_SdkError("x", _Resp(429, headers))) == expected
