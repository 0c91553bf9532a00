"""Shared provider-side error helpers.

Transport failures are mapped into TransportError with structured retry
metadata so an outer caller can decide on retries without brittle substring
matching. Castor never retries on its own.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from castor._http import RETRYABLE_STATUS_CODES
from castor.config import BEDROCK_PROVIDER, api_key_env_var
from castor.errors import (
    CastorError,
    RateLimitError,
    TransportError,
    _walk_exception_chain,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, int | float) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        getter = getattr(headers, "get", None)
        if not callable(getter):
            continue
        raw = getter("Retry-After") or getter("retry-after")
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    """Generate a hint for auth errors where naming the credential source helps."""
    if status_code not in {401, 403}:
        return None
    if provider == BEDROCK_PROVIDER:
        return (
            "Check AWS credentials (AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY, "
            "~/.aws/credentials) and Bedrock model access in AWS_REGION."
        )
    env_var = api_key_env_var(provider)
    return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."


def wrap_transport_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> CastorError:
    """Map SDK/network exceptions into TransportError with retry metadata.

    Castor errors other than TransportError (an abort, an invariant
    violation) pass through unchanged.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, TransportError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc
    if isinstance(exc, CastorError):
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    else:
        for e in _walk_exception_chain(exc):
            if isinstance(e, httpx.TimeoutException | httpx.RequestError):
                retryable = True
                break

    msg = message or f"{provider} {phase} failed"
    err_cls: type[TransportError] = RateLimitError if status_code == 429 else TransportError
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=_auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
