"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker-driven API
test skipping, and the model catalog entries shared by the suites.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

from castor.types import Model, ModelPricing

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears ANTHROPIC_*, OPENAI_* and AWS_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("ANTHROPIC_", "OPENAI_", "AWS_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("CASTOR_TELEMETRY", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Models
# =============================================================================

CLAUDE_MODEL = "claude-sonnet-4-5"
OPENAI_MODEL = "gpt-5-nano"

#: $3 / $15 / $0.30 / $3.75 per million tokens.
CLAUDE_PRICING = ModelPricing(input=3.0, output=15.0, cache_read=0.3, cache_write=3.75)


@pytest.fixture
def claude() -> Model:
    """Reasoning, image-capable Anthropic model."""
    return Model(
        id=CLAUDE_MODEL,
        provider="anthropic",
        max_tokens=64000,
        input=frozenset({"text", "image"}),
        reasoning=True,
        pricing=CLAUDE_PRICING,
    )


@pytest.fixture
def claude_text_only() -> Model:
    """Non-reasoning Anthropic model without image input."""
    return Model(
        id="claude-3-5-haiku-latest",
        provider="anthropic",
        max_tokens=8192,
        pricing=ModelPricing(input=0.8, output=4.0, cache_read=0.08, cache_write=1.0),
    )


@pytest.fixture
def bedrock_claude() -> Model:
    return Model(
        id="us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        provider="anthropic-bedrock",
        max_tokens=64000,
        input=frozenset({"text", "image"}),
        reasoning=True,
        pricing=CLAUDE_PRICING,
        base_url="https://api.anthropic.com",
    )


@pytest.fixture
def openai_model() -> Model:
    return Model(
        id=OPENAI_MODEL,
        provider="openai",
        max_tokens=128000,
        input=frozenset({"text", "image"}),
        reasoning=True,
        pricing=ModelPricing(input=0.05, output=0.4, cache_read=0.005),
    )


@pytest.fixture
def anthropic_api_key():
    """Return ANTHROPIC_API_KEY or skip the test if unavailable."""
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        pytest.skip("ANTHROPIC_API_KEY not set")
    return key


@pytest.fixture
def openai_api_key():
    """Return OPENAI_API_KEY or skip the test if unavailable."""
    key = os.getenv("OPENAI_API_KEY")
    if not key:
        pytest.skip("OPENAI_API_KEY not set")
    return key
