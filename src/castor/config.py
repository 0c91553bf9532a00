"""Configuration: frozen client credentials resolved from the environment."""

from __future__ import annotations

from dataclasses import dataclass
import os

from dotenv import load_dotenv

from castor.errors import ConfigurationError

load_dotenv()

BEDROCK_PROVIDER = "anthropic-bedrock"
_DEFAULT_AWS_REGION = "us-east-1"

# Provider-specific API key environment variable names
_API_KEY_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}

# Providers that authenticate without an API key.
_KEYLESS_PROVIDERS = frozenset({BEDROCK_PROVIDER, "mock"})


def api_key_env_var(provider: str) -> str:
    """Return the environment variable holding *provider*'s API key."""
    return _API_KEY_ENV_VARS.get(
        provider, f"{provider.upper().replace('-', '_')}_API_KEY"
    )


@dataclass(frozen=True)
class Config:
    """Immutable client configuration for one provider.

    API keys and AWS settings are auto-resolved from standard environment
    variables when not passed explicitly.

    Example:
        config = Config(provider="anthropic")
        # API key is resolved from ANTHROPIC_API_KEY
    """

    provider: str
    #: Auto-resolved from ``ANTHROPIC_API_KEY``/``OPENAI_API_KEY``/``<PROVIDER>_API_KEY``.
    api_key: str | None = None
    base_url: str | None = None
    #: Bedrock only. Auto-resolved from ``AWS_REGION``, default ``us-east-1``.
    aws_region: str | None = None
    aws_access_key: str | None = None
    aws_secret_key: str | None = None
    aws_session_token: str | None = None
    #: Anthropic only: send the interleaved-thinking beta header.
    interleaved_thinking: bool = True
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Auto-resolve credentials and validate configuration."""
        if not isinstance(self.provider, str) or not self.provider.strip():
            raise ConfigurationError(
                "provider must be a non-empty string",
                hint="Pass Config(provider='anthropic').",
            )

        if self.use_mock:
            return

        if self.provider == BEDROCK_PROVIDER:
            if self.aws_region is None:
                object.__setattr__(
                    self,
                    "aws_region",
                    os.environ.get("AWS_REGION") or _DEFAULT_AWS_REGION,
                )
            if bool(self.aws_access_key) != bool(self.aws_secret_key):
                raise ConfigurationError(
                    "aws_access_key and aws_secret_key must be given together",
                    hint="Pass both, or neither to use the default AWS credential chain.",
                )
            return

        if self.provider in _KEYLESS_PROVIDERS:
            return

        env_var = api_key_env_var(self.provider)
        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(env_var))

        if not self.api_key:
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, aws_region={self.aws_region!r}, "
            f"aws_access_key={'[REDACTED]' if self.aws_access_key else None}, "
            f"use_mock={self.use_mock})"
        )

    __repr__ = __str__
