"""
Supported AI providers and the structural format of their API keys.
"""
import re
from enum import Enum
from typing import NamedTuple


class Provider(str, Enum):
    """Closed set of providers whose API keys can be stored."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        """Normalize a provider identifier.

        Raises:
            ValueError: If the identifier is not a supported provider.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unsupported provider: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported provider: {value!r}") from None


class ApiKeyPattern(NamedTuple):
    regex: re.Pattern
    prefix: str
    format: str
    example: str


API_KEY_PATTERNS: dict[Provider, ApiKeyPattern] = {
    # legacy (sk-), project (sk-proj-) and service account (sk-svcacct-) keys
    Provider.OPENAI: ApiKeyPattern(
        regex=re.compile(r"^sk-(?:proj-|svcacct-)?[A-Za-z0-9_-]{20,}$"),
        prefix="sk-",
        format="sk-XXXX, sk-proj-XXXX, or sk-svcacct-XXXX format",
        example="sk-proj-abc123...",
    ),
    Provider.ANTHROPIC: ApiKeyPattern(
        regex=re.compile(r"^sk-ant-[A-Za-z0-9]{2,10}-[A-Za-z0-9_-]{40,}$"),
        prefix="sk-ant-",
        format="sk-ant-XXXX-XXXXXXXX... format",
        example="sk-ant-api03-...",
    ),
    Provider.OPENROUTER: ApiKeyPattern(
        regex=re.compile(r"^sk-or-v1-[A-Za-z0-9]{64}$"),
        prefix="sk-or-v1-",
        format="sk-or-v1-XXXX format (64 character suffix)",
        example="sk-or-v1-abc123...",
    ),
}

PROVIDER_DISPLAY_NAMES: dict[Provider, str] = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.OPENROUTER: "OpenRouter",
}

SUPPORTED_PROVIDERS = tuple(p.value for p in Provider)
