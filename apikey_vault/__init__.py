"""APIKey Vault.

Encrypted, password-gated storage for AI provider API keys.
"""
from .version import __version__
from .vault import (
    VaultService,
    VaultConfig,
    SessionSettings,
    ErrorCode,
    Provider,
)

__all__ = (
    "__version__",
    "VaultService",
    "VaultConfig",
    "SessionSettings",
    "ErrorCode",
    "Provider",
)
