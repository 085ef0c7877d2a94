"""API Key Vault — Password-encrypted storage of AI provider credentials.

Security Note (Threat Model):
    API keys are encrypted at rest with a key derived from the user's
    password (scrypt) and an AEAD cipher. Once unlocked, a key lives in
    process memory until it is locked, expires or the vault is closed.
    A memory dump of the application process during that window could
    expose it. This is an accepted limitation; mitigation requires
    OS keychain or secure enclave integration which is out of scope.

    Optional device binding mixes a machine-local secret into every
    password, so a copied vault file is useless without that secret.
"""

from .key_vault import VaultService
from .config import VaultConfig, SessionSettings, KdfPolicy, RateLimitPolicy
from .device import DeviceBinding
from .models import (
    EncryptedRecord,
    ErrorCode,
    OrphanedKeyCheck,
    ProviderStatus,
    SaveResult,
    UnlockResult,
    VaultError,
)
from .providers import Provider, SUPPORTED_PROVIDERS
from .storage import SecretStore, MemorySecretStore, FileSecretStore
from .exceptions import VaultException, DecryptionError, StorageError

__all__ = [
    "VaultService",
    "VaultConfig",
    "SessionSettings",
    "KdfPolicy",
    "RateLimitPolicy",
    "DeviceBinding",
    "EncryptedRecord",
    "ErrorCode",
    "OrphanedKeyCheck",
    "ProviderStatus",
    "SaveResult",
    "UnlockResult",
    "VaultError",
    "Provider",
    "SUPPORTED_PROVIDERS",
    "SecretStore",
    "MemorySecretStore",
    "FileSecretStore",
    "VaultException",
    "DecryptionError",
    "StorageError",
]
