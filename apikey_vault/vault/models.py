"""
Vault data model — encrypted records, volatile session entries and
the structured results returned across the VaultService boundary.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .providers import Provider


class KdfParams(BaseModel):
    """Key-derivation algorithm and work factors stored with each record."""

    algorithm: str = "scrypt"
    n: int
    r: int
    p: int
    length: int = 32

    model_config = {"frozen": True}


class SealedSecret(BaseModel):
    """Output of a single authenticated encryption."""

    ciphertext: bytes
    nonce: bytes
    salt: bytes
    kdf_params: KdfParams
    cipher: str = "aesgcm"

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} cipher={self.cipher} "
            f"kdf={self.kdf_params.algorithm}>"
        )


class EncryptedRecord(SealedSecret):
    """Persisted form of a provider's API key. Holds no plaintext."""

    provider: Provider
    created_at: int
    updated_at: int
    last_used_at: Optional[int] = None
    # fingerprint of the device secret mixed into the password; None if unbound
    device_id: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"<EncryptedRecord provider={self.provider.value} "
            f"cipher={self.cipher} updated_at={self.updated_at}>"
        )


class ProviderMetadata(BaseModel):
    provider: Provider
    created_at: int
    updated_at: int
    last_used_at: Optional[int] = None


class ProviderStatus(BaseModel):
    provider: Provider
    is_unlocked: bool
    created_at: int
    last_used_at: Optional[int] = None


class UnlockedEntry(BaseModel):
    """Decrypted key held in memory for the current session only."""

    provider: Provider
    api_key: str = Field(repr=False)
    unlocked_at: int
    expires_at: int
    last_activity_at: int


class RateLimitRecord(BaseModel):
    failed_attempts: int = 0
    first_failure_at: int = 0
    locked_until: Optional[int] = None
    consecutive_lockouts: int = 0


class RateLimitResult(BaseModel):
    allowed: bool
    attempts_remaining: int = 0
    retry_after_ms: Optional[int] = None


class PasswordValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    strength: str = "weak"
    score: int = 0
    entropy_bits: int = 0


class ApiKeyValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    sanitized_key: Optional[str] = Field(default=None, repr=False)


class ErrorCode(str, Enum):
    PASSWORDS_MISMATCH = "PASSWORDS_MISMATCH"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    INVALID_API_KEY = "INVALID_API_KEY"
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    WRONG_PASSWORD = "WRONG_PASSWORD"
    RATE_LIMITED = "RATE_LIMITED"
    STORAGE_ERROR = "STORAGE_ERROR"


class VaultError(BaseModel):
    """Stable, branchable failure description."""

    code: ErrorCode
    message: str
    errors: list[str] = Field(default_factory=list)
    retry_after_ms: Optional[int] = None
    attempts_remaining: Optional[int] = None


class SaveResult(BaseModel):
    success: bool
    error: Optional[VaultError] = None


class UnlockResult(BaseModel):
    success: bool
    api_key: Optional[str] = Field(default=None, repr=False)
    error: Optional[VaultError] = None


class OrphanedKeyCheck(BaseModel):
    """Stored keys sealed under a device secret that is no longer present."""

    has_orphaned_keys: bool
    providers: list[Provider] = Field(default_factory=list)
    message: str = ""
