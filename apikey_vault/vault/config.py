"""
Vault Configuration — Validated settings for key derivation, lockout and sessions.

Reads overrides from environment variables:
    APIKEY_VAULT_PATH = <path to the encrypted key file>
    APIKEY_VAULT_DEVICE_SECRET = <path to the device-binding secret file>
    APIKEY_VAULT_CIPHER_BACKEND = aesgcm | chacha20
    APIKEY_VAULT_SCRYPT_N = <power of two>
    APIKEY_VAULT_SESSION_EXPIRY_MINUTES = <5..360>
    APIKEY_VAULT_INACTIVITY_MINUTES = <5..60>

Security Note:
    Never log passwords or key material. Only log providers and parameters.
"""
import os
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .models import KdfParams

logger = logging.getLogger("apikey_vault.vault")

SUPPORTED_CIPHERS = ("aesgcm", "chacha20")

# Session-policy bounds, in minutes.
MIN_EXPIRY_MINUTES = 5
MAX_EXPIRY_MINUTES = 360
DEFAULT_EXPIRY_MINUTES = 30
MIN_INACTIVITY_MINUTES = 5
MAX_INACTIVITY_MINUTES = 60
DEFAULT_INACTIVITY_MINUTES = 15
WARNING_THRESHOLD_MINUTES = 360

MAX_ATTEMPTS = 5


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    """Clamp a numeric value to [low, high]; non-numeric input yields default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if value != value:  # NaN
        return default
    return int(min(max(value, low), high))


class KdfPolicy(BaseModel):
    """scrypt work factors applied to newly encrypted records."""

    n: int = Field(default=2 ** 15, ge=2 ** 10)
    r: int = Field(default=8, ge=1)
    p: int = Field(default=1, ge=1)

    @field_validator("n")
    @classmethod
    def validate_power_of_two(cls, v: int) -> int:
        """scrypt requires the cost parameter to be a power of two."""
        if v & (v - 1):
            raise ValueError(f"scrypt n must be a power of two, got {v}")
        return v

    def to_params(self) -> KdfParams:
        return KdfParams(algorithm="scrypt", n=self.n, r=self.r, p=self.p)


class RateLimitPolicy(BaseModel):
    """Failed-unlock throttling parameters."""

    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1)
    initial_lockout_ms: int = Field(default=30_000, gt=0)
    lockout_multiplier: float = Field(default=2.0, ge=1.0)
    max_lockout_ms: int = Field(default=3_600_000, gt=0)
    attempt_window_ms: int = Field(default=900_000, gt=0)


class SessionSettings(BaseModel):
    """Expiry policy for unlocked keys held in memory."""

    session_expiry_minutes: int = Field(
        default=DEFAULT_EXPIRY_MINUTES,
        ge=MIN_EXPIRY_MINUTES,
        le=MAX_EXPIRY_MINUTES,
    )
    inactivity_timeout_minutes: int = Field(
        default=DEFAULT_INACTIVITY_MINUTES,
        ge=MIN_INACTIVITY_MINUTES,
        le=MAX_INACTIVITY_MINUTES,
    )

    @property
    def session_expiry_ms(self) -> int:
        return self.session_expiry_minutes * 60_000

    @property
    def inactivity_timeout_ms(self) -> int:
        return self.inactivity_timeout_minutes * 60_000

    @property
    def show_security_warning(self) -> bool:
        return self.session_expiry_minutes >= WARNING_THRESHOLD_MINUTES

    @classmethod
    def sanitize(cls, raw: Optional[dict] = None) -> "SessionSettings":
        """Build settings from untrusted stored preferences.

        Out-of-range values are clamped to the allowed bounds and
        missing or malformed values fall back to defaults.
        """
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            session_expiry_minutes=_clamp(
                raw.get("session_expiry_minutes"),
                MIN_EXPIRY_MINUTES,
                MAX_EXPIRY_MINUTES,
                DEFAULT_EXPIRY_MINUTES,
            ),
            inactivity_timeout_minutes=_clamp(
                raw.get("inactivity_timeout_minutes"),
                MIN_INACTIVITY_MINUTES,
                MAX_INACTIVITY_MINUTES,
                DEFAULT_INACTIVITY_MINUTES,
            ),
        )


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    storage_path: Optional[Path] = None
    device_secret_path: Optional[Path] = None
    cipher_backend: str = Field(default="aesgcm")
    kdf: KdfPolicy = Field(default_factory=KdfPolicy)
    rate_limit: RateLimitPolicy = Field(default_factory=RateLimitPolicy)
    session: SessionSettings = Field(default_factory=SessionSettings)
    min_unlock_duration_ms: int = Field(default=400, ge=0)
    require_symbol: bool = False

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in SUPPORTED_CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        path = os.environ.get("APIKEY_VAULT_PATH")
        device_path = os.environ.get("APIKEY_VAULT_DEVICE_SECRET")
        kdf = KdfPolicy()
        if "APIKEY_VAULT_SCRYPT_N" in os.environ:
            kdf = KdfPolicy(n=int(os.environ["APIKEY_VAULT_SCRYPT_N"]))
        session = SessionSettings.sanitize({
            "session_expiry_minutes": _env_int("APIKEY_VAULT_SESSION_EXPIRY_MINUTES"),
            "inactivity_timeout_minutes": _env_int("APIKEY_VAULT_INACTIVITY_MINUTES"),
        })
        config = cls(
            storage_path=Path(path).expanduser() if path else None,
            device_secret_path=Path(device_path).expanduser() if device_path else None,
            cipher_backend=os.environ.get("APIKEY_VAULT_CIPHER_BACKEND", "aesgcm"),
            kdf=kdf,
            session=session,
        )
        logger.debug(
            "Vault config loaded: cipher=%s scrypt_n=%d storage=%s",
            config.cipher_backend, config.kdf.n, config.storage_path or "memory",
        )
        return config


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s", name)
        return None
