"""
VaultService — Password-gated storage of AI provider API keys.

Provides the public API of the vault:
- ``save_key(...)`` — validate, encrypt and persist a key; leaves it unlocked
- ``unlock(provider, password)`` — decrypt a key into the session cache
- ``lock(provider)`` / ``lock_all()`` — drop decrypted keys from memory
- ``delete_key(provider)`` — remove the stored record
- ``change_password(...)`` — re-encrypt under a new password
- ``get_unlocked_key`` / ``is_unlocked`` / ``has_key`` / ``list_providers``
- ``check_orphaned_keys`` / ``cleanup_orphaned_keys`` / ``revoke_device_binding``
  (optional device binding, see ``device.py``)

Per-provider state machine::

    NoKey --save--> Unlocked <--unlock/lock--> Locked
    NoKey <--delete-- Locked | Unlocked

Every operation returns a structured result (``SaveResult``/``UnlockResult``)
carrying an ``ErrorCode``; exceptions from the crypto and storage layers do
not cross this boundary.

Security Note:
    Never log plaintext, passwords or ciphertext values. Only log providers,
    operations and counts. Decrypted keys exist in process memory while
    unlocked (see threat model in ``__init__.py``).
"""
import time
import asyncio
import logging
import secrets
from typing import Optional, Union

from .clock import Clock, now_ms
from .config import SessionSettings, VaultConfig
from .crypto import decrypt, encrypt, needs_upgrade
from .device import DeviceBinding
from .exceptions import DecryptionError, StorageError
from .models import (
    ApiKeyValidationResult,
    EncryptedRecord,
    ErrorCode,
    OrphanedKeyCheck,
    PasswordValidationResult,
    ProviderStatus,
    SaveResult,
    UnlockResult,
    VaultError,
)
from .providers import Provider
from .rate_limit import RateLimiter, format_lockout_message
from .session_cache import SessionCache
from .storage import FileSecretStore, MemorySecretStore, SecretStore
from . import validation

logger = logging.getLogger("apikey_vault.vault")

ProviderLike = Union[str, Provider]


def _same_secret(a: str, b: str) -> bool:
    return secrets.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _error(code: ErrorCode, message: str, **kwargs) -> VaultError:
    return VaultError(code=code, message=message, **kwargs)


class VaultService:
    """Encrypted API key vault with an in-memory unlocked-key cache.

    One instance owns the session cache; failed-unlock state is mirrored to
    the secret store so lockouts survive a restart. Create it at application
    start, pass it to callers, and ``close()`` it at teardown.
    Mutating operations on the same provider are serialized; different
    providers proceed independently.
    """

    def __init__(
        self,
        store: Optional[SecretStore] = None,
        config: Optional[VaultConfig] = None,
        clock: Clock = now_ms,
        device: Optional[DeviceBinding] = None,
    ):
        self._config = config or VaultConfig()
        if store is None:
            if self._config.storage_path is not None:
                store = FileSecretStore(self._config.storage_path)
            else:
                store = MemorySecretStore()
        if device is None and self._config.device_secret_path is not None:
            device = DeviceBinding(self._config.device_secret_path)
        self._store = store
        self._device = device
        self._limits_loaded = False
        self._clock = clock
        self._kdf_params = self._config.kdf.to_params()
        self._cipher = self._config.cipher_backend
        self._limiter = RateLimiter(self._config.rate_limit, clock=clock)
        self._cache = SessionCache(self._config.session, clock=clock)
        self._locks: dict[Provider, asyncio.Lock] = {}

    @classmethod
    def from_env(cls) -> "VaultService":
        return cls(config=VaultConfig.from_env())

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock_for(self, provider: Provider) -> asyncio.Lock:
        return self._locks.setdefault(provider, asyncio.Lock())

    @staticmethod
    def _parse(provider: ProviderLike) -> Optional[Provider]:
        try:
            return Provider.parse(provider)
        except ValueError:
            return None

    async def _pad(self, started: float) -> None:
        """Stretch a failed unlock to the configured minimum duration."""
        remaining = self._config.min_unlock_duration_ms / 1000 - (
            time.monotonic() - started
        )
        if remaining > 0:
            await asyncio.sleep(remaining)

    # Device binding and crypto run in worker threads: the first use of the
    # device secret may touch the disk and scrypt is CPU bound.

    def _device_id(self) -> Optional[str]:
        return self._device.device_id if self._device is not None else None

    def _bound_password(self, device_id: Optional[str], password: str) -> str:
        if device_id is None:
            return password
        if self._device is None or self._device.device_id != device_id:
            # sealed under a device secret that is gone
            raise DecryptionError()
        return self._device.compound_password(password)

    def _seal_sync(self, provider: Provider, api_key: str, password: str):
        device_id = self._device_id()
        sealed = encrypt(
            api_key,
            self._bound_password(device_id, password),
            self._kdf_params,
            self._cipher,
            provider.value.encode("utf-8"),
        )
        return sealed, device_id

    def _open_sync(self, record: EncryptedRecord, password: str) -> str:
        return decrypt(
            record,
            self._bound_password(record.device_id, password),
            record.provider.value.encode("utf-8"),
        )

    async def _seal(
        self,
        provider: Provider,
        api_key: str,
        password: str,
        created_at: Optional[int] = None,
    ) -> EncryptedRecord:
        sealed, device_id = await asyncio.to_thread(
            self._seal_sync, provider, api_key, password,
        )
        now = self._clock()
        return EncryptedRecord(
            **sealed.model_dump(),
            provider=provider,
            created_at=created_at if created_at is not None else now,
            updated_at=now,
            device_id=device_id,
        )

    async def _open(self, record: EncryptedRecord, password: str) -> str:
        return await asyncio.to_thread(self._open_sync, record, password)

    async def _load_limits(self) -> None:
        if not self._limits_loaded:
            self._limiter.restore(await self._store.load_rate_limits())
            self._limits_loaded = True

    async def _persist_limit(self, provider: Provider) -> None:
        try:
            await self._store.save_rate_limit(provider, self._limiter.snapshot(provider))
        except StorageError as err:
            logger.warning(
                "Could not persist rate-limit state for %s: %s", provider.value, err,
            )

    async def _after_unlock(
        self, record: EncryptedRecord, api_key: str, password: str,
    ) -> None:
        """Stamp last use and re-seal records made with outdated parameters."""
        try:
            device_id = await asyncio.to_thread(self._device_id)
            if (
                needs_upgrade(record, self._kdf_params, self._cipher)
                or record.device_id != device_id
            ):
                upgraded = await self._seal(
                    record.provider, api_key, password, created_at=record.created_at,
                )
                record = upgraded
                logger.info(
                    "Vault record for %s re-encrypted with current parameters",
                    record.provider.value,
                )
            record = record.model_copy(update={"last_used_at": self._clock()})
            await self._store.put(record.provider, record)
        except StorageError as err:
            logger.warning(
                "Could not update vault record for %s after unlock: %s",
                record.provider.value, err,
            )

    async def _verify(
        self, provider: Provider, password: str, update_record: bool = True,
    ) -> UnlockResult:
        """Decrypt the stored record, enforcing the rate limit.

        Caller must hold the provider lock.
        """
        started = time.monotonic()
        try:
            await self._load_limits()
            record = await self._store.get(provider)
        except StorageError as err:
            logger.error("Vault read failed for %s: %s", provider.value, err)
            return UnlockResult(success=False, error=_error(
                ErrorCode.STORAGE_ERROR, "Failed to access API key",
            ))
        if record is None:
            await self._pad(started)
            return UnlockResult(success=False, error=_error(
                ErrorCode.KEY_NOT_FOUND, "No API key found for this provider",
            ))

        limit = self._limiter.check_limit(provider)
        if not limit.allowed:
            return UnlockResult(success=False, error=_error(
                ErrorCode.RATE_LIMITED,
                format_lockout_message(limit.retry_after_ms),
                retry_after_ms=limit.retry_after_ms,
                attempts_remaining=0,
            ))

        try:
            api_key = await self._open(record, password)
        except StorageError as err:
            logger.error("Device secret unavailable for %s: %s", provider.value, err)
            return UnlockResult(success=False, error=_error(
                ErrorCode.STORAGE_ERROR, "Failed to access API key",
            ))
        except DecryptionError:
            attempt = self._limiter.record_failure(provider)
            await self._persist_limit(provider)
            await self._pad(started)
            if attempt.allowed:
                message = f"Wrong password. {attempt.attempts_remaining} attempts remaining."
            else:
                message = format_lockout_message(attempt.retry_after_ms)
            logger.info("Vault unlock failed: provider=%s", provider.value)
            return UnlockResult(success=False, error=_error(
                ErrorCode.WRONG_PASSWORD,
                message,
                attempts_remaining=attempt.attempts_remaining,
                retry_after_ms=attempt.retry_after_ms,
            ))

        self._limiter.record_success(provider)
        await self._persist_limit(provider)
        if update_record:
            await self._after_unlock(record, api_key, password)
        return UnlockResult(success=True, api_key=api_key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save_key(
        self,
        provider: ProviderLike,
        api_key: str,
        password: str,
        confirm_password: str,
    ) -> SaveResult:
        """Encrypt and persist an API key, replacing any previous one.

        The provider is left unlocked. The rate limiter is not consulted.
        """
        if not _same_secret(password, confirm_password):
            return SaveResult(success=False, error=_error(
                ErrorCode.PASSWORDS_MISMATCH, "Passwords do not match",
            ))
        check = self.validate_password(password)
        if not check.valid:
            return SaveResult(success=False, error=_error(
                ErrorCode.INVALID_PASSWORD, ". ".join(check.errors), errors=check.errors,
            ))
        key_check = validation.validate_api_key(provider, api_key)
        if not key_check.valid:
            return SaveResult(success=False, error=_error(
                ErrorCode.INVALID_API_KEY, key_check.error or "Invalid API key",
            ))

        parsed = Provider.parse(provider)
        async with self._lock_for(parsed):
            try:
                record = await self._seal(parsed, key_check.sanitized_key, password)
                await self._store.put(parsed, record)
            except Exception as err:
                logger.error("Vault save failed for %s: %s", parsed.value, err)
                return SaveResult(success=False, error=_error(
                    ErrorCode.STORAGE_ERROR, "Failed to save API key",
                ))
            self._cache.put(parsed, key_check.sanitized_key)

        logger.info("Vault save: provider=%s", parsed.value)
        return SaveResult(success=True)

    async def unlock(self, provider: ProviderLike, password: str) -> UnlockResult:
        """Return the provider's key, decrypting it if it is not cached."""
        parsed = self._parse(provider)
        if parsed is None:
            await self._pad(time.monotonic())
            return UnlockResult(success=False, error=_error(
                ErrorCode.KEY_NOT_FOUND, "No API key found for this provider",
            ))
        async with self._lock_for(parsed):
            cached = self._cache.get(parsed)
            if cached is not None:
                return UnlockResult(success=True, api_key=cached)
            result = await self._verify(parsed, password)
            if result.success:
                self._cache.put(parsed, result.api_key)
                logger.info("Vault unlock: provider=%s", parsed.value)
            return result

    async def lock(self, provider: ProviderLike) -> None:
        parsed = self._parse(provider)
        if parsed is None:
            return
        async with self._lock_for(parsed):
            self._cache.remove(parsed)

    async def lock_all(self) -> None:
        self._cache.clear()
        logger.debug("Vault locked: all providers")

    async def delete_key(self, provider: ProviderLike) -> SaveResult:
        """Remove the stored record and any cached key.

        Failed-attempt history is kept, so a lockout outlives the key.
        """
        parsed = self._parse(provider)
        if parsed is None:
            return SaveResult(success=True)
        async with self._lock_for(parsed):
            self._cache.remove(parsed)
            try:
                await self._store.delete(parsed)
            except StorageError as err:
                logger.error("Vault delete failed for %s: %s", parsed.value, err)
                return SaveResult(success=False, error=_error(
                    ErrorCode.STORAGE_ERROR, "Failed to delete API key",
                ))
        logger.info("Vault delete: provider=%s", parsed.value)
        return SaveResult(success=True)

    async def change_password(
        self,
        provider: ProviderLike,
        old_password: str,
        new_password: str,
        confirm_new_password: str,
    ) -> SaveResult:
        """Re-encrypt a stored key under a new password.

        The old password is always checked against the stored record, even
        when the provider is unlocked, under the same rate limit as
        ``unlock``. The provider stays unlocked afterwards.
        """
        if not _same_secret(new_password, confirm_new_password):
            return SaveResult(success=False, error=_error(
                ErrorCode.PASSWORDS_MISMATCH, "New passwords do not match",
            ))
        check = self.validate_password(new_password)
        if not check.valid:
            return SaveResult(success=False, error=_error(
                ErrorCode.INVALID_PASSWORD, ". ".join(check.errors), errors=check.errors,
            ))
        parsed = self._parse(provider)
        if parsed is None:
            return SaveResult(success=False, error=_error(
                ErrorCode.KEY_NOT_FOUND, "No API key found for this provider",
            ))

        async with self._lock_for(parsed):
            verified = await self._verify(parsed, old_password, update_record=False)
            if not verified.success:
                return SaveResult(success=False, error=verified.error)
            try:
                current = await self._store.get(parsed)
                record = await self._seal(
                    parsed,
                    verified.api_key,
                    new_password,
                    created_at=current.created_at if current else None,
                )
                record = record.model_copy(update={"last_used_at": self._clock()})
                await self._store.put(parsed, record)
            except Exception as err:
                logger.error("Vault password change failed for %s: %s", parsed.value, err)
                return SaveResult(success=False, error=_error(
                    ErrorCode.STORAGE_ERROR, "Failed to update password",
                ))
            self._cache.put(parsed, verified.api_key)

        logger.info("Vault password changed: provider=%s", parsed.value)
        return SaveResult(success=True)

    async def is_unlocked(self, provider: ProviderLike) -> bool:
        parsed = self._parse(provider)
        return parsed is not None and self._cache.peek(parsed)

    async def has_key(self, provider: ProviderLike) -> bool:
        parsed = self._parse(provider)
        if parsed is None:
            return False
        try:
            return await self._store.has(parsed)
        except StorageError as err:
            logger.error("Vault read failed for %s: %s", parsed.value, err)
            return False

    async def get_unlocked_key(self, provider: ProviderLike) -> Optional[str]:
        """Cached key or None. Never decrypts."""
        parsed = self._parse(provider)
        if parsed is None:
            return None
        return self._cache.get(parsed)

    async def list_providers(self) -> list[ProviderStatus]:
        try:
            stored = await self._store.list_providers()
        except StorageError as err:
            logger.error("Vault listing failed: %s", err)
            return []
        return [
            ProviderStatus(
                provider=meta.provider,
                is_unlocked=self._cache.peek(meta.provider),
                created_at=meta.created_at,
                last_used_at=meta.last_used_at,
            )
            for meta in stored
        ]

    # ------------------------------------------------------------------
    # Device binding
    # ------------------------------------------------------------------

    async def _orphaned(self) -> list[Provider]:
        current = None
        if self._device is not None and self._device.exists():
            current = await asyncio.to_thread(self._device_id)
        orphaned = []
        for meta in await self._store.list_providers():
            record = await self._store.get(meta.provider)
            if record is not None and record.device_id not in (None, current):
                orphaned.append(record.provider)
        return orphaned

    async def check_orphaned_keys(self) -> OrphanedKeyCheck:
        """Report stored keys sealed under a device secret that is gone.

        Such keys can never be decrypted again; they should be deleted and
        entered anew.
        """
        try:
            providers = await self._orphaned()
        except StorageError as err:
            logger.error("Vault orphan check failed: %s", err)
            return OrphanedKeyCheck(has_orphaned_keys=False)
        if not providers:
            return OrphanedKeyCheck(has_orphaned_keys=False)
        names = ", ".join(p.display_name for p in providers)
        return OrphanedKeyCheck(
            has_orphaned_keys=True,
            providers=providers,
            message=(
                f"The following API keys cannot be decrypted: {names}. "
                "The device secret they were bound to is no longer present. "
                "Please delete these entries and re-enter your API keys."
            ),
        )

    async def cleanup_orphaned_keys(self) -> list[Provider]:
        """Delete every orphaned key; returns the providers removed."""
        check = await self.check_orphaned_keys()
        for provider in check.providers:
            await self.delete_key(provider)
        if check.providers:
            logger.warning("Vault removed %d orphaned key(s)", len(check.providers))
        return check.providers

    async def revoke_device_binding(self) -> SaveResult:
        """Discard the device secret, orphaning every key bound to it.

        All providers are locked. Keys saved afterwards are bound to a newly
        generated secret; ``check_orphaned_keys`` lists the ones left behind.
        """
        await self.lock_all()
        if self._device is None:
            return SaveResult(success=True)
        try:
            await asyncio.to_thread(self._device.revoke)
        except StorageError as err:
            logger.error("Device binding revocation failed: %s", err)
            return SaveResult(success=False, error=_error(
                ErrorCode.STORAGE_ERROR, "Failed to revoke device binding",
            ))
        return SaveResult(success=True)

    # ------------------------------------------------------------------
    # Session policy
    # ------------------------------------------------------------------

    async def extend_session(self, provider: ProviderLike) -> bool:
        parsed = self._parse(provider)
        return parsed is not None and self._cache.extend(parsed)

    async def purge_expired(self) -> int:
        removed = self._cache.sweep()
        if removed:
            logger.debug("Vault purged %d expired session entries", removed)
        return removed

    def update_session_settings(
        self, settings: Union[SessionSettings, dict],
    ) -> SessionSettings:
        """Apply new expiry values; raw dicts are clamped to allowed bounds."""
        if not isinstance(settings, SessionSettings):
            settings = SessionSettings.sanitize(settings)
        self._cache.update_settings(settings)
        return settings

    # ------------------------------------------------------------------
    # Validator helpers
    # ------------------------------------------------------------------

    def validate_password(self, password: str) -> PasswordValidationResult:
        return validation.validate_password(
            password, require_symbol=self._config.require_symbol,
        )

    def validate_api_key(
        self, provider: ProviderLike, api_key: str,
    ) -> ApiKeyValidationResult:
        return validation.validate_api_key(provider, api_key)

    def get_password_requirements(self) -> list[str]:
        return validation.get_password_requirements(self._config.require_symbol)

    def get_api_key_format_hint(self, provider: ProviderLike) -> Optional[str]:
        return validation.get_api_key_format_hint(provider)

    def mask_api_key(self, api_key: str) -> str:
        return validation.mask_api_key(api_key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Drop every decrypted key and release the store."""
        await self.lock_all()
        await self._store.close()

    async def __aenter__(self) -> "VaultService":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
