"""
Secret Store — durable mapping of provider to encrypted record.

Backends:
- ``MemorySecretStore`` keeps records in a dict (tests, ephemeral hosts).
- ``FileSecretStore`` keeps every record in a single JSON document::

    {"version": 1,
     "records": {"openai": {...}, "anthropic": {...}},
     "rate_limits": {"openai": {...}}}

  bytes fields are base64-wrapped (see ``crypto.record_to_dict``). Writes go
  to a temporary file which then replaces the original, so a crash never
  leaves a half-written vault. Disk I/O runs in a worker thread. Entries
  that cannot be parsed are kept verbatim and written back unchanged.

Failed-unlock state is stored beside the records so a lockout outlives the
process that imposed it.

Security Note:
    Records never contain plaintext. Listing returns metadata only.
"""
import os
import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

import orjson

from .crypto import record_from_dict, record_to_dict
from .exceptions import StorageError
from .models import EncryptedRecord, ProviderMetadata, RateLimitRecord
from .providers import Provider

logger = logging.getLogger("apikey_vault.vault")

STORE_FORMAT_VERSION = 1


class SecretStore(ABC):
    """One encrypted record, and optionally one rate-limit record, per provider."""

    @abstractmethod
    async def put(self, provider: Provider, record: EncryptedRecord) -> None:
        """Insert or replace the record for a provider."""

    @abstractmethod
    async def get(self, provider: Provider) -> Optional[EncryptedRecord]:
        """Return the provider's record, or None."""

    @abstractmethod
    async def delete(self, provider: Provider) -> None:
        """Remove the provider's record. No-op if absent."""

    @abstractmethod
    async def list_providers(self) -> list[ProviderMetadata]:
        """Metadata of every stored record."""

    @abstractmethod
    async def load_rate_limits(self) -> dict[Provider, RateLimitRecord]:
        """Every persisted failed-unlock record."""

    @abstractmethod
    async def save_rate_limit(
        self, provider: Provider, record: Optional[RateLimitRecord],
    ) -> None:
        """Persist a provider's failed-unlock record; None clears it."""

    async def has(self, provider: Provider) -> bool:
        return await self.get(provider) is not None

    async def close(self) -> None:
        pass

    @staticmethod
    def _metadata(record: EncryptedRecord) -> ProviderMetadata:
        return ProviderMetadata(
            provider=record.provider,
            created_at=record.created_at,
            updated_at=record.updated_at,
            last_used_at=record.last_used_at,
        )

    @staticmethod
    def _check(provider: Provider, record: EncryptedRecord) -> None:
        if record.provider != provider:
            raise ValueError(
                f"Record for {record.provider.value} cannot be stored "
                f"under {provider.value}"
            )


class MemorySecretStore(SecretStore):
    """Dict-backed store. Contents are lost when the process exits."""

    def __init__(self):
        self._records: dict[Provider, EncryptedRecord] = {}
        self._limits: dict[Provider, RateLimitRecord] = {}

    async def put(self, provider: Provider, record: EncryptedRecord) -> None:
        self._check(provider, record)
        self._records[provider] = record

    async def get(self, provider: Provider) -> Optional[EncryptedRecord]:
        return self._records.get(provider)

    async def delete(self, provider: Provider) -> None:
        self._records.pop(provider, None)

    async def list_providers(self) -> list[ProviderMetadata]:
        return [self._metadata(rec) for rec in self._records.values()]

    async def load_rate_limits(self) -> dict[Provider, RateLimitRecord]:
        return {p: rec.model_copy() for p, rec in self._limits.items()}

    async def save_rate_limit(
        self, provider: Provider, record: Optional[RateLimitRecord],
    ) -> None:
        if record is None:
            self._limits.pop(provider, None)
        else:
            self._limits[provider] = record.model_copy()


class _Document:
    """Parsed contents of a vault file."""

    def __init__(self):
        self.records: dict[Provider, EncryptedRecord] = {}
        self.limits: dict[Provider, RateLimitRecord] = {}
        # name -> raw JSON of entries that failed to parse
        self.unreadable: dict[str, Any] = {}

    def copy(self) -> "_Document":
        doc = _Document()
        doc.records = dict(self.records)
        doc.limits = dict(self.limits)
        doc.unreadable = dict(self.unreadable)
        return doc


class FileSecretStore(SecretStore):
    """JSON-file store, durable across process restarts."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()
        self._doc: Optional[_Document] = None

    # ------------------------------------------------------------------
    # Disk helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read_file(self) -> _Document:
        doc = _Document()
        if not self.path.exists():
            return doc
        try:
            document = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as err:
            raise StorageError(f"Unable to read vault file {self.path}") from err
        if not isinstance(document, dict) or not isinstance(document.get("records"), dict):
            raise StorageError(f"Vault file {self.path} is malformed")
        version = document.get("version", STORE_FORMAT_VERSION)
        if not isinstance(version, int) or isinstance(version, bool):
            raise StorageError(f"Vault file {self.path} has an invalid version")
        if version > STORE_FORMAT_VERSION:
            raise StorageError(
                f"Vault file version {version} is newer than supported "
                f"({STORE_FORMAT_VERSION})"
            )
        for name, raw in document["records"].items():
            try:
                record = record_from_dict(raw)
                provider = Provider.parse(name)
                self._check(provider, record)
            except ValueError as err:
                logger.error("Vault record %s is unreadable and left untouched: %s", name, err)
                doc.unreadable[name] = raw
                continue
            doc.records[provider] = record

        limits = document.get("rate_limits") or {}
        if not isinstance(limits, dict):
            logger.warning("Ignoring malformed rate-limit section in %s", self.path)
            limits = {}
        for name, raw in limits.items():
            try:
                doc.limits[Provider.parse(name)] = RateLimitRecord.model_validate(raw)
            except ValueError as err:
                logger.warning("Ignoring unreadable rate-limit entry %s: %s", name, err)
        return doc

    def _write_file(self, doc: _Document) -> None:
        records: dict[str, Any] = dict(doc.unreadable)
        records.update({p.value: record_to_dict(rec) for p, rec in doc.records.items()})
        document = {
            "version": STORE_FORMAT_VERSION,
            "records": records,
            "rate_limits": {p.value: rec.model_dump() for p, rec in doc.limits.items()},
        }
        data = orjson.dumps(document, option=orjson.OPT_INDENT_2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=self.path.parent,
            )
            try:
                with os.fdopen(fd, "wb") as fp:
                    fp.write(data)
                    fp.flush()
                    os.fsync(fp.fileno())
                os.chmod(tmp, 0o600)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as err:
            raise StorageError(f"Unable to write vault file {self.path}") from err

    async def _load(self) -> _Document:
        if self._doc is None:
            self._doc = await asyncio.to_thread(self._read_file)
            logger.debug(
                "Vault file %s loaded: %d record(s), %d unreadable",
                self.path, len(self._doc.records), len(self._doc.unreadable),
            )
        return self._doc

    async def _commit(self, doc: _Document) -> None:
        await asyncio.to_thread(self._write_file, doc)
        self._doc = doc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def put(self, provider: Provider, record: EncryptedRecord) -> None:
        self._check(provider, record)
        async with self._lock:
            doc = (await self._load()).copy()
            doc.records[provider] = record
            doc.unreadable.pop(provider.value, None)
            await self._commit(doc)

    async def get(self, provider: Provider) -> Optional[EncryptedRecord]:
        async with self._lock:
            return (await self._load()).records.get(provider)

    async def delete(self, provider: Provider) -> None:
        async with self._lock:
            current = await self._load()
            if provider not in current.records and provider.value not in current.unreadable:
                return
            doc = current.copy()
            doc.records.pop(provider, None)
            doc.unreadable.pop(provider.value, None)
            await self._commit(doc)

    async def list_providers(self) -> list[ProviderMetadata]:
        async with self._lock:
            doc = await self._load()
        return [self._metadata(rec) for rec in doc.records.values()]

    async def load_rate_limits(self) -> dict[Provider, RateLimitRecord]:
        async with self._lock:
            doc = await self._load()
        return {p: rec.model_copy() for p, rec in doc.limits.items()}

    async def save_rate_limit(
        self, provider: Provider, record: Optional[RateLimitRecord],
    ) -> None:
        async with self._lock:
            current = await self._load()
            if record is None and provider not in current.limits:
                return
            doc = current.copy()
            if record is None:
                del doc.limits[provider]
            else:
                doc.limits[provider] = record.model_copy()
            await self._commit(doc)

    async def close(self) -> None:
        self._doc = None
