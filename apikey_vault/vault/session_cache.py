"""
Session cache — decrypted API keys held in process memory.

Entries expire on an absolute deadline (``session_expiry_minutes`` after
unlock) or after ``inactivity_timeout_minutes`` without use. Expiry is
checked lazily on every read; ``sweep()`` may be called to drop stale
entries early but nothing depends on it.

Security Note:
    Plaintext keys live only here and are never persisted.
"""
import logging
from typing import Optional

from .clock import Clock, now_ms
from .config import SessionSettings
from .models import UnlockedEntry
from .providers import Provider

logger = logging.getLogger("apikey_vault.vault")


class SessionCache:
    """Provider → UnlockedEntry map with soft TTL."""

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        clock: Clock = now_ms,
    ):
        self._settings = settings or SessionSettings()
        self._clock = clock
        self._entries: dict[Provider, UnlockedEntry] = {}

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def update_settings(self, settings: SessionSettings) -> None:
        """Apply a new expiry policy; existing deadlines are capped to it."""
        self._settings = settings
        for entry in self._entries.values():
            entry.expires_at = min(
                entry.expires_at, entry.unlocked_at + settings.session_expiry_ms,
            )

    def _expired(self, entry: UnlockedEntry, now: int) -> bool:
        if entry.expires_at <= now:
            return True
        return now - entry.last_activity_at >= self._settings.inactivity_timeout_ms

    def put(self, provider: Provider, api_key: str) -> UnlockedEntry:
        now = self._clock()
        entry = UnlockedEntry(
            provider=provider,
            api_key=api_key,
            unlocked_at=now,
            expires_at=now + self._settings.session_expiry_ms,
            last_activity_at=now,
        )
        self._entries[provider] = entry
        return entry

    def get(self, provider: Provider) -> Optional[str]:
        """Return the key if unlocked, recording activity. Drops expired entries."""
        entry = self._entries.get(provider)
        if entry is None:
            return None
        now = self._clock()
        if self._expired(entry, now):
            del self._entries[provider]
            logger.debug("Session entry for %s expired", provider.value)
            return None
        entry.last_activity_at = now
        return entry.api_key

    def peek(self, provider: Provider) -> bool:
        """Membership and expiry check without side effects."""
        entry = self._entries.get(provider)
        return entry is not None and not self._expired(entry, self._clock())

    def extend(self, provider: Provider) -> bool:
        """Restart the absolute deadline of a live entry."""
        entry = self._entries.get(provider)
        now = self._clock()
        if entry is None or self._expired(entry, now):
            return False
        entry.expires_at = now + self._settings.session_expiry_ms
        entry.last_activity_at = now
        return True

    def remove(self, provider: Provider) -> None:
        self._entries.pop(provider, None)

    def clear(self) -> None:
        self._entries.clear()

    def providers(self) -> list[Provider]:
        now = self._clock()
        return [p for p, e in self._entries.items() if not self._expired(e, now)]

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        stale = [p for p, e in self._entries.items() if self._expired(e, now)]
        for provider in stale:
            del self._entries[provider]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, provider: object) -> bool:
        return isinstance(provider, Provider) and self.peek(provider)
