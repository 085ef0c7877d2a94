"""
Rate Limiter — per-provider failed-unlock counter with escalating lockout.

After ``max_attempts`` consecutive failures the provider is locked for
``initial_lockout_ms``; each further lockout doubles the window up to
``max_lockout_ms``. Failures older than ``attempt_window_ms`` are forgotten.
A successful unlock clears the provider's record entirely.

The limiter itself is synchronous and in-memory; VaultService seeds it from
the secret store with ``restore()`` and writes back each changed record
taken with ``snapshot()``, so a lockout survives a restart.
"""
import math
import logging
from typing import Optional

from .clock import Clock, now_ms
from .config import MAX_ATTEMPTS, RateLimitPolicy
from .models import RateLimitRecord, RateLimitResult
from .providers import Provider

logger = logging.getLogger("apikey_vault.vault")


class RateLimiter:
    """Tracks failed unlock attempts per provider."""

    def __init__(
        self,
        policy: Optional[RateLimitPolicy] = None,
        clock: Clock = now_ms,
    ):
        self._policy = policy or RateLimitPolicy()
        self._clock = clock
        self._records: dict[Provider, RateLimitRecord] = {}

    @property
    def max_attempts(self) -> int:
        return self._policy.max_attempts

    def _record(self, provider: Provider) -> RateLimitRecord:
        return self._records.get(provider) or RateLimitRecord()

    def _window_expired(self, record: RateLimitRecord, now: int) -> bool:
        return (
            record.failed_attempts > 0
            and now - record.first_failure_at > self._policy.attempt_window_ms
        )

    def _lockout_duration(self, consecutive_lockouts: int) -> int:
        duration = self._policy.initial_lockout_ms * (
            self._policy.lockout_multiplier ** consecutive_lockouts
        )
        return int(min(duration, self._policy.max_lockout_ms))

    def get_record(self, provider: Provider) -> RateLimitRecord:
        """Return a copy of the provider's current record."""
        return self._record(provider).model_copy()

    def snapshot(self, provider: Provider) -> Optional[RateLimitRecord]:
        """Copy of the tracked record, or None when the provider has a clean slate."""
        record = self._records.get(provider)
        return record.model_copy() if record is not None else None

    def restore(self, records: dict[Provider, RateLimitRecord]) -> None:
        """Seed state from persisted records; records already tracked win."""
        for provider, record in records.items():
            self._records.setdefault(provider, record.model_copy())

    def check_limit(self, provider: Provider) -> RateLimitResult:
        """Report whether an unlock attempt is currently allowed."""
        record = self._record(provider)
        now = self._clock()
        if record.locked_until is not None and record.locked_until > now:
            return RateLimitResult(
                allowed=False,
                attempts_remaining=0,
                retry_after_ms=record.locked_until - now,
            )
        failed = 0 if self._window_expired(record, now) else record.failed_attempts
        return RateLimitResult(
            allowed=True,
            attempts_remaining=max(0, self.max_attempts - failed),
        )

    def record_failure(self, provider: Provider) -> RateLimitResult:
        """Count a failed attempt, locking the provider once the limit is hit."""
        record = self._record(provider)
        now = self._clock()
        if record.failed_attempts == 0 or self._window_expired(record, now):
            record.failed_attempts = 0
            record.first_failure_at = now
        record.failed_attempts += 1

        if record.failed_attempts >= self.max_attempts:
            duration = self._lockout_duration(record.consecutive_lockouts)
            record.locked_until = now + duration
            record.consecutive_lockouts += 1
            record.failed_attempts = 0
            record.first_failure_at = 0
            self._records[provider] = record
            logger.warning(
                "Provider %s locked for %d ms after %d failed unlock attempts",
                provider.value, duration, self.max_attempts,
            )
            return RateLimitResult(
                allowed=False, attempts_remaining=0, retry_after_ms=duration,
            )

        self._records[provider] = record
        return RateLimitResult(
            allowed=True,
            attempts_remaining=self.max_attempts - record.failed_attempts,
        )

    def record_success(self, provider: Provider) -> None:
        self._records.pop(provider, None)

    def reset(self, provider: Optional[Provider] = None) -> None:
        """Forget failure history for one provider, or for all of them."""
        if provider is None:
            self._records.clear()
        else:
            self._records.pop(provider, None)


def format_lockout_message(retry_after_ms: int) -> str:
    """Human-readable lockout notice."""
    seconds = math.ceil(retry_after_ms / 1000)
    if seconds < 60:
        return f"Too many attempts. Try again in {seconds} second{'s' if seconds != 1 else ''}."
    minutes = math.ceil(seconds / 60)
    return f"Too many attempts. Try again in {minutes} minute{'s' if minutes > 1 else ''}."
