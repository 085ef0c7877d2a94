"""
Tests for the failed-unlock rate limiter.

Lockout policy under test: 5 failures allowed, then 30s, doubling per
consecutive lockout up to 1 hour; failures older than 15 minutes are
forgotten.
"""
import pytest

from apikey_vault.vault.config import RateLimitPolicy
from apikey_vault.vault.models import RateLimitRecord
from apikey_vault.vault.providers import Provider
from apikey_vault.vault.rate_limit import RateLimiter, format_lockout_message


@pytest.fixture
def limiter(clock):
    return RateLimiter(RateLimitPolicy(), clock=clock)


class TestRateLimiter:

    def test_fresh_provider_allowed(self, limiter):
        result = limiter.check_limit(Provider.OPENAI)
        assert result.allowed is True
        assert result.attempts_remaining == 5
        assert result.retry_after_ms is None

    def test_attempts_count_down(self, limiter):
        for remaining in (4, 3, 2, 1):
            result = limiter.record_failure(Provider.OPENAI)
            assert result.allowed is True
            assert result.attempts_remaining == remaining
            assert limiter.check_limit(Provider.OPENAI).attempts_remaining == remaining

    def test_fifth_failure_locks(self, limiter):
        for _ in range(4):
            limiter.record_failure(Provider.OPENAI)
        result = limiter.record_failure(Provider.OPENAI)
        assert result.allowed is False
        assert result.retry_after_ms == 30_000

        check = limiter.check_limit(Provider.OPENAI)
        assert check.allowed is False
        assert check.retry_after_ms == 30_000

    def test_retry_after_counts_down_and_stays_positive(self, limiter, clock):
        for _ in range(5):
            limiter.record_failure(Provider.OPENAI)
        clock.advance(29_999)
        check = limiter.check_limit(Provider.OPENAI)
        assert check.allowed is False
        assert check.retry_after_ms == 1

        clock.advance(1)
        assert limiter.check_limit(Provider.OPENAI).allowed is True

    def test_lockout_escalates(self, limiter, clock):
        durations = []
        for _ in range(3):
            for _ in range(5):
                result = limiter.record_failure(Provider.OPENAI)
            durations.append(result.retry_after_ms)
            clock.advance(result.retry_after_ms)
        assert durations == [30_000, 60_000, 120_000]

    def test_lockout_is_capped(self, clock):
        limiter = RateLimiter(
            RateLimitPolicy(initial_lockout_ms=1_000_000, max_lockout_ms=1_500_000),
            clock=clock,
        )
        for _ in range(2):
            for _ in range(5):
                result = limiter.record_failure(Provider.OPENAI)
            clock.advance(result.retry_after_ms)
        assert result.retry_after_ms == 1_500_000

    def test_success_resets(self, limiter, clock):
        for _ in range(5):
            limiter.record_failure(Provider.OPENAI)
        clock.advance(30_000)
        limiter.record_success(Provider.OPENAI)
        record = limiter.get_record(Provider.OPENAI)
        assert record.failed_attempts == 0
        assert record.locked_until is None
        assert record.consecutive_lockouts == 0
        assert limiter.check_limit(Provider.OPENAI).attempts_remaining == 5

    def test_old_failures_are_forgotten(self, limiter, clock):
        for _ in range(4):
            limiter.record_failure(Provider.OPENAI)
        clock.advance(900_001)
        assert limiter.check_limit(Provider.OPENAI).attempts_remaining == 5
        result = limiter.record_failure(Provider.OPENAI)
        assert result.allowed is True
        assert result.attempts_remaining == 4

    def test_providers_are_isolated(self, limiter):
        for _ in range(5):
            limiter.record_failure(Provider.OPENAI)
        assert limiter.check_limit(Provider.OPENAI).allowed is False
        other = limiter.check_limit(Provider.ANTHROPIC)
        assert other.allowed is True
        assert other.attempts_remaining == 5

    def test_reset(self, limiter):
        limiter.record_failure(Provider.OPENAI)
        limiter.record_failure(Provider.ANTHROPIC)
        limiter.reset(Provider.OPENAI)
        assert limiter.check_limit(Provider.OPENAI).attempts_remaining == 5
        assert limiter.check_limit(Provider.ANTHROPIC).attempts_remaining == 4
        limiter.reset()
        assert limiter.check_limit(Provider.ANTHROPIC).attempts_remaining == 5


    def test_snapshot_and_restore(self, limiter, clock):
        assert limiter.snapshot(Provider.OPENAI) is None
        for _ in range(5):
            limiter.record_failure(Provider.OPENAI)
        saved = limiter.snapshot(Provider.OPENAI)
        assert saved.locked_until == clock.now + 30_000

        fresh = RateLimiter(RateLimitPolicy(), clock=clock)
        fresh.restore({Provider.OPENAI: saved})
        assert fresh.check_limit(Provider.OPENAI).allowed is False

        limiter.record_success(Provider.OPENAI)
        assert limiter.snapshot(Provider.OPENAI) is None

    def test_restore_keeps_live_state(self, limiter):
        limiter.record_failure(Provider.OPENAI)
        limiter.restore({Provider.OPENAI: RateLimitRecord(failed_attempts=4, first_failure_at=1)})
        assert limiter.check_limit(Provider.OPENAI).attempts_remaining == 4

class TestLockoutMessage:

    def test_seconds(self):
        assert format_lockout_message(30_000) == "Too many attempts. Try again in 30 seconds."
        assert format_lockout_message(1) == "Too many attempts. Try again in 1 second."

    def test_minutes(self):
        assert format_lockout_message(60_000) == "Too many attempts. Try again in 1 minute."
        assert format_lockout_message(120_000) == "Too many attempts. Try again in 2 minutes."
