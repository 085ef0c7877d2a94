"""
Tests for the in-memory unlocked-key cache and its expiry policy.

Defaults: 30 minute absolute expiry, 15 minute inactivity timeout.
"""
import pytest

from apikey_vault.vault.config import SessionSettings
from apikey_vault.vault.providers import Provider
from apikey_vault.vault.session_cache import SessionCache

from conftest import OPENAI_KEY

MINUTE = 60_000


@pytest.fixture
def cache(clock):
    return SessionCache(SessionSettings(), clock=clock)


class TestSessionCache:

    def test_put_and_get(self, cache, clock):
        entry = cache.put(Provider.OPENAI, OPENAI_KEY)
        assert entry.unlocked_at == clock.now
        assert entry.expires_at == clock.now + 30 * MINUTE
        assert cache.get(Provider.OPENAI) == OPENAI_KEY

    def test_entry_repr_hides_key(self, cache):
        entry = cache.put(Provider.OPENAI, OPENAI_KEY)
        assert OPENAI_KEY not in repr(entry)

    def test_missing(self, cache):
        assert cache.get(Provider.OPENAI) is None
        assert cache.peek(Provider.OPENAI) is False

    def test_inactivity_expiry(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        clock.advance(15 * MINUTE)
        assert cache.peek(Provider.OPENAI) is False
        assert cache.get(Provider.OPENAI) is None
        assert len(cache) == 0

    def test_activity_postpones_inactivity(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        clock.advance(10 * MINUTE)
        assert cache.get(Provider.OPENAI) == OPENAI_KEY
        clock.advance(10 * MINUTE)
        assert cache.get(Provider.OPENAI) == OPENAI_KEY

    def test_absolute_expiry_despite_activity(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        for _ in range(3):
            clock.advance(10 * MINUTE)
            cache.get(Provider.OPENAI)
        assert cache.get(Provider.OPENAI) is None

    def test_peek_has_no_side_effects(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        clock.advance(10 * MINUTE)
        assert cache.peek(Provider.OPENAI) is True
        clock.advance(5 * MINUTE)
        # peek did not count as activity
        assert cache.peek(Provider.OPENAI) is False
        # and did not evict
        assert len(cache) == 1

    def test_extend(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        clock.advance(14 * MINUTE)
        assert cache.extend(Provider.OPENAI) is True
        clock.advance(14 * MINUTE)
        assert cache.extend(Provider.OPENAI) is True
        clock.advance(14 * MINUTE)
        assert cache.get(Provider.OPENAI) == OPENAI_KEY
        assert cache.extend(Provider.ANTHROPIC) is False

    def test_remove_and_clear(self, cache):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        cache.put(Provider.ANTHROPIC, "other")
        cache.remove(Provider.OPENAI)
        cache.remove(Provider.OPENAI)
        assert cache.providers() == [Provider.ANTHROPIC]
        cache.clear()
        assert cache.providers() == []

    def test_sweep(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        clock.advance(10 * MINUTE)
        cache.put(Provider.ANTHROPIC, "other")
        clock.advance(6 * MINUTE)
        assert cache.sweep() == 1
        assert Provider.ANTHROPIC in cache
        assert Provider.OPENAI not in cache

    def test_update_settings_caps_deadlines(self, cache, clock):
        cache.put(Provider.OPENAI, OPENAI_KEY)
        cache.update_settings(SessionSettings(
            session_expiry_minutes=5, inactivity_timeout_minutes=5,
        ))
        clock.advance(5 * MINUTE)
        assert cache.get(Provider.OPENAI) is None
