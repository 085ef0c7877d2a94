"""
Shared pytest fixtures for the vault test suite.

Every fixture uses cheap scrypt parameters and a controllable clock so
lockout and expiry scenarios run instantly.
"""
import pytest

from apikey_vault.vault import (
    KdfPolicy,
    MemorySecretStore,
    VaultConfig,
    VaultService,
)
from apikey_vault.vault.models import KdfParams

OPENAI_KEY = "sk-proj-abcdefghijklmnopqrstuvwxyz123456"
ANTHROPIC_KEY = "sk-ant-api03-" + "A1b2C3d4" * 6
OPENROUTER_KEY = "sk-or-v1-" + "0123456789abcdef" * 4

PASSWORD = "StrongPassword123!"
NEW_PASSWORD = "NewStrongPass456!"


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_kdf():
    return KdfParams(n=2 ** 10, r=8, p=1)


@pytest.fixture
def config():
    return VaultConfig(kdf=KdfPolicy(n=2 ** 10), min_unlock_duration_ms=0)


@pytest.fixture
def store():
    return MemorySecretStore()


@pytest.fixture
def vault(store, config, clock):
    return VaultService(store=store, config=config, clock=clock)
