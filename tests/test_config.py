"""
Tests for VaultConfig, SessionSettings and environment loading.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from apikey_vault.vault.config import (
    KdfPolicy,
    SessionSettings,
    VaultConfig,
)


class TestVaultConfig:

    def test_defaults(self):
        config = VaultConfig()
        assert config.cipher_backend == "aesgcm"
        assert config.storage_path is None
        assert config.device_secret_path is None
        assert config.rate_limit.max_attempts == 5
        assert config.rate_limit.initial_lockout_ms == 30_000
        assert config.kdf.to_params().algorithm == "scrypt"

    def test_rejects_unknown_cipher(self):
        with pytest.raises(ValidationError):
            VaultConfig(cipher_backend="des")

    def test_kdf_cost_must_be_power_of_two(self):
        with pytest.raises(ValidationError):
            KdfPolicy(n=3000)
        assert KdfPolicy(n=2 ** 14).n == 16384

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("APIKEY_VAULT_PATH", str(tmp_path / "keys.json"))
        monkeypatch.setenv("APIKEY_VAULT_CIPHER_BACKEND", "ChaCha20")
        monkeypatch.setenv("APIKEY_VAULT_SCRYPT_N", "16384")
        monkeypatch.setenv("APIKEY_VAULT_SESSION_EXPIRY_MINUTES", "1000")
        monkeypatch.setenv("APIKEY_VAULT_INACTIVITY_MINUTES", "oops")
        monkeypatch.setenv("APIKEY_VAULT_DEVICE_SECRET", str(tmp_path / "device.key"))
        config = VaultConfig.from_env()
        assert config.storage_path == Path(tmp_path / "keys.json")
        assert config.cipher_backend == "chacha20"
        assert config.kdf.n == 16384
        assert config.session.session_expiry_minutes == 360
        assert config.session.inactivity_timeout_minutes == 15
        assert config.device_secret_path == tmp_path / "device.key"

    def test_from_env_defaults(self, monkeypatch):
        for name in (
            "APIKEY_VAULT_PATH",
            "APIKEY_VAULT_CIPHER_BACKEND",
            "APIKEY_VAULT_SCRYPT_N",
            "APIKEY_VAULT_SESSION_EXPIRY_MINUTES",
            "APIKEY_VAULT_INACTIVITY_MINUTES",
            "APIKEY_VAULT_DEVICE_SECRET",
        ):
            monkeypatch.delenv(name, raising=False)
        config = VaultConfig.from_env()
        assert config.storage_path is None
        assert config.session == SessionSettings()


class TestSessionSettings:

    def test_bounds_are_enforced(self):
        with pytest.raises(ValidationError):
            SessionSettings(session_expiry_minutes=1)
        with pytest.raises(ValidationError):
            SessionSettings(inactivity_timeout_minutes=61)

    def test_sanitize_clamps(self):
        settings = SessionSettings.sanitize({
            "session_expiry_minutes": 10_000,
            "inactivity_timeout_minutes": 0,
        })
        assert settings.session_expiry_minutes == 360
        assert settings.inactivity_timeout_minutes == 5

    @pytest.mark.parametrize("raw", [
        None,
        "garbage",
        {"session_expiry_minutes": "30; drop"},
        {"session_expiry_minutes": float("nan")},
        {"session_expiry_minutes": True},
    ])
    def test_sanitize_falls_back_to_defaults(self, raw):
        settings = SessionSettings.sanitize(raw)
        assert settings.session_expiry_minutes == 30
        assert settings.inactivity_timeout_minutes == 15

    def test_milliseconds_and_warning(self):
        settings = SessionSettings(session_expiry_minutes=360)
        assert settings.session_expiry_ms == 360 * 60_000
        assert settings.show_security_warning is True
        assert SessionSettings().show_security_warning is False
